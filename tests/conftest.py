"""Shared fixtures: temporary registries, a scripted ToolRunner and test certificates."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from hostgate.certificates.lifecycle import CERT_FILENAME, KEY_FILENAME, CertificateManager
from hostgate.certificates.tools import CertificateChallenge
from hostgate.domains.models import ConfirmationRequest
from hostgate.domains.storage import RegistryStore
from hostgate.errors import ToolExecutionError


def write_certificate(
    cert_path: Path,
    key_path: Path,
    common_name: str = "example.com",
    days: int = 90,
    dns_names: list[str] | None = None,
) -> None:
    """Write a self-signed EC certificate valid for ``days`` from now."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName(n) for n in (dns_names or [common_name])]
            ),
            critical=False,
        )
    )
    cert = builder.sign(key, hashes.SHA256())

    cert_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


class FakeSession:
    """Scripted AcmeSession: hands out challenges, then 'issues' on finish."""

    def __init__(
        self,
        challenges: list[CertificateChallenge],
        live_dir: Path,
        domain: str,
        fail_output: str | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.challenges = list(challenges)
        self.live_dir = live_dir
        self.domain = domain
        self.fail_output = fail_output
        self.gate = gate
        self.proceeded = 0
        self.aborted = False
        self.finished = False

    async def next_challenge(self) -> CertificateChallenge | None:
        if self.gate is not None:
            await self.gate.wait()
        return self.challenges.pop(0) if self.challenges else None

    async def proceed(self) -> None:
        self.proceeded += 1

    async def finish(self) -> str:
        if self.fail_output is not None:
            raise ToolExecutionError("certbot certonly", 1, self.fail_output)
        write_certificate(
            self.live_dir / CERT_FILENAME, self.live_dir / KEY_FILENAME, self.domain
        )
        self.finished = True
        return "Successfully received certificate."

    async def abort(self) -> None:
        self.aborted = True


class FakeRunner:
    """ToolRunner double that never touches certbot, openssl or DNS."""

    def __init__(self, acme_root: Path) -> None:
        self.acme_root = acme_root
        self.challenges: dict[str, list[CertificateChallenge]] = {}
        self.txt_records: dict[str, list[list[str]]] = {}
        self.issue_calls: list[tuple[str, str]] = []
        self.renew_calls: list[str] = []
        self.self_signed_calls = 0
        self.sessions: list[FakeSession] = []
        self.issue_error: Exception | None = None
        self.renew_error: Exception | None = None
        self.self_signed_error: Exception | None = None
        self.fail_output: str | None = None
        self.gate: asyncio.Event | None = None

    def publish(self, name: str, *responses: list[str]) -> None:
        """Queue TXT answers for ``name``; the last one repeats."""
        self.txt_records[name] = list(responses)

    async def issue_certificate(self, domain: str, email: str) -> FakeSession:
        self.issue_calls.append((domain, email))
        if self.issue_error is not None:
            raise self.issue_error
        session = FakeSession(
            self.challenges.get(domain, []),
            self.acme_root / domain,
            domain,
            fail_output=self.fail_output,
            gate=self.gate,
        )
        self.sessions.append(session)
        return session

    async def renew_certificate(self, domain: str) -> str:
        self.renew_calls.append(domain)
        if self.renew_error is not None:
            raise self.renew_error
        return f"renewed {domain}"

    async def generate_self_signed(
        self, cert_path: Path, key_path: Path, common_name: str, days: int, key_bits: int
    ) -> str:
        self.self_signed_calls += 1
        if self.self_signed_error is not None:
            raise self.self_signed_error
        write_certificate(cert_path, key_path, common_name, days=days)
        return ""

    async def query_txt_record(self, name: str) -> list[str]:
        responses = self.txt_records.get(name, [])
        if not responses:
            return []
        if len(responses) > 1:
            return responses.pop(0)
        return responses[0]


class Answers:
    """Confirm callback that records every request and answers from a table."""

    def __init__(self, default: bool = True, **by_kind: bool) -> None:
        self.default = default
        self.by_kind = {kind.replace("_", "-"): value for kind, value in by_kind.items()}
        self.requests: list[ConfirmationRequest] = []

    async def __call__(self, request: ConfirmationRequest) -> bool:
        self.requests.append(request)
        return self.by_kind.get(request.kind, self.default)

    @property
    def kinds(self) -> list[str]:
        return [request.kind for request in self.requests]


@pytest.fixture
def store(tmp_path):
    """An initialized registry in a temporary directory."""
    registry = RegistryStore(tmp_path / "registry" / "domains.db")
    registry.initialize()
    return registry


@pytest.fixture
def runner(tmp_path):
    return FakeRunner(tmp_path / "live")


@pytest.fixture
def certificates(store, runner, tmp_path):
    return CertificateManager(
        store,
        runner,
        acme_root=tmp_path / "live",
        self_signed_cert_path=tmp_path / "ssl" / "certs" / "default.crt",
        self_signed_key_path=tmp_path / "ssl" / "private" / "default.key",
        acme_log_path=tmp_path / "letsencrypt.log",
        propagation_attempts=3,
        propagation_interval=0.0,
        propagation_timeout=5.0,
        renewal_window_days=30,
    )
