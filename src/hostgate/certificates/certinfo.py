"""Certificate parsing and live TLS checks."""

from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.x509.oid import ExtensionOID


@dataclass(frozen=True)
class CertificateInfo:
    """Fields of an X.509 certificate relevant to renewal decisions."""

    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    dns_names: tuple[str, ...] = ()

    def days_remaining(self, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        return (self.not_after - now).total_seconds() / 86400

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.days_remaining(now) <= 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "dns_names": list(self.dns_names),
        }


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def parse_certificate(data: bytes) -> CertificateInfo:
    """Parse the first certificate of a PEM or DER blob.

    Raises:
        ValueError: The data is not a certificate.
    """
    if b"-----BEGIN" in data:
        cert = x509.load_pem_x509_certificate(data)
    else:
        cert = x509.load_der_x509_certificate(data)

    try:
        san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        dns_names = tuple(san.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        dns_names = ()

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_before=_utc(cert.not_valid_before_utc),
        not_after=_utc(cert.not_valid_after_utc),
        dns_names=dns_names,
    )


def load_certificate_file(path: str | Path) -> CertificateInfo:
    """Read and parse a certificate file. OSError and ValueError propagate."""
    return parse_certificate(Path(path).read_bytes())


@dataclass
class TLSCheckResult:
    """Outcome of a live handshake against a domain."""

    domain: str
    ok: bool
    certificate: CertificateInfo | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "ok": self.ok,
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "error": self.error,
            **self.details,
        }


async def check_tls(
    domain: str,
    port: int = 443,
    timeout: float = 10.0,
    context: ssl.SSLContext | None = None,
) -> TLSCheckResult:
    """Handshake with ``domain`` using SNI and report what it served.

    A handshake that fails verification still reports ok=False with the
    error; this never raises for network or TLS problems.
    """
    context = context or ssl.create_default_context()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(domain, port, ssl=context, server_hostname=domain),
            timeout=timeout,
        )
    except (OSError, ssl.SSLError, TimeoutError) as e:
        return TLSCheckResult(domain=domain, ok=False, error=str(e) or e.__class__.__name__)

    try:
        ssl_object = writer.get_extra_info("ssl_object")
        der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        info = parse_certificate(der) if der else None
        details = {"protocol": ssl_object.version() if ssl_object else None}
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ssl.SSLError):
            pass

    return TLSCheckResult(domain=domain, ok=info is not None, certificate=info, details=details)
