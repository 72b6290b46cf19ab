"""Certificate lifecycle for registered domains.

States per domain:

    NONE -> PENDING_ISSUANCE -> ISSUED -> RENEWAL_DUE -> ISSUED
                      \\-> FAILED

plus the process-wide default pair (SELF_SIGNED) the listener starts with.

Only PENDING_ISSUANCE and FAILED are held in memory. Every other state is
derived from the registry and the files on disk each time it is asked
for, so a crash in the middle of issuance leaves nothing to clean up: the
record keeps its previous paths and certificate_status() reports what is
actually there.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from hostgate.certificates.certinfo import TLSCheckResult, check_tls, load_certificate_file
from hostgate.certificates.tools import AcmeSession, CertificateChallenge, ToolRunner
from hostgate.domains.models import (
    CertificatePaths,
    Confirm,
    ConfirmationRequest,
    DomainRecord,
    SSLMode,
)
from hostgate.domains.storage import RegistryStore
from hostgate.domains.validation import validate_email
from hostgate.domains.wildcards import wildcard_for
from hostgate.errors import (
    DomainNotFound,
    HostgateError,
    IssuanceInProgress,
    PermissionDenied,
    PropagationTimeout,
    SelfSignedBootstrapError,
    ValidationError,
)

logger = structlog.get_logger()

CERT_FILENAME = "fullchain.pem"
KEY_FILENAME = "privkey.pem"


class CertificateState(str, Enum):
    """Lifecycle state of a domain's certificate."""

    NONE = "none"
    SELF_SIGNED = "self_signed"
    PENDING_ISSUANCE = "pending_issuance"
    ISSUED = "issued"
    RENEWAL_DUE = "renewal_due"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class CertificateStatus:
    """Derived certificate state for one domain."""

    domain: str
    state: CertificateState
    cert_path: str | None = None
    key_path: str | None = None
    not_after: datetime | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "state": self.state.value,
            "cert_path": self.cert_path,
            "key_path": self.key_path,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "detail": self.detail,
        }


@dataclass
class RenewalResult:
    """Outcome of a renewal attempt. Failures are reported, not raised."""

    domain: str
    ok: bool
    output: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"domain": self.domain, "ok": self.ok, "output": self.output, "error": self.error}


def _file_state(path: Path) -> str:
    try:
        path.stat()
    except (FileNotFoundError, NotADirectoryError):
        return "missing"
    except PermissionError:
        return "unreadable"
    return "present"


def _present(path: Path) -> bool:
    # Files under root-only directories count as present even when stat fails.
    return _file_state(path) != "missing"


def _with_record_step(task: str, domain: str, error: PermissionDenied) -> PermissionDenied:
    # Running the ACME client elevated bypasses the registry, so the paths
    # have to be recorded afterwards.
    return PermissionDenied(
        task,
        command=None,
        instructions=(
            f"{error.instructions}\n\n"
            "When the certificate tool has finished, record the issued files with:\n"
            f"  hostgate ssl record {domain}"
        ),
    )


class CertificateManager:
    """Issues, renews and inspects certificates, writing paths to the registry.

    All external effects go through the ToolRunner; all operator questions
    go through the ``confirm`` callback passed to each operation.
    """

    def __init__(
        self,
        store: RegistryStore,
        runner: ToolRunner,
        acme_root: str | Path = "/etc/letsencrypt/live",
        self_signed_cert_path: str | Path = "/etc/ssl/certs/hostgate-selfsigned.crt",
        self_signed_key_path: str | Path = "/etc/ssl/private/hostgate-selfsigned.key",
        self_signed_common_name: str = "local.hostgate",
        self_signed_days: int = 365,
        self_signed_key_bits: int = 2048,
        acme_log_path: str | Path = "/var/log/letsencrypt/letsencrypt.log",
        propagation_attempts: int = 10,
        propagation_interval: float = 60.0,
        propagation_timeout: float = 600.0,
        renewal_window_days: int = 30,
    ) -> None:
        self.store = store
        self.runner = runner
        self.acme_root = Path(acme_root)
        self.self_signed_cert_path = Path(self_signed_cert_path)
        self.self_signed_key_path = Path(self_signed_key_path)
        self.self_signed_common_name = self_signed_common_name
        self.self_signed_days = self_signed_days
        self.self_signed_key_bits = self_signed_key_bits
        self.acme_log_path = Path(acme_log_path)
        self.propagation_attempts = propagation_attempts
        self.propagation_interval = propagation_interval
        self.propagation_timeout = propagation_timeout
        self.renewal_window_days = renewal_window_days

        self._pending: set[str] = set()
        self._failures: dict[str, str] = {}

    @property
    def default_certificate(self) -> CertificatePaths:
        return CertificatePaths(str(self.self_signed_cert_path), str(self.self_signed_key_path))

    def _default_pair_present(self) -> bool:
        return _present(self.self_signed_cert_path) and _present(self.self_signed_key_path)

    def acme_paths(self, domain: str) -> CertificatePaths:
        """Where the ACME client leaves material for ``domain``."""
        live = self.acme_root / domain
        return CertificatePaths(str(live / CERT_FILENAME), str(live / KEY_FILENAME))

    async def _require(self, domain: str) -> DomainRecord:
        record = await asyncio.to_thread(self.store.get_domain_by_name, domain)
        if record is None:
            raise DomainNotFound(domain)
        return record

    # Self-signed default

    async def ensure_self_signed(self, confirm: Confirm) -> CertificatePaths:
        """Make sure the default listener pair exists.

        Idempotent: an existing pair is returned untouched. The pair is
        never assigned to a registry record.

        Raises:
            SelfSignedBootstrapError: Generation was declined or failed.
        """
        paths = self.default_certificate
        if self._default_pair_present():
            return paths

        request = ConfirmationRequest(
            kind="generate-self-signed",
            subject=self.self_signed_common_name,
            message=(
                "Default SSL certificates are missing. Generate a self-signed certificate "
                f"for {self.self_signed_common_name} at {paths.cert_path}?"
            ),
            default=True,
        )
        if not await confirm(request):
            raise SelfSignedBootstrapError(
                "Default self-signed certificate is required to start the listener.",
                {"cert_path": paths.cert_path, "key_path": paths.key_path},
            )

        try:
            await self.runner.generate_self_signed(
                self.self_signed_cert_path,
                self.self_signed_key_path,
                self.self_signed_common_name,
                self.self_signed_days,
                self.self_signed_key_bits,
            )
        except HostgateError as e:
            raise SelfSignedBootstrapError(
                f"Failed to generate the default certificate: {e.message}",
                {"cert_path": paths.cert_path, "key_path": paths.key_path, "cause": e.to_dict()},
            ) from e

        if not self._default_pair_present():
            raise SelfSignedBootstrapError(
                "Certificate tool finished but the default pair was not written.",
                {"cert_path": paths.cert_path, "key_path": paths.key_path},
            )

        logger.info("Default certificate generated", cert_path=paths.cert_path)
        return paths

    # Issuance

    async def find_wildcard_certificate(self, domain: str) -> CertificatePaths | None:
        """Return a wildcard certificate covering ``domain`` from its parent, if any.

        Checks the ``*.<parent>`` record first, then material the ACME
        client left under ``<acme_root>/*.<parent>/``.
        """
        wildcard = wildcard_for(domain)
        if wildcard is None or wildcard == domain:
            return None

        record = await asyncio.to_thread(self.store.get_domain_by_name, wildcard)
        if record is not None and record.has_certificate:
            return CertificatePaths(record.ssl_certificate_path, record.ssl_certificate_key_path)

        paths = self.acme_paths(wildcard)
        if _present(Path(paths.cert_path)) and _present(Path(paths.key_path)):
            return paths
        return None

    async def wait_for_propagation(self, challenge: CertificateChallenge) -> int:
        """Poll DNS until the challenge value is visible.

        Returns:
            The attempt on which the record was seen.

        Raises:
            PropagationTimeout: Attempts or the time ceiling ran out.
        """
        started = time.monotonic()
        attempt = 0
        while attempt < self.propagation_attempts:
            attempt += 1
            values = await self.runner.query_txt_record(challenge.record_name)
            if challenge.value in values:
                logger.info(
                    "Challenge record visible", record=challenge.record_name, attempt=attempt
                )
                return attempt

            elapsed = time.monotonic() - started
            logger.info(
                "Challenge record not visible yet",
                record=challenge.record_name,
                attempt=attempt,
                elapsed=round(elapsed, 1),
            )
            if attempt >= self.propagation_attempts:
                break
            if elapsed + self.propagation_interval > self.propagation_timeout:
                break
            await asyncio.sleep(self.propagation_interval)

        raise PropagationTimeout(challenge.record_name, attempt, time.monotonic() - started)

    async def obtain_certificate(
        self,
        domain: str,
        confirm: Confirm,
        email: str | None = None,
    ) -> CertificateStatus | None:
        """Obtain a certificate for a registered domain via DNS-01.

        A wildcard certificate held by the parent is offered first; accepting
        it copies the paths without running the ACME client.

        Returns:
            The resulting status, or None when the operator declined to
            publish a challenge record (the record is left unchanged).

        Raises:
            DomainNotFound: The domain is not registered.
            IssuanceInProgress: An attempt for the domain is already running.
            PropagationTimeout: A challenge record never became visible.
            ToolExecutionError: The ACME client failed.
        """
        record = await self._require(domain)
        domain = record.domain
        email = validate_email(email or record.email or "")

        if domain in self._pending:
            raise IssuanceInProgress(domain)
        self._pending.add(domain)
        try:
            wildcard = await self.find_wildcard_certificate(domain)
            if wildcard is not None:
                reuse = await confirm(
                    ConfirmationRequest(
                        kind="reuse-wildcard",
                        subject=domain,
                        message=(
                            f"A wildcard certificate {wildcard.cert_path} was found. "
                            f"Use it for {domain}?"
                        ),
                        default=True,
                    )
                )
                if reuse:
                    await asyncio.to_thread(
                        self.store.update_certificate_paths,
                        domain,
                        wildcard.cert_path,
                        wildcard.key_path,
                        SSLMode.LETSENCRYPT,
                    )
                    logger.info(
                        "Wildcard certificate reused", domain=domain, cert_path=wildcard.cert_path
                    )
                    self._failures.pop(domain, None)
                    self._pending.discard(domain)
                    return await self.certificate_status(domain)

            session = await self.runner.issue_certificate(domain, email)
            completed = await self._run_challenges(domain, session, confirm)
            if not completed:
                return None

            paths = self.acme_paths(domain)
            await asyncio.to_thread(
                self.store.update_certificate_paths,
                domain,
                paths.cert_path,
                paths.key_path,
                SSLMode.LETSENCRYPT,
            )
            self._failures.pop(domain, None)
            logger.info("Certificate issued", domain=domain, cert_path=paths.cert_path)
        except PermissionDenied as e:
            self._failures[domain] = e.message
            logger.error("Certificate issuance failed", domain=domain, error=e.message)
            if e.retry:
                raise
            raise _with_record_step(f"obtain a certificate for {domain}", domain, e) from e
        except HostgateError as e:
            self._failures[domain] = e.message
            logger.error("Certificate issuance failed", domain=domain, error=e.message)
            raise
        finally:
            self._pending.discard(domain)

        return await self.certificate_status(domain)

    async def _run_challenges(self, domain: str, session: AcmeSession, confirm: Confirm) -> bool:
        try:
            while True:
                challenge = await session.next_challenge()
                if challenge is None:
                    break

                published = await confirm(
                    ConfirmationRequest(
                        kind="publish-challenge",
                        subject=challenge.record_name,
                        message=(
                            f"Create a DNS TXT record named {challenge.record_name} "
                            f"with the value {challenge.value}. Is it published?"
                        ),
                        default=True,
                    )
                )
                if not published:
                    await session.abort()
                    logger.info("Certificate issuance cancelled", domain=domain)
                    return False

                await self.wait_for_propagation(challenge)
                await session.proceed()

            await session.finish()
        except BaseException:
            await session.abort()
            raise
        return True

    async def renew(self, domain: str) -> RenewalResult:
        """Renew a certificate without prompting.

        Tool failures are returned in the result. Permission problems are
        raised so the frontend can offer elevation or manual steps.
        """
        record = await self._require(domain)
        try:
            output = await self.runner.renew_certificate(record.domain)
        except PermissionDenied as e:
            logger.warning("Certificate renewal needs elevated privileges", domain=record.domain)
            if e.retry or record.has_certificate:
                raise
            raise _with_record_step(
                f"renew the certificate for {record.domain}", record.domain, e
            ) from e
        except HostgateError as e:
            logger.warning("Certificate renewal failed", domain=record.domain, error=e.message)
            return RenewalResult(
                domain=record.domain,
                ok=False,
                output=str(e.details.get("output", "")),
                error=e.message,
            )

        if not record.has_certificate:
            paths = self.acme_paths(record.domain)
            await asyncio.to_thread(
                self.store.update_certificate_paths,
                record.domain,
                paths.cert_path,
                paths.key_path,
                SSLMode.LETSENCRYPT,
            )
        logger.info("Certificate renewed", domain=record.domain)
        return RenewalResult(domain=record.domain, ok=True, output=output)

    async def renew_due(self) -> list[RenewalResult]:
        """Renew every domain whose certificate is within the renewal window."""
        results = []
        for status in await self.scan_certificates():
            if status.state is CertificateState.RENEWAL_DUE:
                results.append(await self.renew(status.domain))
        return results

    async def record_certificate(self, domain: str) -> CertificateStatus:
        """Point ``domain`` at material the ACME client wrote under acme_root.

        Used after certbot was run by hand, e.g. with sudo.

        Raises:
            DomainNotFound: The domain is not registered.
            ValidationError: The certificate or key file does not exist.
        """
        record = await self._require(domain)
        paths = self.acme_paths(record.domain)
        missing = [p for p in (paths.cert_path, paths.key_path) if not _present(Path(p))]
        if missing:
            raise ValidationError(
                f"No issued certificate for {record.domain}: missing {', '.join(missing)}",
                {"domain": record.domain, "missing": missing},
            )

        await asyncio.to_thread(
            self.store.update_certificate_paths,
            record.domain,
            paths.cert_path,
            paths.key_path,
            SSLMode.LETSENCRYPT,
        )
        self._failures.pop(record.domain, None)
        logger.info("Certificate recorded", domain=record.domain, cert_path=paths.cert_path)
        return await self.certificate_status(record.domain)

    async def verify(self, domain: str, port: int = 443, timeout: float = 10.0) -> TLSCheckResult:
        """Handshake with the live endpoint. Changes nothing."""
        return await check_tls(domain, port=port, timeout=timeout)

    # Inspection

    async def certificate_status(self, domain: str) -> CertificateStatus:
        """Derive the state of ``domain`` from memory, the registry and disk."""
        record = await self._require(domain)
        domain = record.domain

        if domain in self._pending:
            return CertificateStatus(domain, CertificateState.PENDING_ISSUANCE)

        if not record.has_certificate:
            if domain in self._failures:
                return CertificateStatus(
                    domain, CertificateState.FAILED, detail=self._failures[domain]
                )
            return CertificateStatus(
                domain, CertificateState.NONE, detail="No certificate recorded"
            )

        cert_path = Path(record.ssl_certificate_path)
        key_path = Path(record.ssl_certificate_key_path)
        status = CertificateStatus(
            domain, CertificateState.NONE, cert_path=str(cert_path), key_path=str(key_path)
        )

        states = {path: _file_state(path) for path in (cert_path, key_path)}
        missing = [str(p) for p, state in states.items() if state == "missing"]
        if missing:
            status.detail = f"Recorded certificate files are missing: {', '.join(missing)}"
            return status
        if states[cert_path] == "unreadable":
            status.state = CertificateState.UNKNOWN
            status.detail = f"Permission denied reading {cert_path}"
            return status

        try:
            info = await asyncio.to_thread(load_certificate_file, cert_path)
        except PermissionError:
            status.state = CertificateState.UNKNOWN
            status.detail = f"Permission denied reading {cert_path}"
            return status
        except (OSError, ValueError) as e:
            status.state = CertificateState.FAILED
            status.detail = f"Certificate does not parse: {e}"
            return status

        status.not_after = info.not_after
        now = datetime.now(UTC)
        remaining = info.days_remaining(now)
        if info.is_expired(now):
            status.state = CertificateState.RENEWAL_DUE
            status.detail = "Certificate has expired"
        elif remaining <= self.renewal_window_days:
            status.state = CertificateState.RENEWAL_DUE
            status.detail = f"Expires in {int(remaining)} days"
        else:
            status.state = CertificateState.ISSUED
            status.detail = f"Valid for {int(remaining)} more days"
        return status

    async def scan_certificates(self) -> list[CertificateStatus]:
        """Status of every registered domain, wildcards included."""
        records = await asyncio.to_thread(self.store.list_domains)
        return [await self.certificate_status(record.domain) for record in records]

    def self_signed_status(self) -> CertificateStatus:
        paths = self.default_certificate
        present = self._default_pair_present()
        return CertificateStatus(
            domain=self.self_signed_common_name,
            state=CertificateState.SELF_SIGNED if present else CertificateState.NONE,
            cert_path=paths.cert_path,
            key_path=paths.key_path,
        )

    async def view_logs(self, lines: int = 50) -> list[str]:
        """Return the last ``lines`` lines of the ACME client log.

        Raises:
            PermissionDenied: The log is not readable by the current user.
            ValidationError: ``lines`` is not positive.
        """
        if lines < 1:
            raise ValidationError("Number of log lines must be positive.", {"lines": lines})

        def tail() -> list[str]:
            with self.acme_log_path.open(encoding="utf-8", errors="replace") as f:
                return [line.rstrip("\n") for line in deque(f, maxlen=lines)]

        try:
            return await asyncio.to_thread(tail)
        except FileNotFoundError:
            logger.warning("ACME log not found", path=str(self.acme_log_path))
            return []
        except PermissionError as e:
            command = f"sudo tail -n {lines} {self.acme_log_path}"
            raise PermissionDenied(
                "read the ACME client log",
                command=command,
                instructions=f"Run the command yourself:\n  {command}",
            ) from e

    def is_pending(self, domain: str) -> bool:
        return domain in self._pending
