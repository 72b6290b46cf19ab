"""Exception hierarchy for hostgate.

Every error raised by the registry, the resolver and the certificate
lifecycle derives from HostgateError so frontends can render them uniformly.
"""

from __future__ import annotations

from typing import Any


class HostgateError(Exception):
    """Base class for all hostgate errors."""

    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a dictionary for JSON output."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(HostgateError):
    """Malformed domain, port, email or target, rejected before any write."""


class DuplicateDomain(HostgateError):
    """A record with the same domain already exists."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"The domain {domain} already exists.", {"domain": domain})
        self.domain = domain


class DomainNotFound(HostgateError):
    """The referenced domain has no record in the registry."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"Domain {domain} not found in registry.", {"domain": domain})
        self.domain = domain


class NotConfigured(HostgateError):
    """Neither an exact nor a wildcard record matches the hostname."""

    def __init__(self, host: str, reason: str | None = None) -> None:
        message = reason or f"No route configured for {host}"
        super().__init__(message, {"host": host})
        self.host = host


class DatabaseError(HostgateError):
    """Storage I/O or constraint failure. The operation was aborted."""


class PermissionDenied(HostgateError):
    """A filesystem or process operation needs elevated privileges.

    Carries instructions for doing it by hand and, when one exists, an
    elevated ``command``. With ``retry`` set the command only fixes access
    and the original operation should run again afterwards; without it the
    command does the work itself. ``command`` is None when the operation
    cannot be completed by a single elevated call.
    """

    def __init__(
        self,
        task: str,
        command: str | None,
        instructions: str,
        retry: bool = False,
    ) -> None:
        super().__init__(
            f"Permission denied while trying to {task}",
            {"task": task, "command": command, "instructions": instructions, "retry": retry},
        )
        self.task = task
        self.command = command
        self.instructions = instructions
        self.retry = retry


class ToolExecutionError(HostgateError):
    """An external certificate or DNS tool exited with a non-zero status."""

    def __init__(self, command: str, returncode: int | None, output: str) -> None:
        super().__init__(
            f"Command failed ({returncode}): {command}",
            {"command": command, "returncode": returncode, "output": output},
        )
        self.command = command
        self.returncode = returncode
        self.output = output


class PropagationTimeout(HostgateError):
    """The DNS-01 TXT record did not become visible in time."""

    retryable = True

    def __init__(self, record_name: str, attempts: int, elapsed: float) -> None:
        super().__init__(
            f"TXT record {record_name} not visible after {attempts} attempts ({elapsed:.0f}s)",
            {"record_name": record_name, "attempts": attempts, "elapsed": elapsed},
        )
        self.record_name = record_name


class IssuanceInProgress(HostgateError):
    """Another issuance attempt for the same domain has not finished."""

    def __init__(self, domain: str) -> None:
        super().__init__(
            f"Certificate issuance for {domain} is already in progress", {"domain": domain}
        )
        self.domain = domain


class SelfSignedBootstrapError(HostgateError):
    """The default listener certificate could not be ensured."""
