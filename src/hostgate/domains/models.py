"""Domain registry records and resolution results.

One DomainRecord per row of the ``domains`` table. Column names keep the
camelCase spelling of existing databases:

    domain | subdomain | email | sslMode | sslCertificate | sslCertificateKey |
    target | type | projectPath | owner
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class SSLMode(str, Enum):
    """How a domain obtains its certificate."""

    NONE = "none"
    SELF_SIGNED = "self-signed"
    LETSENCRYPT = "letsencrypt"


class DomainType(str, Enum):
    """How requests for a domain are served."""

    STATIC = "static"
    SERVER = "server"


@dataclass
class DomainRecord:
    """A registered domain or subdomain.

    Root domains carry ``subdomain == domain``; children carry the parent's
    domain in ``subdomain``. Legacy rows may leave ``subdomain`` empty for roots.
    """

    domain: str
    subdomain: str | None = None
    email: str | None = None
    owner: str | None = None
    ssl_mode: SSLMode = SSLMode.LETSENCRYPT
    ssl_certificate_path: str | None = None
    ssl_certificate_key_path: str | None = None
    target: str | None = None
    type: DomainType | None = DomainType.SERVER
    project_path: str | None = None

    @property
    def is_root(self) -> bool:
        return not self.subdomain or self.subdomain == self.domain

    @property
    def parent(self) -> str | None:
        """Domain of the parent record, None for roots."""
        return None if self.is_root else self.subdomain

    @property
    def is_wildcard(self) -> bool:
        return self.domain.startswith("*.")

    @property
    def has_certificate(self) -> bool:
        return bool(self.ssl_certificate_path and self.ssl_certificate_key_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "domain": self.domain,
            "subdomain": self.subdomain,
            "email": self.email,
            "owner": self.owner,
            "ssl_mode": self.ssl_mode.value,
            "ssl_certificate_path": self.ssl_certificate_path,
            "ssl_certificate_key_path": self.ssl_certificate_key_path,
            "target": self.target,
            "type": self.type.value if self.type else None,
            "project_path": self.project_path,
        }

    def to_row(self) -> dict[str, Any]:
        """Column mapping used by the registry store."""
        return {
            "domain": self.domain,
            "subdomain": self.subdomain,
            "email": self.email,
            "sslMode": self.ssl_mode.value,
            "sslCertificate": self.ssl_certificate_path or None,
            "sslCertificateKey": self.ssl_certificate_key_path or None,
            "target": self.target,
            "type": self.type.value if self.type else None,
            "projectPath": self.project_path or None,
            "owner": self.owner,
        }

    @classmethod
    def from_row(cls, row: Any) -> DomainRecord:
        """Create from a sqlite3.Row (or any mapping with the table's columns)."""
        keys = set(row.keys())

        def col(name: str) -> Any:
            return row[name] if name in keys else None

        return cls(
            domain=row["domain"],
            subdomain=col("subdomain"),
            email=col("email"),
            owner=col("owner"),
            ssl_mode=_parse_ssl_mode(col("sslMode")),
            ssl_certificate_path=col("sslCertificate") or None,
            ssl_certificate_key_path=col("sslCertificateKey") or None,
            target=col("target"),
            type=_parse_type(col("type")),
            project_path=col("projectPath") or None,
        )


def _parse_ssl_mode(value: str | None) -> SSLMode:
    if not value:
        return SSLMode.NONE
    try:
        return SSLMode(value)
    except ValueError:
        return SSLMode.NONE


def _parse_type(value: str | None) -> DomainType | None:
    try:
        return DomainType(value) if value else None
    except ValueError:
        return None


@dataclass(frozen=True)
class StaticRoute:
    """Serve files from ``root_path``, falling back to ``index`` for unknown paths."""

    root_path: str
    index: str = "index.html"
    mode: str = "static"


@dataclass(frozen=True)
class ProxyRoute:
    """Forward the request to ``upstream`` (host:port)."""

    upstream: str
    mode: str = "proxy"


Route = StaticRoute | ProxyRoute


@dataclass(frozen=True)
class CertificatePaths:
    """Filesystem location of a certificate chain and its private key."""

    cert_path: str
    key_path: str


@dataclass(frozen=True)
class CertificateMaterial:
    """PEM contents handed to the TLS layer."""

    cert_pem: bytes
    key_pem: bytes


@dataclass(frozen=True)
class ConfirmationRequest:
    """A yes/no question the frontend must answer before an operation proceeds.

    ``kind`` identifies the decision (for example ``delete-domain``) so
    non-interactive frontends can answer by policy instead of prompting.
    """

    kind: str
    subject: str
    message: str
    default: bool = False


Confirm = Callable[[ConfirmationRequest], Awaitable[bool]]
