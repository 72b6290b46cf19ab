"""Query interface embedded by the reverse proxy.

Two calls, both reentrant and side-effect free on the registry:

    resolve_certificate(sni)  -> CertificateMaterial | None   (TLS handshake)
    resolve_route(host)       -> StaticRoute | ProxyRoute | None   (per request)
"""

from __future__ import annotations

from pathlib import Path

import structlog

from hostgate.domains.models import CertificateMaterial, CertificatePaths, Route
from hostgate.domains.resolver import DomainResolver
from hostgate.errors import DatabaseError, NotConfigured, PermissionDenied

logger = structlog.get_logger()


class ProxyAdapter:
    """Thin wrapper that turns resolver outcomes into proxy-friendly values.

    Lookup failures become None (the proxy then serves its default
    certificate or a 404); they are logged, never raised.
    """

    def __init__(self, resolver: DomainResolver) -> None:
        self.resolver = resolver

    def certificate_paths(self, sni: str | None) -> CertificatePaths | None:
        if not sni:
            return None
        try:
            return self.resolver.resolve_certificate_paths(sni)
        except (DatabaseError, PermissionDenied) as e:
            logger.error("Certificate lookup failed", sni=sni, error=e.message)
            return None

    def resolve_certificate(self, sni: str | None) -> CertificateMaterial | None:
        """Return PEM material for the SNI name, or None to keep the default."""
        paths = self.certificate_paths(sni)
        if paths is None:
            return None
        try:
            cert_pem = Path(paths.cert_path).read_bytes()
            key_pem = Path(paths.key_path).read_bytes()
        except OSError as e:
            logger.error(
                "Failed to read certificate material",
                sni=sni,
                cert_path=paths.cert_path,
                key_path=paths.key_path,
                error=str(e),
            )
            return None
        return CertificateMaterial(cert_pem=cert_pem, key_pem=key_pem)

    def resolve_route(self, host: str | None) -> Route | None:
        """Return the backend for a Host header, or None when not configured."""
        if not host:
            return None
        try:
            return self.resolver.resolve_route(host)
        except NotConfigured as e:
            logger.debug("No route for host", host=host, reason=e.message)
            return None
        except (DatabaseError, PermissionDenied) as e:
            logger.error("Route lookup failed", host=host, error=e.message)
            return None
