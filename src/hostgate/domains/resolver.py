"""Two-phase hostname resolution against the registry.

Certificate phase (TLS handshake, keyed on SNI) and routing phase (HTTP
request, keyed on Host) share one lookup rule:

    1. exact record for the hostname
    2. otherwise the record for ``*.`` + hostname minus its leftmost label

The wildcard candidate is derived per call; nothing is cached between
requests, so registry writes are visible to the next lookup.
"""

from __future__ import annotations

import structlog

from hostgate.domains.models import (
    CertificatePaths,
    DomainRecord,
    DomainType,
    ProxyRoute,
    Route,
    StaticRoute,
)
from hostgate.domains.storage import RegistryStore
from hostgate.domains.wildcards import normalize_host, wildcard_for
from hostgate.errors import NotConfigured

logger = structlog.get_logger()


class DomainResolver:
    """Read-only lookups used on the connection and request path.

    Safe to call from several threads at once: each lookup goes through the
    store's per-call connection and keeps no state on the resolver.
    """

    def __init__(
        self,
        store: RegistryStore,
        upstream_host: str = "127.0.0.1",
        index_document: str = "index.html",
    ) -> None:
        self.store = store
        self.upstream_host = upstream_host
        self.index_document = index_document

    def resolve_record(self, host: str) -> DomainRecord | None:
        """Return the exact or wildcard record for ``host``, or None."""
        name = normalize_host(host)
        if not name:
            return None

        record = self.store.get_domain_by_name(name)
        if record is not None:
            return record

        wildcard = wildcard_for(name)
        if wildcard is None:
            return None
        return self.store.get_domain_by_name(wildcard)

    def resolve_route(self, host: str) -> Route:
        """Resolve the backend for an HTTP request.

        Raises:
            NotConfigured: No record matches, or the record has an unknown
                type or an empty target.
        """
        record = self.resolve_record(host)
        if record is None:
            raise NotConfigured(normalize_host(host))

        target = (record.target or "").strip()
        if not target:
            raise NotConfigured(
                record.domain, f"Invalid configuration for {record.domain}: empty target"
            )

        if record.type is DomainType.STATIC:
            return StaticRoute(root_path=target, index=self.index_document)
        if record.type is DomainType.SERVER:
            return ProxyRoute(upstream=f"{self.upstream_host}:{target}")

        raise NotConfigured(
            record.domain, f"Invalid configuration for {record.domain}: unknown type"
        )

    def resolve_certificate_paths(self, sni: str) -> CertificatePaths | None:
        """Resolve certificate and key paths for a TLS handshake.

        A matching record without both paths counts as not found.
        """
        record = self.resolve_record(sni)
        if record is None or not record.has_certificate:
            return None
        return CertificatePaths(
            cert_path=record.ssl_certificate_path,  # type: ignore[arg-type]
            key_path=record.ssl_certificate_key_path,  # type: ignore[arg-type]
        )
