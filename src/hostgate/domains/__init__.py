"""hostgate domain registry.

Features:
- SQLite registry of domains and subdomains (one ``domains`` table)
- Exact and single-level wildcard resolution for SNI and Host lookups
- Validated mutations with cascade deletes and caller-supplied confirmation

Usage:
    from hostgate.domains import DomainManager, DomainResolver, RegistryStore

    store = RegistryStore("~/.hostgate/domains.db")
    store.initialize()
    manager = DomainManager(store)
    resolver = DomainResolver(store)

    await manager.register_domain("example.com", "ops@example.com", "ops", "server", 3000)
    route = resolver.resolve_route("example.com")
"""

from hostgate.domains.manager import DeletionPlan, DomainManager, DomainNode
from hostgate.domains.models import (
    CertificateMaterial,
    CertificatePaths,
    Confirm,
    ConfirmationRequest,
    DomainRecord,
    DomainType,
    ProxyRoute,
    Route,
    SSLMode,
    StaticRoute,
)
from hostgate.domains.resolver import DomainResolver
from hostgate.domains.storage import RegistryStore
from hostgate.domains.wildcards import (
    is_wildcard,
    normalize_host,
    suffix,
    wildcard_base,
    wildcard_for,
    wildcard_problem,
)

__all__ = [
    "CertificateMaterial",
    "CertificatePaths",
    "Confirm",
    "ConfirmationRequest",
    "DeletionPlan",
    "DomainManager",
    "DomainNode",
    "DomainRecord",
    "DomainResolver",
    "DomainType",
    "ProxyRoute",
    "RegistryStore",
    "Route",
    "SSLMode",
    "StaticRoute",
    "is_wildcard",
    "normalize_host",
    "suffix",
    "wildcard_base",
    "wildcard_for",
    "wildcard_problem",
]
