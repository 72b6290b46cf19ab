"""Validated registry mutations.

This module is the write side of the registry used by the control plane:
- Registering root domains and adding subdomains under them
- Editing how a domain is served (type and target)
- Deleting domains (cascading to subdomains) and single subdomains
- Linking a local development project to a domain

Destructive operations never prompt by themselves. The decision of what
to ask is a pure function returning a ConfirmationRequest; the caller
supplies an async ``confirm`` callback that answers it.

Usage:
    manager = DomainManager(store)

    await manager.register_domain("example.com", "ops@example.com", "ops", "server", "3000")
    await manager.add_subdomain("example.com", "api", "server", "4000", owner="ops")
    await manager.delete_domain("example.com", confirm=ask_user)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from hostgate.domains.models import (
    Confirm,
    ConfirmationRequest,
    DomainRecord,
    DomainType,
    SSLMode,
)
from hostgate.domains.storage import RegistryStore
from hostgate.domains.validation import (
    validate_domain,
    validate_email,
    validate_target,
    validate_type,
)
from hostgate.errors import DomainNotFound, ValidationError

logger = structlog.get_logger()


@dataclass
class DeletionPlan:
    """Records removed by deleting ``domain``."""

    domain: str
    removed: list[str] = field(default_factory=list)

    @property
    def cascades(self) -> bool:
        return len(self.removed) > 1


@dataclass
class DomainNode:
    """A root domain with its subdomains, for tree listings."""

    record: DomainRecord
    children: list[DomainRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            **self.record.to_dict(),
            "subdomains": [child.to_dict() for child in self.children],
        }


def plan_domain_deletion(record: DomainRecord, children: list[DomainRecord]) -> DeletionPlan:
    return DeletionPlan(
        domain=record.domain,
        removed=[record.domain, *(child.domain for child in children)],
    )


def domain_deletion_request(plan: DeletionPlan) -> ConfirmationRequest:
    message = f"Are you sure you want to delete the domain {plan.domain}?"
    if plan.cascades:
        message += f" This will also delete {len(plan.removed) - 1} associated subdomain(s)."
    return ConfirmationRequest(kind="delete-domain", subject=plan.domain, message=message)


def subdomain_deletion_request(parent: str, child: str) -> ConfirmationRequest:
    return ConfirmationRequest(
        kind="delete-subdomain",
        subject=child,
        message=f"Are you sure you want to delete the subdomain {child} of {parent}?",
    )


def expand_subdomain(parent: str, name: str) -> str:
    """Turn a bare label or a full hostname into the child's domain.

    Examples:
        >>> expand_subdomain("example.com", "api")
        'api.example.com'
        >>> expand_subdomain("example.com", "API.example.com")
        'api.example.com'
    """
    name = (name or "").strip().lower().rstrip(".")
    if not name:
        raise ValidationError("Subdomain name cannot be empty.", {"parent": parent})
    if name.endswith(f".{parent}"):
        return name
    if name == parent:
        raise ValidationError(
            f"A subdomain must differ from its parent {parent}.", {"parent": parent}
        )
    return f"{name}.{parent}"


class DomainManager:
    """Validated create/update/delete on top of a RegistryStore.

    All validation runs before the first write. Store calls run in a worker
    thread so the event loop stays responsive while SQLite waits on locks.
    """

    def __init__(self, store: RegistryStore) -> None:
        """Initialize domain manager.

        Args:
            store: Registry storage backend.
        """
        self.store = store

    async def _require(self, domain: str) -> DomainRecord:
        record = await asyncio.to_thread(self.store.get_domain_by_name, domain)
        if record is None:
            raise DomainNotFound(domain)
        return record

    async def register_domain(
        self,
        domain: str,
        email: str,
        owner: str,
        domain_type: str | DomainType,
        target: str | int,
        ssl_mode: SSLMode = SSLMode.LETSENCRYPT,
    ) -> DomainRecord:
        """Register a new root domain.

        Args:
            domain: Hostname or ``*.`` wildcard pattern.
            email: Contact address used for certificate issuance.
            owner: Free-text owner label.
            domain_type: ``static`` or ``server``.
            target: Port for ``server``, absolute path for ``static``.
            ssl_mode: How the domain will obtain its certificate.

        Returns:
            The stored record.

        Raises:
            ValidationError: Any argument is malformed. Nothing is written.
            DuplicateDomain: The domain is already registered.
        """
        domain = validate_domain(domain)
        email = validate_email(email)
        kind = validate_type(domain_type)
        target = validate_target(kind, target)

        record = DomainRecord(
            domain=domain,
            subdomain=domain,
            email=email,
            owner=(owner or "").strip() or None,
            ssl_mode=ssl_mode,
            target=target,
            type=kind,
        )
        return await asyncio.to_thread(self.store.register_domain, record)

    async def add_subdomain(
        self,
        parent: str,
        name: str,
        domain_type: str | DomainType,
        target: str | int,
        owner: str | None = None,
        email: str | None = None,
        certificate: tuple[str, str] | None = None,
    ) -> DomainRecord:
        """Add a subdomain under an existing parent.

        The child inherits the parent's email and certificate paths unless
        ``email`` or ``certificate`` (cert path, key path) are given.

        Raises:
            DomainNotFound: The parent is not registered.
            ValidationError: Any argument is malformed, or the parent is itself a
                subdomain.
            DuplicateDomain: The child is already registered.
        """
        parent = validate_domain(parent)
        domain = validate_domain(expand_subdomain(parent, name))
        kind = validate_type(domain_type)
        target = validate_target(kind, target)
        if email is not None:
            email = validate_email(email)

        parent_record = await self._require(parent)
        if not parent_record.is_root:
            raise ValidationError(
                f"{parent_record.domain} is itself a subdomain of {parent_record.parent}. "
                "Subdomains can only be added under a root domain.",
                {"parent": parent_record.domain, "root": parent_record.parent},
            )

        if certificate is not None:
            cert_path, key_path = certificate
        else:
            cert_path = parent_record.ssl_certificate_path
            key_path = parent_record.ssl_certificate_key_path

        record = DomainRecord(
            domain=domain,
            subdomain=parent_record.domain,
            email=email or parent_record.email,
            owner=(owner or "").strip() or parent_record.owner,
            ssl_mode=parent_record.ssl_mode,
            ssl_certificate_path=cert_path,
            ssl_certificate_key_path=key_path,
            target=target,
            type=kind,
        )
        return await asyncio.to_thread(self.store.register_domain, record)

    async def edit_domain_details(
        self,
        domain: str,
        domain_type: str | DomainType | None = None,
        target: str | int | None = None,
    ) -> DomainRecord:
        """Change how a domain or subdomain is served.

        The target is revalidated against the effective type, so switching
        ``server`` to ``static`` without a new target fails on the old port.
        """
        record = await self._require(validate_domain(domain))
        if domain_type is None and target is None:
            return record

        kind = validate_type(domain_type) if domain_type is not None else record.type
        if kind is None:
            raise ValidationError(
                f"{record.domain} has no valid type; pass one with the new target.",
                {"domain": record.domain},
            )
        new_target = validate_target(kind, target if target is not None else record.target or "")

        if kind is not record.type:
            await asyncio.to_thread(self.store.update_type, record.domain, kind)
        if new_target != record.target:
            await asyncio.to_thread(self.store.update_target, record.domain, new_target)

        logger.info("Domain edited", domain=record.domain, type=kind.value, target=new_target)
        return await self._require(record.domain)

    async def edit_subdomain(
        self,
        parent: str,
        child: str,
        domain_type: str | DomainType | None = None,
        target: str | int | None = None,
    ) -> DomainRecord:
        """edit_domain_details() for a child, checking it belongs to ``parent``."""
        parent = validate_domain(parent)
        child = validate_domain(expand_subdomain(parent, child))
        record = await self._require(child)
        if record.parent != parent:
            raise DomainNotFound(child)
        return await self.edit_domain_details(child, domain_type, target)

    async def delete_domain(self, domain: str, confirm: Confirm) -> DeletionPlan | None:
        """Delete a domain and all of its subdomains after confirmation.

        Returns:
            The executed plan, or None when the confirmation was declined.
        """
        record = await self._require(validate_domain(domain))
        children = await asyncio.to_thread(self.store.list_subdomains, record.domain)
        plan = plan_domain_deletion(record, children)

        if not await confirm(domain_deletion_request(plan)):
            logger.info("Domain deletion cancelled", domain=record.domain)
            return None

        await asyncio.to_thread(self.store.delete_domain, record.domain)
        return plan

    async def delete_subdomain(self, parent: str, child: str, confirm: Confirm) -> bool:
        """Delete one subdomain after confirmation. The parent is untouched.

        Returns:
            True if deleted, False when the confirmation was declined.
        """
        parent = validate_domain(parent)
        child = validate_domain(expand_subdomain(parent, child))
        record = await self._require(child)
        if record.parent != parent:
            raise DomainNotFound(child)

        if not await confirm(subdomain_deletion_request(parent, child)):
            logger.info("Subdomain deletion cancelled", domain=child)
            return False

        return await asyncio.to_thread(self.store.delete_subdomain, parent, child)

    async def link_project(self, domain: str, project_path: str | Path | None) -> DomainRecord:
        """Link a local development project to a domain. None unlinks it."""
        record = await self._require(validate_domain(domain))
        path = str(Path(project_path).expanduser()) if project_path else None
        await asyncio.to_thread(self.store.update_project_path, record.domain, path)
        logger.info("Project linked", domain=record.domain, project_path=path)
        return await self._require(record.domain)

    async def get_domain(self, domain: str) -> DomainRecord:
        return await self._require(validate_domain(domain))

    async def list_domains(self) -> list[DomainRecord]:
        return await asyncio.to_thread(self.store.list_domains)

    async def list_subdomains(self, parent: str) -> list[DomainRecord]:
        record = await self._require(validate_domain(parent))
        return await asyncio.to_thread(self.store.list_subdomains, record.domain)

    async def domain_tree(self) -> list[DomainNode]:
        """Group every record under its root domain.

        Children whose parent record is missing are listed as roots so no
        row is hidden.
        """
        records = await asyncio.to_thread(self.store.list_domains)
        nodes = {r.domain: DomainNode(r) for r in records if r.is_root}
        orphans: list[DomainNode] = []
        for record in records:
            if record.is_root:
                continue
            node = nodes.get(record.subdomain or "")
            if node is None:
                orphans.append(DomainNode(record))
            else:
                node.children.append(record)
        return sorted([*nodes.values(), *orphans], key=lambda n: n.record.domain)
