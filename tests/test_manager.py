"""Tests for validated registry mutations."""

from __future__ import annotations

import pytest

from hostgate.domains import DomainManager, DomainRecord, DomainType, SSLMode
from hostgate.domains.manager import (
    domain_deletion_request,
    expand_subdomain,
    plan_domain_deletion,
)
from hostgate.errors import DomainNotFound, DuplicateDomain, ValidationError

from conftest import Answers


@pytest.fixture
def manager(store):
    return DomainManager(store)


async def _seed(manager):
    await manager.register_domain("example.com", "ops@example.com", "ops", "server", "3000")
    await manager.add_subdomain("example.com", "api", "server", 4000)
    await manager.add_subdomain("example.com", "www.example.com", "static", "/var/www/site")


class TestRegisterDomain:
    """Tests for register_domain()."""

    @pytest.mark.asyncio
    async def test_register_root(self, manager):
        record = await manager.register_domain(
            "Example.COM", "ops@example.com", " ops ", "server", 3000
        )

        assert record.domain == "example.com"
        assert record.subdomain == "example.com"
        assert record.owner == "ops"
        assert record.target == "3000"
        assert record.type is DomainType.SERVER
        assert record.ssl_mode is SSLMode.LETSENCRYPT

    @pytest.mark.asyncio
    async def test_register_wildcard(self, manager):
        record = await manager.register_domain(
            "*.example.com", "ops@example.com", "ops", "static", "/srv/wild"
        )

        assert record.is_wildcard
        assert record.type is DomainType.STATIC

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("domain", "email", "domain_type", "target"),
        [
            ("not a domain", "ops@example.com", "server", "3000"),
            ("example.com", "nope", "server", "3000"),
            ("example.com", "ops@example.com", "proxy", "3000"),
            ("example.com", "ops@example.com", "server", "70000"),
            ("example.com", "ops@example.com", "static", "relative/path"),
        ],
    )
    async def test_invalid_input_writes_nothing(
        self, manager, store, domain, email, domain_type, target
    ):
        """Test validation fails before the registry is touched."""
        with pytest.raises(ValidationError):
            await manager.register_domain(domain, email, "ops", domain_type, target)

        assert store.list_domains() == []

    @pytest.mark.asyncio
    async def test_duplicate(self, manager):
        await manager.register_domain("example.com", "ops@example.com", "ops", "server", "3000")

        with pytest.raises(DuplicateDomain):
            await manager.register_domain("EXAMPLE.com", "ops@example.com", "ops", "server", "1")


class TestAddSubdomain:
    """Tests for add_subdomain()."""

    def test_expand_subdomain(self):
        assert expand_subdomain("example.com", "api") == "api.example.com"
        assert expand_subdomain("example.com", "api.example.com") == "api.example.com"
        assert expand_subdomain("example.com", "a.b") == "a.b.example.com"
        with pytest.raises(ValidationError):
            expand_subdomain("example.com", "")
        with pytest.raises(ValidationError):
            expand_subdomain("example.com", "example.com")

    @pytest.mark.asyncio
    async def test_inherits_parent_fields(self, manager, store):
        """Test a child copies email, owner and certificate paths from the parent."""
        await manager.register_domain("example.com", "ops@example.com", "ops", "server", "3000")
        store.update_certificate_paths("example.com", "/live/wild.pem", "/live/wild.key")

        child = await manager.add_subdomain("example.com", "api", "server", 4000)

        assert child.domain == "api.example.com"
        assert child.subdomain == "example.com"
        assert child.parent == "example.com"
        assert child.email == "ops@example.com"
        assert child.owner == "ops"
        assert child.ssl_certificate_path == "/live/wild.pem"
        assert child.ssl_certificate_key_path == "/live/wild.key"

    @pytest.mark.asyncio
    async def test_explicit_fields_override_parent(self, manager):
        await manager.register_domain("example.com", "ops@example.com", "ops", "server", "3000")

        child = await manager.add_subdomain(
            "example.com",
            "api",
            "server",
            4000,
            owner="api-team",
            email="api@example.com",
            certificate=("/c/api.pem", "/k/api.pem"),
        )

        assert child.owner == "api-team"
        assert child.email == "api@example.com"
        assert child.ssl_certificate_path == "/c/api.pem"

    @pytest.mark.asyncio
    async def test_missing_parent(self, manager, store):
        with pytest.raises(DomainNotFound):
            await manager.add_subdomain("example.com", "api", "server", 4000)
        assert store.list_domains() == []

    @pytest.mark.asyncio
    async def test_parent_must_be_root(self, manager, store):
        await _seed(manager)

        with pytest.raises(ValidationError, match="root domain"):
            await manager.add_subdomain("api.example.com", "v1", "server", 5000)

        assert store.get_domain_by_name("v1.api.example.com") is None

    @pytest.mark.asyncio
    async def test_nested_name_stays_under_root(self, manager):
        await _seed(manager)

        child = await manager.add_subdomain("example.com", "v1.api", "server", 5000)

        assert child.domain == "v1.api.example.com"
        assert child.parent == "example.com"

    @pytest.mark.asyncio
    async def test_wildcard_child(self, manager):
        await manager.register_domain("example.com", "ops@example.com", "ops", "server", "3000")

        child = await manager.add_subdomain("example.com", "*", "server", 5000)

        assert child.domain == "*.example.com"
        assert child.is_wildcard


class TestEditDomainDetails:
    """Tests for edit_domain_details() and edit_subdomain()."""

    @pytest.mark.asyncio
    async def test_change_target(self, manager):
        await _seed(manager)

        record = await manager.edit_domain_details("example.com", target="3001")

        assert record.target == "3001"
        assert record.type is DomainType.SERVER

    @pytest.mark.asyncio
    async def test_switch_type_with_target(self, manager):
        await _seed(manager)

        record = await manager.edit_domain_details(
            "example.com", domain_type="static", target="/srv/site"
        )

        assert record.type is DomainType.STATIC
        assert record.target == "/srv/site"

    @pytest.mark.asyncio
    async def test_switch_type_revalidates_old_target(self, manager, store):
        """Test a port is not accepted as a static path."""
        await _seed(manager)

        with pytest.raises(ValidationError):
            await manager.edit_domain_details("example.com", domain_type="static")

        assert store.get_domain_by_name("example.com").type is DomainType.SERVER

    @pytest.mark.asyncio
    async def test_edit_missing(self, manager):
        with pytest.raises(DomainNotFound):
            await manager.edit_domain_details("missing.com", target="1")

    @pytest.mark.asyncio
    async def test_edit_subdomain(self, manager):
        await _seed(manager)

        record = await manager.edit_subdomain("example.com", "api", target=4001)

        assert record.domain == "api.example.com"
        assert record.target == "4001"

    @pytest.mark.asyncio
    async def test_edit_subdomain_wrong_parent(self, manager):
        await _seed(manager)
        await manager.register_domain("other.com", "ops@other.com", "ops", "server", "3000")

        with pytest.raises(DomainNotFound):
            await manager.edit_subdomain("other.com", "api.example.com", target=1)


class TestDeletion:
    """Tests for confirmed deletes."""

    def test_deletion_request_mentions_cascade(self):
        parent = DomainRecord(domain="example.com", subdomain="example.com")
        children = [DomainRecord(domain="api.example.com", subdomain="example.com")]

        plan = plan_domain_deletion(parent, children)
        request = domain_deletion_request(plan)

        assert plan.removed == ["example.com", "api.example.com"]
        assert plan.cascades
        assert request.kind == "delete-domain"
        assert request.default is False
        assert "1 associated subdomain" in request.message

    @pytest.mark.asyncio
    async def test_delete_domain_cascades(self, manager, store):
        await _seed(manager)
        answers = Answers(default=True)

        plan = await manager.delete_domain("example.com", answers)

        assert answers.kinds == ["delete-domain"]
        assert sorted(plan.removed) == ["api.example.com", "example.com", "www.example.com"]
        assert store.list_domains() == []

    @pytest.mark.asyncio
    async def test_declined_delete_writes_nothing(self, manager, store):
        await _seed(manager)

        plan = await manager.delete_domain("example.com", Answers(default=False))

        assert plan is None
        assert len(store.list_domains()) == 3

    @pytest.mark.asyncio
    async def test_delete_subdomain_keeps_parent(self, manager, store):
        await _seed(manager)
        answers = Answers(default=True)

        deleted = await manager.delete_subdomain("example.com", "api", answers)

        assert deleted is True
        assert answers.kinds == ["delete-subdomain"]
        assert store.get_domain_by_name("example.com") is not None
        assert store.get_domain_by_name("api.example.com") is None
        assert store.get_domain_by_name("www.example.com") is not None

    @pytest.mark.asyncio
    async def test_declined_subdomain_delete(self, manager, store):
        await _seed(manager)

        assert await manager.delete_subdomain("example.com", "api", Answers(default=False)) is False
        assert store.get_domain_by_name("api.example.com") is not None

    @pytest.mark.asyncio
    async def test_delete_subdomain_not_a_child(self, manager):
        """Test a root domain cannot be deleted through another parent."""
        await _seed(manager)
        await manager.register_domain("other.com", "ops@other.com", "ops", "server", "3000")
        answers = Answers(default=True)

        with pytest.raises(DomainNotFound):
            await manager.delete_subdomain("other.com", "api.example.com", answers)
        assert answers.requests == []


class TestLinkAndList:
    """Tests for project links and listings."""

    @pytest.mark.asyncio
    async def test_link_and_unlink(self, manager, tmp_path):
        await _seed(manager)

        linked = await manager.link_project("example.com", tmp_path / "site")
        assert linked.project_path == str(tmp_path / "site")

        unlinked = await manager.link_project("example.com", None)
        assert unlinked.project_path is None

    @pytest.mark.asyncio
    async def test_list_subdomains(self, manager):
        await _seed(manager)

        children = await manager.list_subdomains("example.com")

        assert [c.domain for c in children] == ["api.example.com", "www.example.com"]

    @pytest.mark.asyncio
    async def test_domain_tree(self, manager, store):
        await _seed(manager)
        await manager.register_domain("alpha.com", "ops@alpha.com", "ops", "server", "3000")
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO domains (domain, subdomain, target, type) VALUES (?, ?, ?, ?)",
                ("lost.gone.com", "gone.com", "1", "server"),
            )

        tree = await manager.domain_tree()

        domains = [node.record.domain for node in tree]
        assert domains == ["alpha.com", "example.com", "lost.gone.com"]
        example = tree[1]
        assert [c.domain for c in example.children] == ["api.example.com", "www.example.com"]
        assert example.to_dict()["subdomains"][0]["domain"] == "api.example.com"
