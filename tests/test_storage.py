"""Tests for the SQLite registry store."""

from __future__ import annotations

import sqlite3

import pytest

from hostgate.domains import DomainRecord, DomainType, RegistryStore, SSLMode
from hostgate.errors import DuplicateDomain


def _root(domain: str, target: str = "3000", **kwargs) -> DomainRecord:
    return DomainRecord(
        domain=domain, subdomain=domain, email="ops@example.com", target=target, **kwargs
    )


def _child(domain: str, parent: str, target: str = "4000", **kwargs) -> DomainRecord:
    return DomainRecord(
        domain=domain, subdomain=parent, email="ops@example.com", target=target, **kwargs
    )


class TestInitialize:
    """Tests for schema creation and migration."""

    def test_creates_parent_directory_and_table(self, tmp_path):
        """Test initialize() creates the directory and the domains table."""
        db_path = tmp_path / "nested" / "dir" / "domains.db"
        store = RegistryStore(db_path)
        store.initialize()

        assert db_path.exists()
        with store.connection() as conn:
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(domains)")}
        assert {
            "domain",
            "subdomain",
            "email",
            "sslMode",
            "sslCertificate",
            "sslCertificateKey",
            "target",
            "type",
            "projectPath",
            "owner",
        } <= columns

    def test_initialize_is_idempotent(self, store):
        """Test calling initialize() twice keeps existing rows."""
        store.register_domain(_root("example.com"))
        store.initialize()

        assert store.get_domain_by_name("example.com") is not None

    def test_adds_late_columns_to_legacy_table(self, tmp_path):
        """Test a table without projectPath/owner gains them."""
        db_path = tmp_path / "legacy.db"
        conn = sqlite3.connect(db_path)
        conn.execute(
            "CREATE TABLE domains (domain TEXT PRIMARY KEY, subdomain TEXT, email TEXT, "
            "sslMode TEXT, sslCertificate TEXT, sslCertificateKey TEXT, target TEXT, type TEXT)"
        )
        conn.execute(
            "INSERT INTO domains VALUES ('old.com', 'old.com', 'a@b.co', 'letsencrypt', "
            "NULL, NULL, '8080', 'server')"
        )
        conn.commit()
        conn.close()

        store = RegistryStore(db_path)
        store.initialize()

        record = store.get_domain_by_name("old.com")
        assert record is not None
        assert record.target == "8080"
        assert record.owner is None
        assert record.project_path is None
        assert store.update_project_path("old.com", "/srv/old")


class TestRegisterAndLookup:
    """Tests for inserts and reads."""

    def test_register_and_get(self, store):
        """Test a registered record reads back with the same fields."""
        store.register_domain(_root("example.com", owner="ops", type=DomainType.SERVER))

        record = store.get_domain_by_name("example.com")

        assert record is not None
        assert record.domain == "example.com"
        assert record.subdomain == "example.com"
        assert record.is_root
        assert record.owner == "ops"
        assert record.type is DomainType.SERVER
        assert record.ssl_mode is SSLMode.LETSENCRYPT
        assert record.has_certificate is False

    def test_get_nonexistent(self, store):
        """Test a missing domain returns None."""
        assert store.get_domain_by_name("missing.example.com") is None

    def test_duplicate_raises(self, store):
        """Test registering the same domain twice fails."""
        store.register_domain(_root("example.com"))

        with pytest.raises(DuplicateDomain) as exc_info:
            store.register_domain(_root("example.com", target="5000"))

        assert exc_info.value.domain == "example.com"
        assert store.get_domain_by_name("example.com").target == "3000"

    def test_list_domains_sorted(self, store):
        """Test list_domains() orders by domain."""
        for name in ("zeta.com", "alpha.com", "mid.com"):
            store.register_domain(_root(name))

        assert [r.domain for r in store.list_domains()] == ["alpha.com", "mid.com", "zeta.com"]

    def test_list_subdomains_excludes_parent(self, store):
        """Test list_subdomains() returns only children."""
        store.register_domain(_root("example.com"))
        store.register_domain(_child("b.example.com", "example.com"))
        store.register_domain(_child("a.example.com", "example.com"))
        store.register_domain(_root("other.com"))

        children = store.list_subdomains("example.com")

        assert [r.domain for r in children] == ["a.example.com", "b.example.com"]

    def test_unknown_type_reads_as_none(self, store):
        """Test a row with an unrecognized type is still readable."""
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO domains (domain, subdomain, target, type) VALUES (?, ?, ?, ?)",
                ("weird.com", "weird.com", "3000", "ftp"),
            )

        assert store.get_domain_by_name("weird.com").type is None


class TestUpdates:
    """Tests for single-column updates."""

    def test_update_target_and_type(self, store):
        """Test target and type updates."""
        store.register_domain(_root("example.com"))

        assert store.update_type("example.com", DomainType.STATIC)
        assert store.update_target("example.com", "/var/www/site")

        record = store.get_domain_by_name("example.com")
        assert record.type is DomainType.STATIC
        assert record.target == "/var/www/site"

    def test_update_missing_domain_returns_false(self, store):
        """Test updating an unknown domain reports no change."""
        assert store.update_target("missing.com", "3000") is False

    def test_update_certificate_paths(self, store):
        """Test certificate paths and SSL mode are stored together."""
        store.register_domain(_root("example.com", ssl_mode=SSLMode.NONE))

        store.update_certificate_paths(
            "example.com", "/live/example.com/fullchain.pem", "/live/example.com/privkey.pem"
        )

        record = store.get_domain_by_name("example.com")
        assert record.ssl_certificate_path == "/live/example.com/fullchain.pem"
        assert record.ssl_certificate_key_path == "/live/example.com/privkey.pem"
        assert record.ssl_mode is SSLMode.LETSENCRYPT
        assert record.has_certificate

    def test_update_project_path(self, store):
        """Test linking and unlinking a project."""
        store.register_domain(_root("example.com"))

        store.update_project_path("example.com", "/home/dev/site")
        assert store.get_domain_by_name("example.com").project_path == "/home/dev/site"

        store.update_project_path("example.com", None)
        assert store.get_domain_by_name("example.com").project_path is None


class TestDeletes:
    """Tests for cascade and single deletes."""

    def test_delete_domain_cascades(self, store):
        """Test deleting a parent removes its children in the same statement."""
        store.register_domain(_root("example.com"))
        store.register_domain(_child("api.example.com", "example.com"))
        store.register_domain(_child("www.example.com", "example.com"))
        store.register_domain(_root("other.com"))

        removed = store.delete_domain("example.com")

        assert removed == 3
        assert [r.domain for r in store.list_domains()] == ["other.com"]

    def test_delete_missing_domain(self, store):
        """Test deleting an unknown domain removes nothing."""
        assert store.delete_domain("missing.com") == 0

    def test_delete_subdomain_keeps_parent(self, store):
        """Test deleting a child leaves the parent and siblings."""
        store.register_domain(_root("example.com"))
        store.register_domain(_child("api.example.com", "example.com"))
        store.register_domain(_child("www.example.com", "example.com"))

        assert store.delete_subdomain("example.com", "api.example.com") is True

        assert store.get_domain_by_name("example.com") is not None
        assert [r.domain for r in store.list_subdomains("example.com")] == ["www.example.com"]

    def test_delete_subdomain_wrong_parent(self, store):
        """Test a child is only deleted through its own parent."""
        store.register_domain(_root("example.com"))
        store.register_domain(_root("other.com"))
        store.register_domain(_child("api.example.com", "example.com"))

        assert store.delete_subdomain("other.com", "api.example.com") is False
        assert store.get_domain_by_name("api.example.com") is not None


class TestConcurrentAccess:
    """Tests for sharing one store between two handles."""

    def test_second_store_sees_writes(self, store):
        """Test writes through one handle are visible to another immediately."""
        other = RegistryStore(store.db_path)

        store.register_domain(_root("example.com"))
        assert other.get_domain_by_name("example.com") is not None

        other.delete_domain("example.com")
        assert store.get_domain_by_name("example.com") is None
