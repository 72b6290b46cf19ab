"""SQLite storage for the domain registry.

The registry is a single ``domains`` table. Column names match databases
created by earlier tooling so an existing file can be pointed at directly:

    CREATE TABLE domains (
        domain TEXT PRIMARY KEY,
        subdomain TEXT,
        email TEXT,
        sslMode TEXT,
        sslCertificate TEXT,
        sslCertificateKey TEXT,
        target TEXT,
        type TEXT,
        projectPath TEXT,
        owner TEXT
    )

Every call opens its own connection, so one RegistryStore can be shared by
the control plane and the TLS/request path across threads. This module is
the only place that issues SQL.
"""

from __future__ import annotations

import errno
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import structlog

from hostgate.domains.models import DomainRecord, DomainType, SSLMode
from hostgate.errors import DatabaseError, DuplicateDomain, PermissionDenied

logger = structlog.get_logger()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS domains (
    domain TEXT PRIMARY KEY,
    subdomain TEXT,
    email TEXT,
    sslMode TEXT,
    sslCertificate TEXT,
    sslCertificateKey TEXT,
    target TEXT,
    type TEXT,
    projectPath TEXT,
    owner TEXT
);
CREATE INDEX IF NOT EXISTS idx_domains_subdomain ON domains(subdomain);
"""

# Columns added after the first release of the table; older files get them
# through ALTER TABLE on initialize().
_LATE_COLUMNS = ("projectPath", "owner")

_PERMISSION_MESSAGES = (
    "unable to open database",
    "readonly database",
    "attempt to write a readonly database",
)


class RegistryStore:
    """SQLite-backed CRUD primitives for DomainRecord rows."""

    def __init__(self, db_path: str | Path, timeout: float = 5.0) -> None:
        """Initialize the store.

        Args:
            db_path: Location of the SQLite file. Created on initialize().
            timeout: Seconds to wait on a locked database.
        """
        self.db_path = Path(db_path).expanduser()
        self.timeout = timeout

    def _permission_error(self, task: str) -> PermissionDenied:
        target = self.db_path if self.db_path.exists() else self.db_path.parent
        return PermissionDenied(
            task,
            command=f"sudo chmod 664 {self.db_path}",
            instructions=(
                f"Make {target} writable by the current user, for example:\n"
                f"  sudo chown $USER {target}\n"
                f"  sudo chmod 664 {self.db_path}"
            ),
            retry=True,
        )

    def _translate(self, exc: sqlite3.Error, task: str) -> Exception:
        message = str(exc).lower()
        if any(text in message for text in _PERMISSION_MESSAGES):
            return self._permission_error(task)
        return DatabaseError(f"Failed to {task}: {exc}", {"database": str(self.db_path)})

    @contextmanager
    def connection(
        self, task: str = "read the domain registry"
    ) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with automatic cleanup."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.Error as e:
            raise self._translate(e, task) from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise self._translate(e, task) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, task: str = "update the domain registry"
    ) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with transaction support."""
        with self.connection(task) as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Create the parent directory, the table and any missing columns."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise self._permission_error("create the registry directory") from e
        except OSError as e:
            if e.errno == errno.EACCES:
                raise self._permission_error("create the registry directory") from e
            raise DatabaseError(f"Failed to create {self.db_path.parent}: {e}") from e

        with self.transaction("initialize the domain registry") as conn:
            conn.executescript(SCHEMA_SQL)
            existing = {row["name"] for row in conn.execute("PRAGMA table_info(domains)")}
            for column in _LATE_COLUMNS:
                if column not in existing:
                    conn.execute(f"ALTER TABLE domains ADD COLUMN {column} TEXT")
                    logger.info("Added registry column", column=column)

        logger.debug("Registry initialized", path=str(self.db_path))

    def register_domain(self, record: DomainRecord) -> DomainRecord:
        """Insert a new record.

        Raises:
            DuplicateDomain: A record with the same domain already exists.
        """
        row = record.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        try:
            with self.transaction(f"register {record.domain}") as conn:
                conn.execute(
                    f"INSERT INTO domains ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateDomain(record.domain) from e
        logger.info("Domain registered", domain=record.domain, parent=record.subdomain)
        return record

    def get_domain_by_name(self, domain: str) -> DomainRecord | None:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM domains WHERE domain = ?", (domain,)).fetchone()
            return DomainRecord.from_row(row) if row else None

    def list_domains(self) -> list[DomainRecord]:
        """List every record ordered by domain."""
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM domains ORDER BY domain").fetchall()
            return [DomainRecord.from_row(row) for row in rows]

    def list_subdomains(self, parent: str) -> list[DomainRecord]:
        """List children of ``parent``, excluding the parent itself."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM domains WHERE subdomain = ? AND domain != ? ORDER BY domain",
                (parent, parent),
            ).fetchall()
            return [DomainRecord.from_row(row) for row in rows]

    def _update(self, domain: str, assignments: dict[str, str | None], task: str) -> bool:
        clause = ", ".join(f"{column} = ?" for column in assignments)
        with self.transaction(task) as conn:
            cursor = conn.execute(
                f"UPDATE domains SET {clause} WHERE domain = ?",
                (*assignments.values(), domain),
            )
            return cursor.rowcount > 0

    def update_target(self, domain: str, target: str) -> bool:
        return self._update(domain, {"target": target}, f"update the target of {domain}")

    def update_type(self, domain: str, domain_type: DomainType) -> bool:
        return self._update(domain, {"type": domain_type.value}, f"update the type of {domain}")

    def update_certificate_paths(
        self,
        domain: str,
        cert_path: str | None,
        key_path: str | None,
        ssl_mode: SSLMode = SSLMode.LETSENCRYPT,
    ) -> bool:
        """Record certificate material for a domain and set its SSL mode."""
        updated = self._update(
            domain,
            {"sslCertificate": cert_path, "sslCertificateKey": key_path, "sslMode": ssl_mode.value},
            f"store certificate paths for {domain}",
        )
        if updated:
            logger.info("Certificate paths stored", domain=domain, cert_path=cert_path)
        return updated

    def update_project_path(self, domain: str, project_path: str | None) -> bool:
        return self._update(
            domain, {"projectPath": project_path}, f"link a project to {domain}"
        )

    def delete_domain(self, domain: str) -> int:
        """Delete a record and every record whose parent it is.

        Returns:
            Number of rows removed.
        """
        with self.transaction(f"delete {domain}") as conn:
            cursor = conn.execute(
                "DELETE FROM domains WHERE domain = ? OR subdomain = ?", (domain, domain)
            )
            removed = cursor.rowcount
        logger.info("Domain deleted", domain=domain, removed=removed)
        return removed

    def delete_subdomain(self, parent: str, child: str) -> bool:
        with self.transaction(f"delete {child}") as conn:
            cursor = conn.execute(
                "DELETE FROM domains WHERE domain = ? AND subdomain = ?", (child, parent)
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Subdomain deleted", domain=child, parent=parent)
        return deleted
