"""Base class for LearningStore with connection and schema management.

This module provides the foundational `LearningStoreBase` class that handles:
- SQLite connection management with WAL mode
- Write transactions that take the database write lock up front
- Translation of sqlite3 errors into StorageFailureError
- Schema creation and column migration
- Identity hashing and name validation shared by the mixins

Mixins inherit from this base to add domain-specific functionality.
"""

from __future__ import annotations

import contextvars
import hashlib
import re
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from patternbank.core.config import StoreConfig
from patternbank.core.errors import InvalidInputError, StorageFailureError
from patternbank.core.logging import get_logger
from patternbank.learning.store.models import DEFAULT_NAMESPACE, ROOT_NAMESPACE

# Module-level logger for the learning store
_logger = get_logger("learning.store")

# SQLite accepts str, int, float, bytes, and None as bind parameters.
SQLParam = str | int | float | bytes | None

# Dot-separated segments of letters, digits, underscores and hyphens
_NAMESPACE_RE = re.compile(r"[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*")


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Clauses are joined with AND.

    Usage::

        wb = WhereBuilder()
        wb.add("error_type = ?", error_type)
        wb.add("occurred_at >= ?", cutoff)
        where_sql, params = wb.build()
        conn.execute(f"SELECT * FROM failures WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def add_in(self, column: str, values: list[str]) -> None:
        """Append ``column IN (?, ...)``; an empty list matches nothing."""
        if not values:
            self._clauses.append("0")
            return
        placeholders = ", ".join("?" for _ in values)
        self.add(f"{column} IN ({placeholders})", *values)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


class LearningStoreBase:
    """SQLite-based learning store base class.

    Each operation opens its own connection unless it runs inside
    ``batch_connection()``. Writes that read before they modify use
    ``_write_transaction()``, which issues ``BEGIN IMMEDIATE`` so two writers
    can never interleave a read-modify-write on the same row.

    Attributes:
        db_path: Path to the SQLite database file.
        config: Store configuration.
    """

    # v1: patterns, failures, causal_links, namespaces, patterns_archive
    # v2: first_observed / last_observed on causal_links for stale-link pruning
    # v3: patterns_archive rows keyed by archive_id, several per pattern_id
    SCHEMA_VERSION = 3

    # Columns added after initial table creation: {table: [(column, definition)]}
    _COLUMN_MIGRATIONS: dict[str, list[tuple[str, str]]] = {
        "causal_links": [
            ("first_observed", "TIMESTAMP"),
            ("last_observed", "TIMESTAMP"),
        ],
    }

    def __init__(
        self,
        db_path: Path | None = None,
        config: StoreConfig | None = None,
    ) -> None:
        """Open (and create or migrate if needed) the store.

        Args:
            db_path: Path to the SQLite database file. Overrides config.db_path.
            config: Store configuration. Defaults to ``StoreConfig()``.
        """
        self.config = config or StoreConfig()
        self.db_path = db_path or self.config.db_path
        self._logger = _logger
        # Batch connection scoped per thread / asyncio task
        self._batch_conn: contextvars.ContextVar[sqlite3.Connection | None] = (
            contextvars.ContextVar("_batch_conn", default=None)
        )
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate_if_needed()

    def _connect(self) -> sqlite3.Connection:
        timeout = self.config.busy_timeout_seconds
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=timeout)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={int(timeout * 1000)}")
        except sqlite3.Error as e:
            raise StorageFailureError(
                f"Cannot open learning store {self.db_path}: {e}"
            ) from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a configured connection, committing on success.

        Inside ``batch_connection()`` the batch connection is reused and
        commit/rollback is left to the batch.

        Raises:
            StorageFailureError: If SQLite reports an error. The transaction
                is rolled back first.
        """
        batch = self._batch_conn.get()
        if batch is not None:
            yield batch
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            self._logger.warning(
                "database_operation_failed",
                db_path=str(self.db_path),
                error=f"{type(e).__name__}: {e}",
            )
            raise StorageFailureError(f"Learning store operation failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _write_transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection holding the database write lock.

        Starts the transaction with ``BEGIN IMMEDIATE`` unless one is already
        open (as inside ``batch_connection()``).
        """
        with self._get_connection() as conn:
            if not conn.in_transaction:
                conn.execute("BEGIN IMMEDIATE")
            yield conn

    @contextmanager
    def batch_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Run several operations in one connection and one write transaction.

        Every ``_get_connection()`` call inside the block reuses the same
        connection. The batch commits once on success and rolls back
        everything on error. A nested batch joins the enclosing one: it
        yields the same connection and leaves commit and rollback to the
        outer block.

        Example::

            with store.batch_connection():
                pattern = store.upsert_pattern("run migrations first", "db", Outcome.SUCCESS)
                store.mark_resolved(failure_id, pattern.pattern_id)
        """
        outer = self._batch_conn.get()
        if outer is not None:
            yield outer
            return
        conn = self._connect()
        token = self._batch_conn.set(conn)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            self._logger.warning(
                "batch_operation_failed",
                db_path=str(self.db_path),
                error=f"{type(e).__name__}: {e}",
            )
            raise StorageFailureError(f"Learning store batch failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._batch_conn.reset(token)
            conn.close()

    def close(self) -> None:  # noqa: B027
        """No-op: connections are opened and closed per operation."""

    def _migrate_if_needed(self) -> None:
        with self._write_transaction() as conn:
            try:
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row["version"] if row else 0
            except sqlite3.OperationalError:
                current_version = 0

            if current_version < self.SCHEMA_VERSION:
                self._migrate_columns(conn)
                self._rebuild_archive_table(conn)
                self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create all tables and indexes (idempotent) and seed root namespaces."""
        self._create_schema_version_table(conn)
        self._create_patterns_table(conn)
        self._create_patterns_archive_table(conn)
        self._create_failures_table(conn)
        self._create_causal_links_table(conn)
        self._create_namespaces_table(conn)

        conn.execute(
            "INSERT OR IGNORE INTO namespaces (name, parent_namespace, description) "
            "VALUES (?, NULL, ?)",
            (ROOT_NAMESPACE, "Root of the namespace hierarchy"),
        )
        conn.execute(
            "INSERT OR IGNORE INTO namespaces (name, parent_namespace, description) "
            "VALUES (?, ?, ?)",
            (DEFAULT_NAMESPACE, ROOT_NAMESPACE, "Namespace for unscoped patterns"),
        )

        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )
        self._logger.info("schema_created", version=self.SCHEMA_VERSION)

    @staticmethod
    def _create_schema_version_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

    @staticmethod
    def _create_patterns_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS patterns (
                pattern_id TEXT PRIMARY KEY,
                pattern TEXT NOT NULL,
                context TEXT NOT NULL DEFAULT '',
                confidence REAL NOT NULL DEFAULT 0.5
                    CHECK (confidence >= 0.0 AND confidence <= 1.0),
                outcome TEXT NOT NULL DEFAULT 'pending'
                    CHECK (outcome IN ('success', 'failure', 'pending')),
                occurrence_count INTEGER NOT NULL DEFAULT 1
                    CHECK (occurrence_count >= 1),
                created_at TIMESTAMP NOT NULL,
                last_used TIMESTAMP NOT NULL,
                namespace TEXT NOT NULL DEFAULT 'default',
                UNIQUE (pattern, namespace)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_namespace "
            "ON patterns(namespace, confidence DESC)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_last_used ON patterns(last_used)"
        )

    @staticmethod
    def _create_patterns_archive_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS patterns_archive (
                archive_id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id TEXT NOT NULL,
                pattern TEXT NOT NULL,
                context TEXT NOT NULL DEFAULT '',
                confidence REAL NOT NULL,
                outcome TEXT NOT NULL,
                occurrence_count INTEGER NOT NULL,
                created_at TIMESTAMP NOT NULL,
                last_used TIMESTAMP NOT NULL,
                namespace TEXT NOT NULL,
                archived_at TIMESTAMP NOT NULL,
                archive_reason TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_archive_namespace "
            "ON patterns_archive(namespace)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_archive_pattern_id "
            "ON patterns_archive(pattern_id)"
        )

    @staticmethod
    def _create_failures_table(conn: sqlite3.Connection) -> None:
        # pattern references are plain ids: they may point at archived patterns
        conn.execute("""
            CREATE TABLE IF NOT EXISTS failures (
                failure_id TEXT PRIMARY KEY,
                pattern_id TEXT,
                context TEXT NOT NULL,
                error_type TEXT NOT NULL,
                error_message TEXT NOT NULL DEFAULT '',
                occurred_at TIMESTAMP NOT NULL,
                resolved BOOLEAN NOT NULL DEFAULT 0,
                resolution_pattern_id TEXT,
                CHECK (resolved = 0 OR resolution_pattern_id IS NOT NULL)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_failures_type "
            "ON failures(error_type, occurred_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_failures_context ON failures(context)"
        )

    @staticmethod
    def _create_causal_links_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS causal_links (
                link_id TEXT PRIMARY KEY,
                cause TEXT NOT NULL,
                effect TEXT NOT NULL,
                link_type TEXT NOT NULL DEFAULT 'causal'
                    CHECK (link_type IN ('sequential', 'causal', 'conditional')),
                confidence REAL NOT NULL DEFAULT 0.5
                    CHECK (confidence >= 0.0 AND confidence <= 1.0),
                evidence_count INTEGER NOT NULL DEFAULT 1
                    CHECK (evidence_count >= 1),
                first_observed TIMESTAMP,
                last_observed TIMESTAMP,
                UNIQUE (cause, effect, link_type)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_causal_effect ON causal_links(effect)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_causal_cause ON causal_links(cause)"
        )

    @staticmethod
    def _create_namespaces_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS namespaces (
                name TEXT PRIMARY KEY,
                parent_namespace TEXT,
                description TEXT
            )
        """)

    @staticmethod
    def _get_existing_columns(
        conn: sqlite3.Connection, table_name: str,
    ) -> set[str] | None:
        """Get a table's column names, or None if the table does not exist."""
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        if not cursor.fetchone():
            return None
        cursor = conn.execute(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in cursor.fetchall()}

    def _migrate_columns(self, conn: sqlite3.Connection) -> None:
        """Add columns missing from tables created by an older schema.

        Tables that do not exist yet are left to ``_create_schema``.
        """
        for table_name, columns in self._COLUMN_MIGRATIONS.items():
            existing = self._get_existing_columns(conn, table_name)
            if existing is None:
                continue
            for column_name, column_def in columns:
                if column_name not in existing:
                    conn.execute(
                        f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_def}"
                    )
                    self._logger.info(
                        "column_added", table=table_name, column=column_name
                    )

    def _rebuild_archive_table(self, conn: sqlite3.Connection) -> None:
        """Rebuild a pre-v3 archive table, which was keyed by pattern_id."""
        existing = self._get_existing_columns(conn, "patterns_archive")
        if existing is None or "archive_id" in existing:
            return
        columns = (
            "pattern_id, pattern, context, confidence, outcome, occurrence_count, "
            "created_at, last_used, namespace, archived_at, archive_reason"
        )
        conn.execute("ALTER TABLE patterns_archive RENAME TO patterns_archive_v2")
        conn.execute("DROP INDEX IF EXISTS idx_archive_namespace")
        self._create_patterns_archive_table(conn)
        conn.execute(
            f"INSERT INTO patterns_archive ({columns}) "
            f"SELECT {columns} FROM patterns_archive_v2 ORDER BY archived_at"
        )
        conn.execute("DROP TABLE patterns_archive_v2")
        self._logger.info("table_rebuilt", table="patterns_archive")

    @staticmethod
    def _now() -> datetime:
        return datetime.now()

    @staticmethod
    def hash_pattern(pattern: str, namespace: str) -> str:
        """Stable 16-character id for a (pattern, namespace) key."""
        return hashlib.sha256(f"{namespace}:{pattern}".encode()).hexdigest()[:16]

    @staticmethod
    def _check_namespace_name(namespace: str) -> str:
        """Validate a namespace name and return it.

        Raises:
            InvalidInputError: If the name is not dot-separated segments of
                letters, digits, underscores or hyphens.
        """
        if not isinstance(namespace, str) or not _NAMESPACE_RE.fullmatch(namespace):
            raise InvalidInputError(f"Malformed namespace name: {namespace!r}")
        return namespace

    def clear_all(self) -> None:
        """Delete all records and reseed the root namespaces.

        WARNING: destructive, intended for tests.
        """
        with self._write_transaction() as conn:
            conn.execute("DELETE FROM patterns")
            conn.execute("DELETE FROM patterns_archive")
            conn.execute("DELETE FROM failures")
            conn.execute("DELETE FROM causal_links")
            conn.execute("DELETE FROM namespaces")
            self._create_schema(conn)

        self._logger.warning("store_cleared", db_path=str(self.db_path))


__all__ = [
    "LearningStoreBase",
    "SQLParam",
    "WhereBuilder",
    "_logger",
]
