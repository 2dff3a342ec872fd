"""Tests for patternbank.learning.store.base module.

Covers:
- WhereBuilder: clause accumulation, IN lists, build with/without clauses
- LearningStoreBase: initialization, schema creation, migration, connection
  management, batch_connection, error translation, clear_all
"""

import hashlib
import sqlite3
from pathlib import Path

import pytest

from patternbank.core.config import DEFAULT_STORE_PATH, StoreConfig
from patternbank.core.errors import InvalidInputError, StorageFailureError
from patternbank.learning.store import LearningStore
from patternbank.learning.store.base import LearningStoreBase, WhereBuilder

# ---------------------------------------------------------------------------
# WhereBuilder
# ---------------------------------------------------------------------------


class TestWhereBuilder:
    """Tests for the WhereBuilder helper class."""

    def test_build_empty_returns_tautology(self):
        """Build with no clauses returns '1=1' and empty params."""
        wb = WhereBuilder()
        sql, params = wb.build()
        assert sql == "1=1"
        assert params == ()

    def test_multiple_clauses_joined_with_and(self):
        wb = WhereBuilder()
        wb.add("namespace = ?", "root")
        wb.add("confidence >= ?", 0.3)
        sql, params = wb.build()
        assert sql == "namespace = ? AND confidence >= ?"
        assert params == ("root", 0.3)

    def test_add_in(self):
        wb = WhereBuilder()
        wb.add_in("namespace", ["a", "b", "c"])
        sql, params = wb.build()
        assert sql == "namespace IN (?, ?, ?)"
        assert params == ("a", "b", "c")

    def test_add_in_empty_matches_nothing(self, tmp_path: Path):
        """An empty IN list produces a clause that selects no rows."""
        conn = sqlite3.connect(str(tmp_path / "t.db"))
        conn.execute("CREATE TABLE t (name TEXT)")
        conn.execute("INSERT INTO t VALUES ('a')")
        wb = WhereBuilder()
        wb.add_in("name", [])
        where_sql, params = wb.build()
        rows = conn.execute(f"SELECT name FROM t WHERE {where_sql}", params).fetchall()
        conn.close()
        assert rows == []

    def test_usable_in_sqlite_query(self, tmp_path: Path):
        """WhereBuilder output works correctly in a real SQLite query."""
        conn = sqlite3.connect(str(tmp_path / "t.db"))
        conn.execute("CREATE TABLE t (name TEXT, score REAL)")
        conn.executemany("INSERT INTO t VALUES (?, ?)", [("a", 0.5), ("b", 0.9), ("c", 0.3)])
        wb = WhereBuilder()
        wb.add("score >= ?", 0.4)
        wb.add("name != ?", "a")
        where_sql, params = wb.build()
        rows = conn.execute(f"SELECT name FROM t WHERE {where_sql}", params).fetchall()
        conn.close()
        assert rows == [("b",)]


# ---------------------------------------------------------------------------
# LearningStoreBase: initialization
# ---------------------------------------------------------------------------


class TestInitialization:
    """Tests for store initialization and database setup."""

    def test_default_db_path(self):
        assert DEFAULT_STORE_PATH == Path.home() / ".patternbank" / "learning.db"

    def test_db_path_argument_overrides_config(self, tmp_path: Path):
        config = StoreConfig(db_path=tmp_path / "from-config.db")
        s = LearningStoreBase(db_path=tmp_path / "explicit.db", config=config)
        assert s.db_path == tmp_path / "explicit.db"

    def test_db_path_from_config(self, tmp_path: Path):
        s = LearningStoreBase(config=StoreConfig(db_path=tmp_path / "from-config.db"))
        assert s.db_path == tmp_path / "from-config.db"
        assert s.db_path.exists()

    def test_creates_parent_directories(self, tmp_path: Path):
        db_path = tmp_path / "sub" / "dir" / "learning.db"
        LearningStoreBase(db_path=db_path)
        assert db_path.exists()

    def test_reinitialize_existing_db(self, tmp_path: Path):
        """Reopening an existing database keeps its data."""
        db_path = tmp_path / "learning.db"
        s1 = LearningStore(db_path=db_path)
        created = s1.upsert_pattern("keep me", "default", "success")
        s2 = LearningStore(db_path=db_path)
        assert s2.peek_pattern(created.pattern_id) == created


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestSchemaCreation:
    """Tests for database schema creation."""

    EXPECTED_TABLES = [
        "schema_version",
        "patterns",
        "patterns_archive",
        "failures",
        "causal_links",
        "namespaces",
    ]

    def test_all_tables_created(self, store: LearningStore):
        with store._get_connection() as conn:
            tables = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        for table in self.EXPECTED_TABLES:
            assert table in tables, f"Missing table: {table}"

    def test_schema_version_recorded(self, store: LearningStore):
        with store._get_connection() as conn:
            row = conn.execute("SELECT version FROM schema_version").fetchone()
        assert row["version"] == LearningStoreBase.SCHEMA_VERSION

    def test_root_and_default_namespaces_seeded(self, store: LearningStore):
        assert store.get_namespace("root").parent is None
        assert store.get_namespace("default").parent == "root"

    def test_wal_mode_enabled(self, store: LearningStore):
        with store._get_connection() as conn:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"

    def test_confidence_check_constraint(self, store: LearningStore):
        """The database itself rejects confidences outside [0, 1]."""
        with pytest.raises(StorageFailureError) as exc_info:
            with store._get_connection() as conn:
                conn.execute(
                    "INSERT INTO patterns (pattern_id, pattern, confidence, created_at, "
                    "last_used) VALUES ('x', 'p', 1.5, '2026-01-01', '2026-01-01')"
                )
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)

    def test_resolved_failure_requires_resolution(self, store: LearningStore):
        with pytest.raises(StorageFailureError):
            with store._get_connection() as conn:
                conn.execute(
                    "INSERT INTO failures (failure_id, context, error_type, occurred_at, "
                    "resolved) VALUES ('f', 'ctx', 'E', '2026-01-01', 1)"
                )


class TestMigration:
    """Tests for column migration of databases created by older versions."""

    def test_adds_causal_link_timestamps(self, tmp_path: Path):
        db_path = tmp_path / "old.db"
        conn = sqlite3.connect(str(db_path))
        conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY)")
        conn.execute("INSERT INTO schema_version VALUES (1)")
        conn.execute("""
            CREATE TABLE causal_links (
                link_id TEXT PRIMARY KEY,
                cause TEXT NOT NULL,
                effect TEXT NOT NULL,
                link_type TEXT NOT NULL DEFAULT 'causal',
                confidence REAL NOT NULL DEFAULT 0.5,
                evidence_count INTEGER NOT NULL DEFAULT 1,
                UNIQUE (cause, effect, link_type)
            )
        """)
        conn.execute(
            "INSERT INTO causal_links (link_id, cause, effect, confidence, evidence_count) "
            "VALUES ('l1', 'a', 'b', 0.7, 3)"
        )
        conn.commit()
        conn.close()

        s = LearningStore(db_path=db_path)
        with s._get_connection() as conn:
            cols = s._get_existing_columns(conn, "causal_links")
            version = conn.execute("SELECT version FROM schema_version").fetchone()["version"]
        assert {"first_observed", "last_observed"} <= cols
        assert version == LearningStoreBase.SCHEMA_VERSION

        link = s.get_link("a", "b")
        assert link is not None
        assert link.confidence == pytest.approx(0.7)
        reinforced = s.add_or_reinforce_link("a", "b", observed_success=True)
        assert reinforced.evidence_count == 4
        assert reinforced.last_observed > link.last_observed

    def test_rebuilds_archive_table_keyed_by_pattern_id(self, tmp_path: Path):
        db_path = tmp_path / "v2.db"
        conn = sqlite3.connect(str(db_path))
        conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY)")
        conn.execute("INSERT INTO schema_version VALUES (2)")
        conn.execute("""
            CREATE TABLE patterns_archive (
                pattern_id TEXT PRIMARY KEY,
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
            "CREATE INDEX idx_archive_namespace ON patterns_archive(namespace)"
        )
        conn.execute(
            "INSERT INTO patterns_archive VALUES ('a1', 'p', '', 0.7, 'success', 2, "
            "'2026-01-01T00:00:00', '2026-01-02T00:00:00', 'default', "
            "'2026-02-01T00:00:00', 'stale')"
        )
        conn.commit()
        conn.close()

        s = LearningStore(db_path=db_path)
        with s._get_connection() as conn:
            cols = s._get_existing_columns(conn, "patterns_archive")
            assert s._get_existing_columns(conn, "patterns_archive_v2") is None
        assert "archive_id" in cols

        [old] = s.get_archived_patterns()
        assert old.pattern_id == "a1"
        assert old.confidence == pytest.approx(0.7)
        assert old.archive_id is not None

        p = s.upsert_pattern("q", "default", "success")
        s.archive_pattern(p.pattern_id)
        assert len(s.get_archived_patterns("default")) == 2

    def test_missing_table_returns_none(self, store: LearningStore):
        with store._get_connection() as conn:
            assert store._get_existing_columns(conn, "no_such_table") is None


# ---------------------------------------------------------------------------
# Connections and transactions
# ---------------------------------------------------------------------------


class TestConnections:
    """Tests for connection management and error translation."""

    def test_sqlite_error_translated(self, store: LearningStore):
        with pytest.raises(StorageFailureError) as exc_info:
            with store._get_connection() as conn:
                conn.execute("SELECT * FROM no_such_table")
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    def test_unopenable_database(self, tmp_path: Path):
        directory = tmp_path / "is-a-directory.db"
        directory.mkdir()
        with pytest.raises(StorageFailureError):
            LearningStore(db_path=directory)

    def test_batch_commits_once(self, store: LearningStore):
        with store.batch_connection():
            store.upsert_pattern("first", "default", "success")
            store.upsert_pattern("second", "default", "success")
        assert {p.pattern for p in store.list_patterns()} == {"first", "second"}

    def test_batch_rolls_back_everything(self, store: LearningStore):
        with pytest.raises(InvalidInputError):
            with store.batch_connection():
                store.upsert_pattern("first", "default", "success")
                store.upsert_pattern("   ", "default", "success")
        assert store.list_patterns() == []

    def test_nested_batch_reuses_outer_connection(self, store: LearningStore):
        with store.batch_connection() as outer:
            with store.batch_connection() as inner:
                assert inner is outer
                store.upsert_pattern("inner", "default", "success")
            store.upsert_pattern("outer", "default", "success")
        assert {p.pattern for p in store.list_patterns()} == {"inner", "outer"}

    def test_outer_rollback_undoes_nested_batch(self, store: LearningStore):
        with pytest.raises(RuntimeError):
            with store.batch_connection():
                with store.batch_connection():
                    store.upsert_pattern("inner", "default", "success")
                raise RuntimeError("boom")
        assert store.list_patterns() == []

    def test_non_sqlite_error_rolls_back(self, store: LearningStore):
        with pytest.raises(RuntimeError):
            with store._get_connection() as conn:
                conn.execute(
                    "INSERT INTO namespaces (name, parent_namespace) VALUES ('tmp', 'root')"
                )
                raise RuntimeError("boom")
        assert store.get_namespace("tmp") is None


class TestUtilities:
    def test_hash_pattern_is_stable(self):
        expected = hashlib.sha256(b"default:run tests").hexdigest()[:16]
        assert LearningStoreBase.hash_pattern("run tests", "default") == expected

    def test_hash_depends_on_namespace(self):
        assert LearningStoreBase.hash_pattern("p", "a") != LearningStoreBase.hash_pattern("p", "b")

    @pytest.mark.parametrize(
        "name", ["", "a..b", ".a", "a.", "has space", "a/b", "default\n", "a.b\n"]
    )
    def test_malformed_namespace_rejected(self, name: str):
        with pytest.raises(InvalidInputError):
            LearningStoreBase._check_namespace_name(name)

    @pytest.mark.parametrize("name", ["root", "projects.ecommerce", "team-a.svc_1"])
    def test_valid_namespace_accepted(self, name: str):
        assert LearningStoreBase._check_namespace_name(name) == name

    def test_clear_all(self, store: LearningStore):
        p = store.upsert_pattern("p", "default", "success")
        store.record_failure("ctx", "E", pattern_id=p.pattern_id)
        store.add_or_reinforce_link("a", "b", True)
        store.create_namespace("projects", parent="root")

        store.clear_all()

        assert store.list_patterns() == []
        assert store.query_failures_by_type("E") == []
        assert store.get_link("a", "b") is None
        assert [ns.name for ns in store.list_namespaces()] == ["default", "root"]
