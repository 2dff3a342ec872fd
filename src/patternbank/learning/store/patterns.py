"""Pattern mixin for LearningStore.

Provides methods for recording, querying and retiring patterns:
- upsert_pattern: Create or update a (pattern, namespace) observation
- query_patterns: Ranked retrieval filtered by namespace set, context and confidence
- get_pattern / find_pattern: Lookups that refresh last_used
- peek_pattern / list_patterns: Inspection without side effects
- delete_pattern / archive_pattern: Retirement, used by consolidation
- get_archived_patterns: Archive lookups
"""

from __future__ import annotations

import math
import sqlite3
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import datetime

from patternbank.core.config import StoreConfig
from patternbank.core.errors import InvalidInputError, NotFoundError
from patternbank.core.logging import BankLogger
from patternbank.learning.confidence import ConfidenceUpdater, Outcome, coerce_outcome
from patternbank.learning.matching import ContextMatcher, substring_match
from patternbank.learning.store.base import WhereBuilder
from patternbank.learning.store.models import (
    DEFAULT_NAMESPACE,
    ArchivedPatternRecord,
    ArchiveReason,
    PatternRecord,
)

_PATTERN_COLUMNS = (
    "pattern_id, pattern, context, confidence, outcome, occurrence_count, "
    "created_at, last_used, namespace"
)


class PatternMixin:
    """Mixin providing pattern methods for LearningStore.

    This mixin requires that the composed class provides:
    - _get_connection() / _write_transaction(): connection context managers
    - _confidence: ConfidenceUpdater with the configured learning rates
    - config: StoreConfig
    """

    _logger: BankLogger
    _confidence: ConfidenceUpdater
    config: StoreConfig
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _write_transaction: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _now: Callable[[], datetime]
    hash_pattern: Callable[[str, str], str]
    _check_namespace_name: Callable[[str], str]

    def upsert_pattern(
        self,
        pattern: str,
        namespace: str = DEFAULT_NAMESPACE,
        outcome: Outcome | str = Outcome.PENDING,
        context: str | None = None,
    ) -> PatternRecord:
        """Record one observation of a pattern.

        A new (pattern, namespace) key starts from the neutral prior and has
        the outcome applied immediately, so a first success yields 0.55 with
        the default rates. An existing key has its confidence updated, its
        occurrence_count incremented and last_used / outcome refreshed. A
        non-None ``context`` replaces the stored context.

        The read and the write happen in one ``BEGIN IMMEDIATE`` transaction,
        so concurrent upserts of the same key never lose an update.

        Args:
            pattern: Human-readable pattern text. Leading/trailing whitespace
                is stripped.
            namespace: Namespace the pattern belongs to.
            outcome: Outcome of this observation.
            context: Free-text task/domain tag.

        Returns:
            The pattern as stored after the update.

        Raises:
            InvalidInputError: Empty pattern text, malformed namespace,
                unknown outcome, or a non-finite stored confidence.
            NotFoundError: ``require_registered_namespace`` is set and the
                namespace is not registered.
        """
        text = pattern.strip() if isinstance(pattern, str) else ""
        if not text:
            raise InvalidInputError("Pattern text must not be empty")
        ns = self._check_namespace_name(namespace)
        observed = coerce_outcome(outcome)
        now = self._now().isoformat()

        with self._write_transaction() as conn:
            if self.config.require_registered_namespace:
                known = conn.execute(
                    "SELECT 1 FROM namespaces WHERE name = ?", (ns,)
                ).fetchone()
                if known is None:
                    raise NotFoundError("namespace", ns)

            existing = conn.execute(
                "SELECT pattern_id, confidence FROM patterns "
                "WHERE pattern = ? AND namespace = ?",
                (text, ns),
            ).fetchone()

            if existing is None:
                pattern_id = self.hash_pattern(text, ns)
                confidence = self._confidence.update(self._confidence.initial, observed)
                conn.execute(
                    f"""
                    INSERT INTO patterns ({_PATTERN_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
                    """,
                    (pattern_id, text, context or "", confidence, observed.value, now, now, ns),
                )
            else:
                pattern_id = existing["pattern_id"]
                confidence = self._confidence.update(existing["confidence"], observed)
                conn.execute(
                    """
                    UPDATE patterns SET
                        confidence = ?,
                        outcome = ?,
                        occurrence_count = occurrence_count + 1,
                        last_used = ?,
                        context = COALESCE(?, context)
                    WHERE pattern_id = ?
                    """,
                    (confidence, observed.value, now, context, pattern_id),
                )

            row = conn.execute(
                f"SELECT {_PATTERN_COLUMNS} FROM patterns WHERE pattern_id = ?",
                (pattern_id,),
            ).fetchone()
            record = self._row_to_pattern(row)

        self._logger.debug(
            "pattern_upserted",
            pattern_id=record.pattern_id,
            namespace=ns,
            outcome=observed.value,
            confidence=round(record.confidence, 4),
            occurrence_count=record.occurrence_count,
        )
        return record

    def query_patterns(
        self,
        context_filter: str | None,
        namespaces: Iterable[str],
        min_confidence: float = 0.0,
        limit: int = 10,
        matcher: ContextMatcher | None = None,
    ) -> list[PatternRecord]:
        """Retrieve patterns ranked for injection into a task.

        Ordering: confidence DESC, then occurrence_count DESC, then
        last_used DESC. The last_used of every returned pattern is refreshed.

        Args:
            context_filter: Query context; None or "" matches every pattern.
            namespaces: Namespaces to search, typically ``resolve_chain(ns)``.
            min_confidence: Minimum confidence to include.
            limit: Maximum number of patterns to return.
            matcher: Context predicate; defaults to case-insensitive substring.

        Returns:
            Up to ``limit`` patterns; an empty list when nothing matches.

        Raises:
            InvalidInputError: If limit < 1 or min_confidence is outside [0, 1].
        """
        if limit < 1:
            raise InvalidInputError(f"limit must be at least 1, got {limit}")
        if not (math.isfinite(min_confidence) and 0.0 <= min_confidence <= 1.0):
            raise InvalidInputError(
                f"min_confidence must be within [0.0, 1.0], got {min_confidence!r}"
            )
        match = matcher or substring_match
        query = context_filter or ""
        ns_list = list(dict.fromkeys(namespaces))

        wb = WhereBuilder()
        wb.add_in("namespace", ns_list)
        wb.add("confidence >= ?", min_confidence)
        where_sql, params = wb.build()

        with self._write_transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {_PATTERN_COLUMNS} FROM patterns
                WHERE {where_sql}
                ORDER BY confidence DESC, occurrence_count DESC, last_used DESC
                """,
                params,
            ).fetchall()
            records: list[PatternRecord] = []
            for row in rows:
                if match(query, row["context"]):
                    records.append(self._row_to_pattern(row))
                    if len(records) >= limit:
                        break

            self._touch(conn, records)

        self._logger.debug(
            "patterns_queried",
            namespaces=ns_list,
            context_filter=query,
            returned=len(records),
        )
        return records

    def get_pattern(self, pattern_id: str) -> PatternRecord | None:
        """Get a pattern by id, refreshing its last_used."""
        with self._write_transaction() as conn:
            row = conn.execute(
                f"SELECT {_PATTERN_COLUMNS} FROM patterns WHERE pattern_id = ?",
                (pattern_id,),
            ).fetchone()
            if row is None:
                return None
            record = self._row_to_pattern(row)
            self._touch(conn, [record])
        return record

    def find_pattern(
        self, pattern: str, namespace: str = DEFAULT_NAMESPACE
    ) -> PatternRecord | None:
        """Get a pattern by its (text, namespace) key, refreshing its last_used."""
        with self._write_transaction() as conn:
            row = conn.execute(
                f"SELECT {_PATTERN_COLUMNS} FROM patterns "
                "WHERE pattern = ? AND namespace = ?",
                (pattern.strip(), namespace),
            ).fetchone()
            if row is None:
                return None
            record = self._row_to_pattern(row)
            self._touch(conn, [record])
        return record

    def peek_pattern(self, pattern_id: str) -> PatternRecord | None:
        """Get a pattern by id without touching last_used."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {_PATTERN_COLUMNS} FROM patterns WHERE pattern_id = ?",
                (pattern_id,),
            ).fetchone()
        return self._row_to_pattern(row) if row else None

    def list_patterns(self, namespace: str | None = None) -> list[PatternRecord]:
        """List all live patterns without touching last_used.

        Consolidation reads through this, so listing never keeps a stale
        pattern alive.
        """
        wb = WhereBuilder()
        if namespace is not None:
            wb.add("namespace = ?", namespace)
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT {_PATTERN_COLUMNS} FROM patterns WHERE {where_sql} "
                "ORDER BY namespace, confidence DESC, pattern",
                params,
            ).fetchall()
        return [self._row_to_pattern(row) for row in rows]

    def _touch(self, conn: sqlite3.Connection, records: list[PatternRecord]) -> None:
        """Set last_used to now on the given patterns and their records."""
        if not records:
            return
        now = self._now()
        ids = [r.pattern_id for r in records]
        placeholders = ", ".join("?" for _ in ids)
        conn.execute(
            f"UPDATE patterns SET last_used = ? WHERE pattern_id IN ({placeholders})",
            (now.isoformat(), *ids),
        )
        for record in records:
            record.last_used = now

    def delete_pattern(self, pattern_id: str, replaced_by: str | None = None) -> None:
        """Delete a pattern from the live table.

        Failure rows naming the pattern are re-pointed to ``replaced_by`` when
        given. Otherwise their ``pattern_id`` is cleared, while
        ``resolution_pattern_id`` keeps naming the pattern that fixed them.

        Raises:
            NotFoundError: If no live pattern has this id.
        """
        with self._write_transaction() as conn:
            self._delete_pattern(conn, pattern_id, replaced_by)
        self._logger.info("pattern_deleted", pattern_id=pattern_id, replaced_by=replaced_by)

    def _delete_pattern(
        self,
        conn: sqlite3.Connection,
        pattern_id: str,
        replaced_by: str | None,
    ) -> None:
        cursor = conn.execute("DELETE FROM patterns WHERE pattern_id = ?", (pattern_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("pattern", pattern_id)
        if replaced_by is not None:
            conn.execute(
                "UPDATE failures SET pattern_id = ? WHERE pattern_id = ?",
                (replaced_by, pattern_id),
            )
            conn.execute(
                "UPDATE failures SET resolution_pattern_id = ? "
                "WHERE resolution_pattern_id = ?",
                (replaced_by, pattern_id),
            )
        else:
            conn.execute(
                "UPDATE failures SET pattern_id = NULL WHERE pattern_id = ?",
                (pattern_id,),
            )

    def archive_pattern(
        self,
        pattern_id: str,
        reason: ArchiveReason = ArchiveReason.MANUAL,
    ) -> ArchivedPatternRecord:
        """Move a pattern into the archive under the same id.

        Failure references are left untouched and resolve via the archive.

        Raises:
            NotFoundError: If no live pattern has this id.
        """
        now = self._now()
        with self._write_transaction() as conn:
            if self._archive_patterns(conn, [pattern_id], reason, now) == 0:
                raise NotFoundError("pattern", pattern_id)
            row = conn.execute(
                "SELECT * FROM patterns_archive WHERE pattern_id = ? "
                "ORDER BY archive_id DESC LIMIT 1",
                (pattern_id,),
            ).fetchone()
        self._logger.info("pattern_archived", pattern_id=pattern_id, reason=reason.value)
        return self._row_to_archived(row)

    @staticmethod
    def _archive_patterns(
        conn: sqlite3.Connection,
        pattern_ids: list[str],
        reason: ArchiveReason,
        now: datetime,
    ) -> int:
        """Copy patterns into the archive and remove them from the live table."""
        if not pattern_ids:
            return 0
        placeholders = ", ".join("?" for _ in pattern_ids)
        conn.execute(
            f"""
            INSERT INTO patterns_archive (
                {_PATTERN_COLUMNS}, archived_at, archive_reason
            )
            SELECT {_PATTERN_COLUMNS}, ?, ? FROM patterns
            WHERE pattern_id IN ({placeholders})
            """,
            (now.isoformat(), reason.value, *pattern_ids),
        )
        cursor = conn.execute(
            f"DELETE FROM patterns WHERE pattern_id IN ({placeholders})",
            tuple(pattern_ids),
        )
        return cursor.rowcount

    def get_archived_patterns(
        self, namespace: str | None = None
    ) -> list[ArchivedPatternRecord]:
        """List archived patterns, most recently archived first."""
        wb = WhereBuilder()
        if namespace is not None:
            wb.add("namespace = ?", namespace)
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM patterns_archive WHERE {where_sql} "
                "ORDER BY archived_at DESC, archive_id DESC",
                params,
            ).fetchall()
        return [self._row_to_archived(row) for row in rows]

    @staticmethod
    def _row_to_pattern(row: sqlite3.Row) -> PatternRecord:
        return PatternRecord(
            pattern_id=row["pattern_id"],
            pattern=row["pattern"],
            context=row["context"],
            confidence=row["confidence"],
            outcome=Outcome(row["outcome"]),
            occurrence_count=row["occurrence_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_used=datetime.fromisoformat(row["last_used"]),
            namespace=row["namespace"],
        )

    @staticmethod
    def _row_to_archived(row: sqlite3.Row) -> ArchivedPatternRecord:
        return ArchivedPatternRecord(
            archive_id=row["archive_id"],
            pattern_id=row["pattern_id"],
            pattern=row["pattern"],
            context=row["context"],
            confidence=row["confidence"],
            outcome=Outcome(row["outcome"]),
            occurrence_count=row["occurrence_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_used=datetime.fromisoformat(row["last_used"]),
            namespace=row["namespace"],
            archived_at=datetime.fromisoformat(row["archived_at"]),
            archive_reason=ArchiveReason(row["archive_reason"]),
        )
