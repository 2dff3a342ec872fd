"""Failure mixin for LearningStore.

Failures are append-only training signal: they are never deleted, and the
only mutation is marking one resolved by a pattern.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta

from patternbank.core.errors import InvalidInputError, NotFoundError
from patternbank.core.logging import BankLogger
from patternbank.learning.store.base import WhereBuilder
from patternbank.learning.store.models import FailureRecord


class FailureMixin:
    """Mixin providing failure-record methods for LearningStore.

    This mixin requires that the composed class provides:
    - _get_connection() / _write_transaction(): connection context managers
    """

    _logger: BankLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _write_transaction: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _now: Callable[[], datetime]

    def record_failure(
        self,
        context: str,
        error_type: str,
        error_message: str = "",
        pattern_id: str | None = None,
    ) -> FailureRecord:
        """Append a failed attempt.

        Args:
            context: Task/domain context the failure happened in.
            error_type: Error class name or category, e.g. "ForeignKeyViolation".
            error_message: Error detail.
            pattern_id: Pattern that was being applied, if any.

        Returns:
            The stored failure.

        Raises:
            InvalidInputError: If error_type is blank.
        """
        if not error_type or not error_type.strip():
            raise InvalidInputError("error_type must not be empty")

        record = FailureRecord(
            failure_id=str(uuid.uuid4()),
            context=context,
            error_type=error_type.strip(),
            error_message=error_message,
            occurred_at=self._now(),
            pattern_id=pattern_id,
        )
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO failures (
                    failure_id, pattern_id, context, error_type, error_message,
                    occurred_at, resolved, resolution_pattern_id
                ) VALUES (?, ?, ?, ?, ?, ?, 0, NULL)
                """,
                (
                    record.failure_id,
                    record.pattern_id,
                    record.context,
                    record.error_type,
                    record.error_message,
                    record.occurred_at.isoformat(),
                ),
            )

        self._logger.info(
            "failure_recorded",
            failure_id=record.failure_id,
            error_type=record.error_type,
            context=context,
        )
        return record

    def get_failure(self, failure_id: str) -> FailureRecord | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM failures WHERE failure_id = ?", (failure_id,)
            ).fetchone()
        return self._row_to_failure(row) if row else None

    def mark_resolved(self, failure_id: str, resolution_pattern_id: str) -> FailureRecord:
        """Mark a failure as resolved by a pattern.

        The pattern may be live or archived.

        Raises:
            NotFoundError: If the failure or the pattern does not exist.
        """
        with self._write_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM failures WHERE failure_id = ?", (failure_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("failure", failure_id)
            if not self._pattern_exists(conn, resolution_pattern_id):
                raise NotFoundError("pattern", resolution_pattern_id)
            conn.execute(
                "UPDATE failures SET resolved = 1, resolution_pattern_id = ? "
                "WHERE failure_id = ?",
                (resolution_pattern_id, failure_id),
            )
            row = conn.execute(
                "SELECT * FROM failures WHERE failure_id = ?", (failure_id,)
            ).fetchone()

        self._logger.info(
            "failure_resolved",
            failure_id=failure_id,
            resolution_pattern_id=resolution_pattern_id,
        )
        return self._row_to_failure(row)

    def resolve_open_failures(self, context: str, resolution_pattern_id: str) -> int:
        """Resolve every unresolved failure recorded for a context.

        Called when a later success addresses the same context.

        Returns:
            Number of failures resolved.

        Raises:
            NotFoundError: If the pattern does not exist.
        """
        with self._write_transaction() as conn:
            if not self._pattern_exists(conn, resolution_pattern_id):
                raise NotFoundError("pattern", resolution_pattern_id)
            cursor = conn.execute(
                "UPDATE failures SET resolved = 1, resolution_pattern_id = ? "
                "WHERE context = ? AND resolved = 0",
                (resolution_pattern_id, context),
            )
            resolved = cursor.rowcount

        if resolved:
            self._logger.info(
                "failures_resolved",
                context=context,
                count=resolved,
                resolution_pattern_id=resolution_pattern_id,
            )
        return resolved

    def query_failures_by_type(
        self,
        error_type: str,
        within: timedelta | None = None,
    ) -> list[FailureRecord]:
        """Get failures of one error type, oldest first.

        Args:
            error_type: Error type to match exactly.
            within: Only include failures that occurred within this window
                before now.
        """
        wb = WhereBuilder()
        wb.add("error_type = ?", error_type)
        if within is not None:
            wb.add("occurred_at >= ?", (self._now() - within).isoformat())
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM failures WHERE {where_sql} ORDER BY occurred_at, rowid",
                params,
            ).fetchall()
        return [self._row_to_failure(row) for row in rows]

    def has_failed_before(self, context: str, error_type: str | None = None) -> bool:
        """Whether any failure was ever recorded for a context (and error type)."""
        wb = WhereBuilder()
        wb.add("context = ?", context)
        if error_type is not None:
            wb.add("error_type = ?", error_type)
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT 1 FROM failures WHERE {where_sql} LIMIT 1", params
            ).fetchone()
        return row is not None

    def count_failures_by_type(self, within: timedelta | None = None) -> dict[str, int]:
        """Count failures per error type, most frequent first."""
        wb = WhereBuilder()
        if within is not None:
            wb.add("occurred_at >= ?", (self._now() - within).isoformat())
        where_sql, params = wb.build()
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT error_type, COUNT(*) AS n FROM failures
                WHERE {where_sql}
                GROUP BY error_type
                ORDER BY n DESC, error_type
                """,
                params,
            ).fetchall()
        return {row["error_type"]: row["n"] for row in rows}

    @staticmethod
    def _pattern_exists(conn: sqlite3.Connection, pattern_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM patterns WHERE pattern_id = ? "
            "UNION ALL SELECT 1 FROM patterns_archive WHERE pattern_id = ? LIMIT 1",
            (pattern_id, pattern_id),
        ).fetchone()
        return row is not None

    @staticmethod
    def _row_to_failure(row: sqlite3.Row) -> FailureRecord:
        return FailureRecord(
            failure_id=row["failure_id"],
            context=row["context"],
            error_type=row["error_type"],
            error_message=row["error_message"],
            occurred_at=datetime.fromisoformat(row["occurred_at"]),
            pattern_id=row["pattern_id"],
            resolved=bool(row["resolved"]),
            resolution_pattern_id=row["resolution_pattern_id"],
        )
