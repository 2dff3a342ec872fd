"""Shared test helpers for patternbank tests."""

from datetime import datetime

from patternbank.learning.store import LearningStore


def set_pattern_times(
    store: LearningStore,
    pattern_id: str,
    last_used: datetime | None = None,
    created_at: datetime | None = None,
) -> None:
    """Backdate a pattern's timestamps directly in SQLite."""
    with store._get_connection() as conn:
        if last_used is not None:
            conn.execute(
                "UPDATE patterns SET last_used = ? WHERE pattern_id = ?",
                (last_used.isoformat(), pattern_id),
            )
        if created_at is not None:
            conn.execute(
                "UPDATE patterns SET created_at = ? WHERE pattern_id = ?",
                (created_at.isoformat(), pattern_id),
            )


def set_pattern_state(
    store: LearningStore,
    pattern_id: str,
    confidence: float,
    occurrence_count: int,
) -> None:
    """Force a pattern's confidence and occurrence count directly in SQLite."""
    with store._get_connection() as conn:
        conn.execute(
            "UPDATE patterns SET confidence = ?, occurrence_count = ? WHERE pattern_id = ?",
            (confidence, occurrence_count, pattern_id),
        )
