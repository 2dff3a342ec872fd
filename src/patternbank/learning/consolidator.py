"""Periodic consolidation of the learning store.

One run performs, in a single write transaction:

1. merge: near-duplicate patterns in the same namespace are folded into one
   (mean confidence, summed occurrences);
2. prune: low-confidence patterns that are stale and were observed often
   enough are archived as ``pruned``, and weak stale causal links are deleted;
3. archive: patterns untouched for the longer window are archived as
   ``stale`` regardless of confidence.

Running twice with no writes in between changes nothing the second time.
Scheduling is the caller's concern; a run only guards against overlapping
with another run via an advisory lock file next to the database.
"""

from __future__ import annotations

import fcntl
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from patternbank.core.config import ConsolidationConfig
from patternbank.core.errors import ConsolidationInProgressError
from patternbank.core.logging import get_logger
from patternbank.learning.matching import DuplicatePredicate, NearDuplicate
from patternbank.learning.store import ArchiveReason, LearningStore, PatternRecord
from patternbank.learning.store.models import ConsolidationResult

_logger = get_logger("learning.consolidator")


@dataclass
class _Cluster:
    """Patterns judged duplicates of a representative."""

    representative: PatternRecord
    duplicates: list[PatternRecord] = field(default_factory=list)


def _ranking_key(record: PatternRecord) -> tuple[float, int, str, str]:
    return (-record.confidence, -record.occurrence_count, record.created_at.isoformat(),
            record.pattern_id)


def cluster_duplicates(
    records: list[PatternRecord],
    is_duplicate: DuplicatePredicate,
) -> list[_Cluster]:
    """Greedily group one namespace's patterns around representatives.

    Patterns are visited strongest first; each joins the first representative
    it duplicates, or becomes a representative itself. Representatives are
    therefore pairwise non-duplicates, which keeps a second pass a no-op.
    """
    clusters: list[_Cluster] = []
    for record in sorted(records, key=_ranking_key):
        for cluster in clusters:
            if is_duplicate(cluster.representative.pattern, record.pattern):
                cluster.duplicates.append(record)
                break
        else:
            clusters.append(_Cluster(representative=record))
    return clusters


@contextmanager
def _advisory_lock(lock_path: Path) -> Iterator[None]:
    """Hold a non-blocking exclusive flock for the duration of the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            raise ConsolidationInProgressError(
                f"Another consolidation holds {lock_path}"
            ) from exc
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class Consolidator:
    """Merges, prunes and archives patterns in a LearningStore.

    Args:
        store: The store to consolidate.
        config: Thresholds; defaults to the store's configuration.
        is_duplicate: Symmetric near-duplicate predicate over pattern texts.
            Defaults to ``NearDuplicate(config.duplicate_threshold)``.
    """

    def __init__(
        self,
        store: LearningStore,
        config: ConsolidationConfig | None = None,
        is_duplicate: DuplicatePredicate | None = None,
    ) -> None:
        self.store = store
        self.config = config or store.settings.consolidation
        self.is_duplicate = is_duplicate or NearDuplicate(self.config.duplicate_threshold)

    @property
    def lock_path(self) -> Path:
        db_path = self.store.db_path
        return db_path.with_name(db_path.name + ".consolidate.lock")

    def run(
        self,
        now: datetime | None = None,
        prune_after: timedelta | None = None,
        archive_after: timedelta | None = None,
    ) -> ConsolidationResult:
        """Run one consolidation pass.

        Args:
            now: Reference time for the retention windows; defaults to now.
            prune_after: Override for the prune window.
            archive_after: Override for the archive window.

        Returns:
            Counts of merged, pruned and archived records.

        Raises:
            ConsolidationInProgressError: Another run holds the lock.
            StorageFailureError: The database failed; nothing was changed.
        """
        now = now or datetime.now()
        prune_cutoff = now - (prune_after or timedelta(days=self.config.prune_after_days))
        archive_cutoff = now - (
            archive_after or timedelta(days=self.config.archive_after_days)
        )
        result = ConsolidationResult()

        with _advisory_lock(self.lock_path):
            with self.store.batch_connection() as conn:
                result.merged = self._merge(conn)
                result.pruned = self._prune(conn, prune_cutoff, now)
                result.links_pruned = self._prune_links(conn, prune_cutoff)
                result.archived = self._archive(conn, archive_cutoff, now)

        _logger.info(
            "consolidation_completed",
            merged=result.merged,
            pruned=result.pruned,
            archived=result.archived,
            links_pruned=result.links_pruned,
        )
        return result

    def _merge(self, conn: sqlite3.Connection) -> int:
        by_namespace: dict[str, list[PatternRecord]] = {}
        for record in self.store.list_patterns():
            by_namespace.setdefault(record.namespace, []).append(record)

        merged = 0
        for namespace, records in by_namespace.items():
            for cluster in cluster_duplicates(records, self.is_duplicate):
                if not cluster.duplicates:
                    continue
                members = [cluster.representative, *cluster.duplicates]
                survivor = cluster.representative
                confidence = sum(m.confidence for m in members) / len(members)
                conn.execute(
                    """
                    UPDATE patterns SET
                        confidence = ?,
                        occurrence_count = ?,
                        last_used = ?,
                        created_at = ?
                    WHERE pattern_id = ?
                    """,
                    (
                        confidence,
                        sum(m.occurrence_count for m in members),
                        max(m.last_used for m in members).isoformat(),
                        min(m.created_at for m in members).isoformat(),
                        survivor.pattern_id,
                    ),
                )
                for duplicate in cluster.duplicates:
                    self.store._delete_pattern(conn, duplicate.pattern_id, survivor.pattern_id)
                merged += len(cluster.duplicates)
                _logger.debug(
                    "patterns_merged",
                    namespace=namespace,
                    survivor=survivor.pattern_id,
                    merged=[d.pattern_id for d in cluster.duplicates],
                )
        return merged

    def _prune(self, conn: sqlite3.Connection, cutoff: datetime, now: datetime) -> int:
        rows = conn.execute(
            """
            SELECT pattern_id FROM patterns
            WHERE confidence < ? AND last_used < ? AND occurrence_count > ?
            """,
            (self.config.prune_min_confidence, cutoff.isoformat(), self.config.min_observations),
        ).fetchall()
        ids = [row["pattern_id"] for row in rows]
        return self.store._archive_patterns(conn, ids, ArchiveReason.PRUNED, now)

    def _prune_links(self, conn: sqlite3.Connection, cutoff: datetime) -> int:
        cursor = conn.execute(
            """
            DELETE FROM causal_links
            WHERE confidence < ? AND last_observed < ? AND evidence_count > ?
            """,
            (self.config.prune_min_confidence, cutoff.isoformat(), self.config.min_observations),
        )
        return cursor.rowcount

    def _archive(self, conn: sqlite3.Connection, cutoff: datetime, now: datetime) -> int:
        rows = conn.execute(
            "SELECT pattern_id FROM patterns WHERE last_used < ?",
            (cutoff.isoformat(),),
        ).fetchall()
        ids = [row["pattern_id"] for row in rows]
        return self.store._archive_patterns(conn, ids, ArchiveReason.STALE, now)


__all__ = ["Consolidator", "cluster_duplicates"]
