"""Tests for patternbank.learning.consolidator."""

from __future__ import annotations

import fcntl
import os
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from patternbank.core.config import ConsolidationConfig, PatternBankConfig, StoreConfig
from patternbank.core.errors import ConsolidationInProgressError
from patternbank.learning.confidence import Outcome
from patternbank.learning.consolidator import Consolidator, cluster_duplicates
from patternbank.learning.matching import NearDuplicate
from patternbank.learning.store import ArchiveReason, LearningStore
from tests.helpers import set_pattern_state, set_pattern_times


def _backdate_link(store: LearningStore, cause: str, effect: str, when: datetime) -> None:
    with store._get_connection() as conn:
        conn.execute(
            "UPDATE causal_links SET last_observed = ? WHERE cause = ? AND effect = ?",
            (when.isoformat(), cause, effect),
        )


def _snapshot(store: LearningStore) -> tuple:
    """Everything consolidation can change, in a comparable form."""
    with store._get_connection() as conn:
        failures = [
            tuple(row) for row in conn.execute("SELECT * FROM failures ORDER BY failure_id")
        ]
        links = [
            tuple(row) for row in conn.execute("SELECT * FROM causal_links ORDER BY link_id")
        ]
    return store.list_patterns(), store.get_archived_patterns(), failures, links


class TestClusterDuplicates:
    """Tests for the greedy clustering step."""

    def test_groups_around_strongest(self, store: LearningStore) -> None:
        strong = store.upsert_pattern("Use conventional commits", "default", Outcome.SUCCESS)
        store.upsert_pattern("Use conventional commits", "default", Outcome.SUCCESS)
        weak = store.upsert_pattern("use conventional commits.", "default", Outcome.PENDING)
        other = store.upsert_pattern("squash before merge", "default", Outcome.SUCCESS)

        clusters = cluster_duplicates(store.list_patterns(), NearDuplicate(0.9))

        by_rep = {c.representative.pattern_id: c for c in clusters}
        assert set(by_rep) == {strong.pattern_id, other.pattern_id}
        assert [d.pattern_id for d in by_rep[strong.pattern_id].duplicates] == [weak.pattern_id]
        assert by_rep[other.pattern_id].duplicates == []


class TestMerge:
    """Tests for merging near-duplicates."""

    def test_merge_combines_statistics(self, store: LearningStore) -> None:
        a = store.upsert_pattern("Use conventional commits", "default", Outcome.SUCCESS)
        a = store.upsert_pattern("Use conventional commits", "default", Outcome.SUCCESS)
        b = store.upsert_pattern("use conventional commits.", "default", Outcome.SUCCESS)
        older = datetime.now() - timedelta(days=5)
        set_pattern_times(store, b.pattern_id, created_at=older)
        failure = store.record_failure("git_commit", "HookRejected", pattern_id=b.pattern_id)

        result = Consolidator(store).run()

        assert result.merged == 1
        assert store.get_pattern(b.pattern_id) is None
        survivor = store.get_pattern(a.pattern_id)
        assert survivor.confidence == pytest.approx((0.595 + 0.55) / 2)
        assert survivor.occurrence_count == 3
        assert survivor.created_at == older
        assert store.get_failure(failure.failure_id).pattern_id == a.pattern_id

    def test_namespaces_never_merge(self, store: LearningStore) -> None:
        store.upsert_pattern("run tests first", "team-a", Outcome.SUCCESS)
        store.upsert_pattern("run tests first", "team-b", Outcome.SUCCESS)
        assert Consolidator(store).run().merged == 0
        assert len(store.list_patterns()) == 2

    def test_custom_duplicate_predicate(self, store: LearningStore) -> None:
        store.upsert_pattern("alpha", "default", Outcome.SUCCESS)
        store.upsert_pattern("beta", "default", Outcome.SUCCESS)
        consolidator = Consolidator(store, is_duplicate=lambda a, b: True)
        assert consolidator.run().merged == 1
        assert len(store.list_patterns()) == 1


class TestPruneAndArchive:
    """Tests for retention."""

    def test_prunes_stale_low_confidence_pattern(self, store: LearningStore) -> None:
        p = store.upsert_pattern("flaky workaround", "default", Outcome.FAILURE)
        set_pattern_state(store, p.pattern_id, confidence=0.2, occurrence_count=5)
        set_pattern_times(store, p.pattern_id, last_used=datetime.now() - timedelta(days=100))

        result = Consolidator(store).run(prune_after=timedelta(days=90))

        assert result.pruned == 1
        assert store.get_pattern(p.pattern_id) is None
        [archived] = store.get_archived_patterns()
        assert archived.pattern_id == p.pattern_id
        assert archived.archive_reason is ArchiveReason.PRUNED

    def test_keeps_rarely_observed_pattern(self, store: LearningStore) -> None:
        p = store.upsert_pattern("tried once", "default", Outcome.FAILURE)
        set_pattern_state(store, p.pattern_id, confidence=0.2, occurrence_count=1)
        set_pattern_times(store, p.pattern_id, last_used=datetime.now() - timedelta(days=100))

        assert Consolidator(store).run().pruned == 0
        assert store.get_pattern(p.pattern_id) is not None

    def test_keeps_recent_low_confidence_pattern(self, store: LearningStore) -> None:
        p = store.upsert_pattern("recent", "default", Outcome.FAILURE)
        set_pattern_state(store, p.pattern_id, confidence=0.1, occurrence_count=10)
        assert Consolidator(store).run().pruned == 0

    def test_archives_stale_pattern_regardless_of_confidence(
        self, store: LearningStore
    ) -> None:
        p = store.upsert_pattern("old but good", "default", Outcome.SUCCESS)
        set_pattern_state(store, p.pattern_id, confidence=0.95, occurrence_count=40)
        set_pattern_times(store, p.pattern_id, last_used=datetime.now() - timedelta(days=200))

        result = Consolidator(store).run()

        assert result.archived == 1
        [archived] = store.get_archived_patterns()
        assert archived.archive_reason is ArchiveReason.STALE
        assert archived.confidence == pytest.approx(0.95)

    def test_prunes_weak_stale_links(self, store: LearningStore) -> None:
        for _ in range(4):
            store.add_or_reinforce_link("A", "B", observed_success=False)
        store.add_or_reinforce_link("C", "D", observed_success=False)
        _backdate_link(store, "A", "B", datetime.now() - timedelta(days=120))
        _backdate_link(store, "C", "D", datetime.now() - timedelta(days=120))

        config = ConsolidationConfig(prune_min_confidence=0.4)
        result = Consolidator(store, config=config).run()

        assert result.links_pruned == 1
        assert store.get_link("A", "B") is None
        assert store.get_link("C", "D") is not None

    def test_explicit_reference_time(self, store: LearningStore) -> None:
        p = store.upsert_pattern("p", "default", Outcome.SUCCESS)
        result = Consolidator(store).run(now=datetime.now() + timedelta(days=365))
        assert result.archived == 1
        assert store.get_pattern(p.pattern_id) is None


class TestRunSemantics:
    """Tests for idempotence and mutual exclusion."""

    def test_second_run_is_noop(self, store: LearningStore) -> None:
        store.upsert_pattern("Use conventional commits", "default", Outcome.SUCCESS)
        dup = store.upsert_pattern("use conventional commits.", "default", Outcome.SUCCESS)
        store.upsert_pattern("use  conventional  commits", "default", Outcome.PENDING)
        stale = store.upsert_pattern("stale", "default", Outcome.FAILURE)
        set_pattern_state(store, stale.pattern_id, confidence=0.2, occurrence_count=5)
        set_pattern_times(store, stale.pattern_id, last_used=datetime.now() - timedelta(days=100))
        store.record_failure("git_commit", "HookRejected", pattern_id=dup.pattern_id)
        store.record_failure("cleanup", "Timeout", pattern_id=stale.pattern_id)
        store.add_or_reinforce_link("lint", "commit", observed_success=True)

        first = Consolidator(store).run()
        snapshot = _snapshot(store)
        second = Consolidator(store).run()

        assert first.changed
        assert not second.changed
        assert _snapshot(store) == snapshot

    def test_runs_inside_enclosing_batch(self, tmp_path: Path) -> None:
        store = LearningStore(
            config=PatternBankConfig(
                store=StoreConfig(db_path=tmp_path / "bank.db", busy_timeout_seconds=0.5)
            )
        )
        a = store.upsert_pattern("Use conventional commits", "default", Outcome.SUCCESS)
        b = store.upsert_pattern("use conventional commits.", "default", Outcome.PENDING)

        with store.batch_connection():
            result = Consolidator(store).run()
            store.upsert_pattern("after consolidation", "default", Outcome.SUCCESS)

        assert result.merged == 1
        assert store.peek_pattern(b.pattern_id) is None
        assert store.peek_pattern(a.pattern_id) is not None
        assert store.find_pattern("after consolidation", "default") is not None

    def test_lock_held_by_other_run(self, store: LearningStore) -> None:
        consolidator = Consolidator(store)
        fd = os.open(str(consolidator.lock_path), os.O_RDWR | os.O_CREAT)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            with pytest.raises(ConsolidationInProgressError):
                consolidator.run()
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        assert not consolidator.run().changed

    def test_lock_file_next_to_database(self, store: LearningStore) -> None:
        lock_path = Consolidator(store).lock_path
        assert lock_path.parent == store.db_path.parent
        assert lock_path.name == "learning.db.consolidate.lock"
