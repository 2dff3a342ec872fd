"""Tests for the causal-link mixin of LearningStore."""

from __future__ import annotations

import pytest

from patternbank.core.errors import InvalidInputError
from patternbank.learning.store import LearningStore, LinkType


class TestAddOrReinforceLink:
    """Tests for recording cause -> effect observations."""

    def test_new_link_from_success(self, store: LearningStore) -> None:
        link = store.add_or_reinforce_link("A", "B", observed_success=True)
        assert link.confidence == pytest.approx(0.55)
        assert link.evidence_count == 1
        assert link.link_type is LinkType.CAUSAL
        assert link.first_observed == link.last_observed

    def test_reinforcement_blends(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("A", "B", observed_success=True)
        link = store.add_or_reinforce_link("A", "B", observed_success=False)
        assert link.confidence == pytest.approx(0.55 * 0.9)
        assert link.evidence_count == 2
        assert store.get_link("A", "B") == link

    def test_link_types_are_separate(self, store: LearningStore) -> None:
        causal = store.add_or_reinforce_link("A", "B", True)
        sequential = store.add_or_reinforce_link("A", "B", True, link_type="sequential")
        assert causal.link_id != sequential.link_id
        assert store.get_link("A", "B", LinkType.SEQUENTIAL) == sequential

    @pytest.mark.parametrize(("cause", "effect"), [("", "B"), ("A", "  "), ("A", "A")])
    def test_invalid_links(self, store: LearningStore, cause: str, effect: str) -> None:
        with pytest.raises(InvalidInputError):
            store.add_or_reinforce_link(cause, effect, True)

    def test_unknown_link_type(self, store: LearningStore) -> None:
        with pytest.raises(InvalidInputError):
            store.add_or_reinforce_link("A", "B", True, link_type="because")

    def test_links_from_and_to(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("A", "C", True)
        store.add_or_reinforce_link("B", "C", False)
        store.add_or_reinforce_link("A", "D", True)

        assert [link.cause for link in store.links_to("C")] == ["A", "B"]
        assert [link.cause for link in store.links_to("C", min_confidence=0.5)] == ["A"]
        assert {link.effect for link in store.links_from("A")} == {"C", "D"}


class TestCausalChain:
    """Tests for backward chain traversal."""

    def test_two_step_chain(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("A", "B", True)
        store.add_or_reinforce_link("B", "C", True)

        [path] = store.causal_chain("C", 5)

        assert path.nodes == ["A", "B", "C"]
        assert path.depth == 2
        assert path.confidence == pytest.approx((0.55 + 0.55) / 2)
        assert [(link.cause, link.effect) for link in path.links] == [("A", "B"), ("B", "C")]

    def test_no_causes(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("A", "B", True)
        assert store.causal_chain("A") == []
        assert store.causal_chain("unknown") == []

    def test_depth_limit(self, store: LearningStore) -> None:
        for cause, effect in [("A", "B"), ("B", "C"), ("C", "D"), ("D", "E")]:
            store.add_or_reinforce_link(cause, effect, True)

        [path] = store.causal_chain("E", max_depth=2)
        assert path.nodes == ["C", "D", "E"]

    def test_cycle_terminates(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("A", "B", True)
        store.add_or_reinforce_link("B", "A", True)

        paths = store.causal_chain("A", max_depth=10)

        assert [p.nodes for p in paths] == [["B", "A"]]
        for path in paths:
            assert len(set(path.nodes)) == len(path.nodes)

    def test_branches_ranked_by_mean_confidence(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("strong", "target", True)
        store.add_or_reinforce_link("strong", "target", True)
        store.add_or_reinforce_link("weak", "target", False)

        paths = store.causal_chain("target")

        assert [p.nodes[0] for p in paths] == ["strong", "weak"]
        assert paths[0].confidence > paths[1].confidence

    def test_min_confidence_prunes_edges(self, store: LearningStore) -> None:
        store.add_or_reinforce_link("A", "B", False)
        store.add_or_reinforce_link("B", "C", True)

        [path] = store.causal_chain("C", min_confidence=0.5)
        assert path.nodes == ["B", "C"]

    def test_invalid_depth(self, store: LearningStore) -> None:
        with pytest.raises(InvalidInputError):
            store.causal_chain("C", max_depth=0)
