"""Causal graph mixin for LearningStore.

Stores directed cause -> effect links with a blended confidence and an
evidence count, and answers "what leads to this effect" with a bounded,
cycle-safe backward walk.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime

from patternbank.core.errors import InvalidInputError
from patternbank.core.logging import BankLogger
from patternbank.learning.confidence import ConfidenceUpdater
from patternbank.learning.store.models import CausalLink, CausalPath, LinkType

DEFAULT_CHAIN_DEPTH = 5


def _coerce_link_type(link_type: LinkType | str) -> LinkType:
    try:
        return LinkType(link_type)
    except ValueError as e:
        raise InvalidInputError(f"Unknown link type: {link_type!r}") from e


class CausalMixin:
    """Mixin providing causal-link methods for LearningStore.

    This mixin requires that the composed class provides:
    - _get_connection() / _write_transaction(): connection context managers
    - _confidence: ConfidenceUpdater with the configured blend weight
    """

    _logger: BankLogger
    _confidence: ConfidenceUpdater
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _write_transaction: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _now: Callable[[], datetime]

    def add_or_reinforce_link(
        self,
        cause: str,
        effect: str,
        observed_success: bool,
        link_type: LinkType | str = LinkType.CAUSAL,
    ) -> CausalLink:
        """Record one co-occurrence of cause and effect.

        The observation is blended into the link's confidence
        (``old * 0.9 + 0.1 * (1.0 if observed_success else 0.0)`` with the
        default weight). A new link starts from the neutral prior 0.5, so a
        first successful observation yields 0.55.

        Raises:
            InvalidInputError: Blank cause/effect, cause equal to effect, or
                unknown link type.
        """
        cause = cause.strip() if isinstance(cause, str) else ""
        effect = effect.strip() if isinstance(effect, str) else ""
        if not cause or not effect:
            raise InvalidInputError("cause and effect must not be empty")
        if cause == effect:
            raise InvalidInputError(f"A causal link cannot point to itself: {cause!r}")
        kind = _coerce_link_type(link_type)
        now = self._now().isoformat()

        with self._write_transaction() as conn:
            row = conn.execute(
                "SELECT link_id, confidence FROM causal_links "
                "WHERE cause = ? AND effect = ? AND link_type = ?",
                (cause, effect, kind.value),
            ).fetchone()
            if row is None:
                link_id = str(uuid.uuid4())
                confidence = self._confidence.blend(self._confidence.initial, observed_success)
                conn.execute(
                    """
                    INSERT INTO causal_links (
                        link_id, cause, effect, link_type, confidence,
                        evidence_count, first_observed, last_observed
                    ) VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                    """,
                    (link_id, cause, effect, kind.value, confidence, now, now),
                )
            else:
                link_id = row["link_id"]
                confidence = self._confidence.blend(row["confidence"], observed_success)
                conn.execute(
                    """
                    UPDATE causal_links SET
                        confidence = ?,
                        evidence_count = evidence_count + 1,
                        last_observed = ?
                    WHERE link_id = ?
                    """,
                    (confidence, now, link_id),
                )
            row = conn.execute(
                "SELECT * FROM causal_links WHERE link_id = ?", (link_id,)
            ).fetchone()

        link = self._row_to_link(row)
        self._logger.debug(
            "causal_link_reinforced",
            cause=cause,
            effect=effect,
            link_type=kind.value,
            confidence=round(link.confidence, 4),
            evidence_count=link.evidence_count,
        )
        return link

    def get_link(
        self,
        cause: str,
        effect: str,
        link_type: LinkType | str = LinkType.CAUSAL,
    ) -> CausalLink | None:
        kind = _coerce_link_type(link_type)
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM causal_links "
                "WHERE cause = ? AND effect = ? AND link_type = ?",
                (cause, effect, kind.value),
            ).fetchone()
        return self._row_to_link(row) if row else None

    def links_from(self, cause: str) -> list[CausalLink]:
        """Outgoing links of a node, strongest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM causal_links WHERE cause = ? "
                "ORDER BY confidence DESC, evidence_count DESC",
                (cause,),
            ).fetchall()
        return [self._row_to_link(row) for row in rows]

    def links_to(self, effect: str, min_confidence: float = 0.0) -> list[CausalLink]:
        """Incoming links of a node, strongest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM causal_links WHERE effect = ? AND confidence >= ? "
                "ORDER BY confidence DESC, evidence_count DESC",
                (effect, min_confidence),
            ).fetchall()
        return [self._row_to_link(row) for row in rows]

    def causal_chain(
        self,
        target_effect: str,
        max_depth: int = DEFAULT_CHAIN_DEPTH,
        min_confidence: float = 0.0,
    ) -> list[CausalPath]:
        """Find the chains of causes that lead to an effect.

        Walks links backwards from ``target_effect`` (each step follows a link
        whose effect is the previous step's cause). A path stops growing when
        no further cause exists, when it reaches ``max_depth`` links, or when
        the only causes left are already on the path. Only those maximal
        paths are returned, each as nodes from root cause to target.

        Args:
            target_effect: The effect to explain.
            max_depth: Maximum number of links per path.
            min_confidence: Ignore links below this confidence.

        Returns:
            Paths ordered by mean link confidence (descending), then by
            length (longer first). Empty if nothing leads to the effect.

        Raises:
            InvalidInputError: If max_depth < 1.
        """
        if max_depth < 1:
            raise InvalidInputError(f"max_depth must be at least 1, got {max_depth}")

        incoming: dict[str, list[CausalLink]] = {}

        def causes_of(node: str) -> list[CausalLink]:
            if node not in incoming:
                incoming[node] = self.links_to(node, min_confidence)
            return incoming[node]

        paths: list[CausalPath] = []
        # nodes run from the target backwards until reversed into a CausalPath
        stack: list[tuple[list[str], list[CausalLink]]] = [([target_effect], [])]
        while stack:
            nodes, links = stack.pop()
            extended = False
            if len(links) < max_depth:
                for link in causes_of(nodes[-1]):
                    if link.cause in nodes:
                        continue
                    stack.append((nodes + [link.cause], links + [link]))
                    extended = True
            if not extended and links:
                paths.append(CausalPath(nodes=nodes[::-1], links=links[::-1]))

        paths.sort(key=lambda p: (-p.confidence, -p.depth, p.nodes))
        self._logger.debug(
            "causal_chain_resolved",
            target_effect=target_effect,
            max_depth=max_depth,
            paths=len(paths),
        )
        return paths

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> CausalLink:
        first = row["first_observed"]
        last = row["last_observed"]
        return CausalLink(
            link_id=row["link_id"],
            cause=row["cause"],
            effect=row["effect"],
            link_type=LinkType(row["link_type"]),
            confidence=row["confidence"],
            evidence_count=row["evidence_count"],
            first_observed=datetime.fromisoformat(first) if first else datetime.min,
            last_observed=datetime.fromisoformat(last) if last else datetime.min,
        )
