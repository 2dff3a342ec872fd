"""Data models for the learning store.

Dataclasses and enums for the records persisted in SQLite: patterns and
their archive, failures, causal links and namespaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from patternbank.learning.confidence import Outcome

ROOT_NAMESPACE = "root"
DEFAULT_NAMESPACE = "default"


class LinkType(str, Enum):
    """Kind of relationship a causal link records."""

    SEQUENTIAL = "sequential"
    """Effect was observed after cause, without a claim of causation."""

    CAUSAL = "causal"
    """Cause is believed to produce effect."""

    CONDITIONAL = "conditional"
    """Cause produces effect only under some further condition."""


class ArchiveReason(str, Enum):
    """Why a pattern was moved out of the hot table."""

    STALE = "stale"
    PRUNED = "pruned"
    MANUAL = "manual"


@dataclass
class PatternRecord:
    """A pattern: a (text, namespace) observation with an evolving confidence."""

    pattern_id: str
    pattern: str
    context: str
    confidence: float
    outcome: Outcome
    occurrence_count: int
    created_at: datetime
    last_used: datetime
    namespace: str = DEFAULT_NAMESPACE


@dataclass
class ArchivedPatternRecord(PatternRecord):
    """A pattern moved to the archive, with when and why."""

    archived_at: datetime | None = None
    archive_reason: ArchiveReason = ArchiveReason.MANUAL
    archive_id: int | None = None


@dataclass
class FailureRecord:
    """A failed attempt, kept permanently as learning signal.

    ``resolved`` implies ``resolution_pattern_id`` is set.
    """

    failure_id: str
    context: str
    error_type: str
    error_message: str
    occurred_at: datetime
    pattern_id: str | None = None
    resolved: bool = False
    resolution_pattern_id: str | None = None


@dataclass
class CausalLink:
    """A directed, confidence-weighted cause -> effect edge."""

    link_id: str
    cause: str
    effect: str
    link_type: LinkType
    confidence: float
    evidence_count: int
    first_observed: datetime
    last_observed: datetime


@dataclass
class CausalPath:
    """A chain of causal links ending at a target effect.

    ``nodes`` runs from the root cause to the target; ``links[i]`` joins
    ``nodes[i]`` to ``nodes[i + 1]``.
    """

    nodes: list[str]
    links: list[CausalLink] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        """Mean confidence of the links along the path."""
        if not self.links:
            return 0.0
        return sum(link.confidence for link in self.links) / len(self.links)

    @property
    def depth(self) -> int:
        return len(self.links)


@dataclass
class NamespaceRecord:
    """A node in the namespace forest."""

    name: str
    parent: str | None = None
    description: str | None = None


@dataclass
class ConsolidationResult:
    """Counts of what one consolidation run changed."""

    merged: int = 0
    pruned: int = 0
    archived: int = 0
    links_pruned: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.merged or self.pruned or self.archived or self.links_pruned)


__all__ = [
    "DEFAULT_NAMESPACE",
    "ROOT_NAMESPACE",
    "ArchiveReason",
    "ArchivedPatternRecord",
    "CausalLink",
    "CausalPath",
    "ConsolidationResult",
    "FailureRecord",
    "LinkType",
    "NamespaceRecord",
    "Outcome",
    "PatternRecord",
]
