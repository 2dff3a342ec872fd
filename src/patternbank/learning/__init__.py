"""Learning module: confidence rules, the SQLite store, consolidation and retrieval."""

from patternbank.learning.confidence import (
    ConfidenceUpdater,
    Outcome,
    blend_confidence,
    update_confidence,
)
from patternbank.learning.matching import (
    NearDuplicate,
    SimilarityMatcher,
    exact_match,
    matcher_for,
    substring_match,
    tag_match,
)
from patternbank.learning.store import (
    ArchivedPatternRecord,
    ArchiveReason,
    CausalLink,
    CausalPath,
    ConsolidationResult,
    FailureRecord,
    LearningStore,
    LinkType,
    NamespaceRecord,
    PatternRecord,
    open_store,
)
from patternbank.learning.consolidator import Consolidator
from patternbank.learning.facade import OutcomeRecord, RetrievalFacade

__all__ = [
    # Confidence
    "ConfidenceUpdater",
    "Outcome",
    "blend_confidence",
    "update_confidence",
    # Matching
    "NearDuplicate",
    "SimilarityMatcher",
    "exact_match",
    "matcher_for",
    "substring_match",
    "tag_match",
    # Store
    "ArchiveReason",
    "ArchivedPatternRecord",
    "CausalLink",
    "CausalPath",
    "ConsolidationResult",
    "FailureRecord",
    "LearningStore",
    "LinkType",
    "NamespaceRecord",
    "PatternRecord",
    "open_store",
    # Maintenance and retrieval
    "Consolidator",
    "OutcomeRecord",
    "RetrievalFacade",
]
