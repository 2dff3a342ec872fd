"""Patternbank: a local pattern-learning store for task runners.

Records which approaches worked or failed per context, tracks cause -> effect
links, scopes everything by hierarchical namespace, and hands the most
trusted patterns back before the next task.
"""


from patternbank.core.config import PatternBankConfig
from patternbank.core.errors import (
    ConsolidationInProgressError,
    CycleDetectedError,
    InvalidInputError,
    NotFoundError,
    PatternBankError,
    StorageFailureError,
)
from patternbank.learning import (
    Consolidator,
    LearningStore,
    Outcome,
    RetrievalFacade,
    open_store,
)

__version__ = "0.3.0"

__all__ = [
    "__version__",
    "ConsolidationInProgressError",
    "Consolidator",
    "CycleDetectedError",
    "InvalidInputError",
    "LearningStore",
    "NotFoundError",
    "Outcome",
    "PatternBankConfig",
    "PatternBankError",
    "RetrievalFacade",
    "StorageFailureError",
    "open_store",
]
