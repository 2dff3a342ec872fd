"""Core infrastructure: configuration, errors, and structured logging."""

from patternbank.core.config import (
    DEFAULT_STORE_PATH,
    ConfidenceConfig,
    ConsolidationConfig,
    LogConfig,
    NamespaceConfig,
    PatternBankConfig,
    RetrievalConfig,
    StoreConfig,
)
from patternbank.core.errors import (
    ConsolidationInProgressError,
    CycleDetectedError,
    InvalidInputError,
    NotFoundError,
    PatternBankError,
    StorageFailureError,
)

__all__ = [
    "DEFAULT_STORE_PATH",
    "ConfidenceConfig",
    "ConsolidationConfig",
    "ConsolidationInProgressError",
    "CycleDetectedError",
    "InvalidInputError",
    "LogConfig",
    "NamespaceConfig",
    "NotFoundError",
    "PatternBankConfig",
    "PatternBankError",
    "RetrievalConfig",
    "StorageFailureError",
    "StoreConfig",
]
