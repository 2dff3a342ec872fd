"""Learning store with modular mixins.

This package provides the LearningStore class, composed from mixins that
each handle one kind of record:

- PatternMixin: pattern upsert, ranked query, archive and delete
- FailureMixin: append-only failure records and their resolution
- CausalMixin: cause -> effect links and bounded chain queries
- NamespaceMixin: namespace registration and hierarchy resolution

The base class (LearningStoreBase) provides:
- SQLite connection management with WAL mode
- Write transactions and sqlite3 error translation
- Schema creation and migration

Usage:
    from patternbank.learning.store import LearningStore

    store = LearningStore(db_path=Path("/tmp/learning.db"))

There is no process-wide store: every component receives its store
explicitly, so several isolated stores can coexist.
"""

from pathlib import Path

from patternbank.core.config import PatternBankConfig
from patternbank.core.logging import configure_logging
from patternbank.learning.confidence import ConfidenceUpdater
from patternbank.learning.store.base import LearningStoreBase, WhereBuilder
from patternbank.learning.store.causal import CausalMixin
from patternbank.learning.store.failures import FailureMixin
from patternbank.learning.store.models import (
    DEFAULT_NAMESPACE,
    ROOT_NAMESPACE,
    ArchivedPatternRecord,
    ArchiveReason,
    CausalLink,
    CausalPath,
    ConsolidationResult,
    FailureRecord,
    LinkType,
    NamespaceRecord,
    Outcome,
    PatternRecord,
)
from patternbank.learning.store.namespaces import NamespaceMixin
from patternbank.learning.store.patterns import PatternMixin


class LearningStore(
    PatternMixin,
    FailureMixin,
    CausalMixin,
    NamespaceMixin,
    LearningStoreBase,
):
    """Pattern-learning store combining all mixins.

    The base class is listed last so that mixins can rely on the connection
    helpers and logger it provides.

    Example:
        >>> store = LearningStore(db_path=Path("/tmp/learning.db"))
        >>> p = store.upsert_pattern("use conventional commits", "git_commit", Outcome.SUCCESS)
        >>> p.confidence
        0.55

    Attributes:
        db_path: Path to the SQLite database file.
        settings: Full configuration the store was built from.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        config: PatternBankConfig | None = None,
    ) -> None:
        self.settings = config or PatternBankConfig()
        self._confidence = ConfidenceUpdater(self.settings.confidence)
        super().__init__(db_path=db_path, config=self.settings.store)


def open_store(
    config: PatternBankConfig | None = None,
    db_path: Path | None = None,
    setup_logging: bool = True,
) -> LearningStore:
    """Build a store from configuration and register its declared namespaces.

    Args:
        config: Full configuration. Defaults to ``PatternBankConfig()``.
        db_path: Overrides ``config.store.db_path``.
        setup_logging: Apply ``config.logging`` to the process before opening.
    """
    config = config or PatternBankConfig()
    if setup_logging:
        configure_logging(**config.logging.model_dump())
    store = LearningStore(db_path=db_path, config=config)
    if config.namespaces:
        store.register_namespaces(config.namespaces)
    store._logger.info(
        "store_opened", db_path=str(store.db_path), namespaces=len(config.namespaces)
    )
    return store


__all__ = [
    "DEFAULT_NAMESPACE",
    "ROOT_NAMESPACE",
    "ArchiveReason",
    "ArchivedPatternRecord",
    "CausalLink",
    "CausalMixin",
    "CausalPath",
    "ConsolidationResult",
    "FailureMixin",
    "FailureRecord",
    "LearningStore",
    "LearningStoreBase",
    "LinkType",
    "NamespaceMixin",
    "NamespaceRecord",
    "Outcome",
    "PatternMixin",
    "PatternRecord",
    "WhereBuilder",
    "open_store",
]
