"""Pre-task / post-task entry points for task runners.

A task runner calls ``query_relevant`` before starting work to get the
patterns worth injecting, and ``record_outcome`` afterwards so the store
learns from what happened. Nothing is intercepted implicitly: the runner
decides when to call either.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from patternbank.core.config import RetrievalConfig
from patternbank.core.logging import TaskContext, get_logger, with_context
from patternbank.learning.confidence import coerce_outcome
from patternbank.learning.matching import ContextMatcher, matcher_for
from patternbank.learning.store import (
    DEFAULT_NAMESPACE,
    CausalLink,
    FailureRecord,
    LearningStore,
    LinkType,
    Outcome,
    PatternRecord,
)

_logger = get_logger("learning.facade")

DEFAULT_ERROR_TYPE = "TaskFailure"


@dataclass
class OutcomeRecord:
    """Everything ``record_outcome`` wrote for one finished task."""

    pattern: PatternRecord
    failure: FailureRecord | None = None
    failures_resolved: int = 0
    links: list[CausalLink] = field(default_factory=list)


class RetrievalFacade:
    """Entry points a task runner uses around each task.

    Args:
        store: The learning store.
        config: Retrieval defaults; defaults to the store's configuration.
        matcher: Context predicate; defaults to the one selected by
            ``config.match_mode``.
    """

    def __init__(
        self,
        store: LearningStore,
        config: RetrievalConfig | None = None,
        matcher: ContextMatcher | None = None,
    ) -> None:
        self.store = store
        self.config = config or store.settings.retrieval
        self.matcher = matcher or matcher_for(self.config)

    def query_relevant(
        self,
        task: str,
        namespace: str = DEFAULT_NAMESPACE,
        min_confidence: float | None = None,
        limit: int | None = None,
    ) -> list[PatternRecord]:
        """Patterns relevant to a task, searched in the namespace and its ancestors.

        Args:
            task: Task context used to match stored pattern contexts.
            namespace: Most specific namespace of the task.
            min_confidence: Overrides ``config.min_confidence``.
            limit: Overrides ``config.limit``.
        """
        with with_context(TaskContext(task=task, namespace=namespace)):
            chain = self.store.resolve_chain(namespace)
            patterns = self.store.query_patterns(
                task,
                chain,
                min_confidence=(
                    self.config.min_confidence if min_confidence is None else min_confidence
                ),
                limit=self.config.limit if limit is None else limit,
                matcher=self.matcher,
            )
            _logger.info("patterns_injected", count=len(patterns), chain=chain)
        return patterns

    def record_outcome(
        self,
        task: str,
        namespace: str,
        outcome: Outcome | str,
        pattern: str | None = None,
        causes_observed: Sequence[tuple[str, str]] | None = None,
        error_type: str | None = None,
        error_message: str = "",
        link_type: LinkType = LinkType.CAUSAL,
    ) -> OutcomeRecord:
        """Learn from a finished task.

        All writes happen in one transaction:
        - the pattern (``pattern`` or, if omitted, the task text) is upserted
          with the task as its context;
        - a failure is recorded and linked to the pattern;
        - a success resolves earlier open failures of the same task context;
        - each ``(cause, effect)`` pair is reinforced, counting as success
          only when the task succeeded.

        Returns:
            The records written.

        Raises:
            InvalidInputError: If outcome is not a known value.
        """
        observed = coerce_outcome(outcome)
        with with_context(TaskContext(task=task, namespace=namespace)):
            with self.store.batch_connection():
                record = OutcomeRecord(
                    pattern=self.store.upsert_pattern(
                        pattern or task, namespace, observed, context=task
                    )
                )
                if observed is Outcome.FAILURE:
                    record.failure = self.store.record_failure(
                        context=task,
                        error_type=error_type or DEFAULT_ERROR_TYPE,
                        error_message=error_message,
                        pattern_id=record.pattern.pattern_id,
                    )
                elif observed is Outcome.SUCCESS:
                    record.failures_resolved = self.store.resolve_open_failures(
                        task, record.pattern.pattern_id
                    )
                for cause, effect in causes_observed or ():
                    record.links.append(
                        self.store.add_or_reinforce_link(
                            cause,
                            effect,
                            observed_success=observed is Outcome.SUCCESS,
                            link_type=link_type,
                        )
                    )

            _logger.info(
                "outcome_recorded",
                outcome=observed.value,
                pattern_id=record.pattern.pattern_id,
                confidence=round(record.pattern.confidence, 4),
                failures_resolved=record.failures_resolved,
                links=len(record.links),
            )
        return record


__all__ = ["DEFAULT_ERROR_TYPE", "OutcomeRecord", "RetrievalFacade"]
