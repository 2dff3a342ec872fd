"""Confidence update rules.

Pattern confidence follows an asymmetric fixed-rate rule: each success
closes a fraction ``alpha`` of the gap to 1.0, each failure removes a
fraction ``beta`` of the current value. With the default rates a pattern
gains trust gradually and a single failure discounts it without zeroing it::

    0.5 -> 0.55 -> 0.595 -> ...   (success, alpha = 0.1)
    0.912 -> 0.7752               (failure, beta = 0.15)

Causal links use a separate exponential blend toward 1.0 or 0.0.
"""

from __future__ import annotations

import math
from enum import Enum

from patternbank.core.config import ConfidenceConfig
from patternbank.core.errors import InvalidInputError


class Outcome(str, Enum):
    """Outcome of the most recent observation of a pattern."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


def coerce_outcome(outcome: Outcome | str) -> Outcome:
    """Convert a caller-supplied outcome, rejecting unknown values.

    Raises:
        InvalidInputError: If outcome is not one of success, failure, pending.
    """
    try:
        return Outcome(outcome)
    except ValueError as e:
        raise InvalidInputError(f"Unknown outcome: {outcome!r}") from e


DEFAULT_SUCCESS_RATE = 0.1
DEFAULT_FAILURE_RATE = 0.15
DEFAULT_BLEND_WEIGHT = 0.1


def clamp_unit(value: float) -> float:
    """Clamp a value into [0.0, 1.0]."""
    return max(0.0, min(1.0, value))


def _check_finite(prior: float) -> float:
    if not math.isfinite(prior):
        raise InvalidInputError(f"Confidence prior must be finite, got {prior!r}")
    return clamp_unit(prior)


def update_confidence(
    prior: float,
    outcome: Outcome,
    success_rate: float = DEFAULT_SUCCESS_RATE,
    failure_rate: float = DEFAULT_FAILURE_RATE,
) -> float:
    """Compute a pattern's confidence after one observed outcome.

    Args:
        prior: Current confidence. Out-of-range values are clamped first.
        outcome: Observed outcome. PENDING leaves the (clamped) prior unchanged.
        success_rate: Fraction of the remaining gap to 1.0 gained on success.
        failure_rate: Fraction of the current value lost on failure.

    Returns:
        New confidence in [0.0, 1.0].

    Raises:
        InvalidInputError: If prior is NaN or infinite.
    """
    p = _check_finite(prior)
    if outcome is Outcome.SUCCESS:
        return clamp_unit(p + (1.0 - p) * success_rate)
    if outcome is Outcome.FAILURE:
        return clamp_unit(p - p * failure_rate)
    return p


def blend_confidence(
    prior: float,
    observed_success: bool,
    weight: float = DEFAULT_BLEND_WEIGHT,
) -> float:
    """Blend one observation into a causal link's confidence.

    ``new = prior * (1 - weight) + weight * (1.0 if observed_success else 0.0)``
    """
    p = _check_finite(prior)
    target = 1.0 if observed_success else 0.0
    return clamp_unit(p * (1.0 - weight) + weight * target)


class ConfidenceUpdater:
    """Applies the confidence rules with configured rates."""

    def __init__(self, config: ConfidenceConfig | None = None) -> None:
        self.config = config or ConfidenceConfig()

    @property
    def initial(self) -> float:
        return self.config.initial_confidence

    def update(self, prior: float, outcome: Outcome) -> float:
        return update_confidence(
            prior,
            outcome,
            success_rate=self.config.success_rate,
            failure_rate=self.config.failure_rate,
        )

    def blend(self, prior: float, observed_success: bool) -> float:
        return blend_confidence(prior, observed_success, self.config.causal_blend_weight)


__all__ = [
    "ConfidenceUpdater",
    "Outcome",
    "blend_confidence",
    "clamp_unit",
    "coerce_outcome",
    "update_confidence",
]
