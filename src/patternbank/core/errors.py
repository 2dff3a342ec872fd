"""Exception hierarchy for the pattern-learning store.

All store exceptions inherit from PatternBankError, enabling callers
to catch broad (PatternBankError) or narrow (e.g., NotFoundError).
The hierarchy is flat.
"""

from __future__ import annotations


class PatternBankError(Exception):
    """Base exception for all pattern-learning store errors."""


class InvalidInputError(PatternBankError, ValueError):
    """Raised when a caller passes malformed input.

    Examples: empty pattern text, malformed namespace name, an explicit
    confidence outside [0.0, 1.0], a non-finite prior.
    """


class NotFoundError(PatternBankError, LookupError):
    """Raised when an id or name references a record that does not exist.

    Attributes:
        kind: Record kind ("pattern", "failure", "namespace").
        key: The id or name that was looked up.
    """

    def __init__(self, kind: str, key: str, message: str | None = None):
        self.kind = kind
        self.key = key
        super().__init__(message or f"Unknown {kind}: {key!r}")


class CycleDetectedError(PatternBankError):
    """Raised when a parent chain loops or exceeds the hop limit.

    Attributes:
        chain: The names visited before the walk was aborted.
    """

    def __init__(self, chain: list[str], message: str | None = None):
        self.chain = chain
        if message is None:
            message = f"Cycle detected in namespace chain: {' -> '.join(chain)}"
        super().__init__(message)


class StorageFailureError(PatternBankError):
    """Raised when the underlying SQLite database fails.

    The original ``sqlite3.Error`` is always chained as ``__cause__``.
    """


class ConsolidationInProgressError(PatternBankError):
    """Raised when another consolidation run holds the advisory lock."""


__all__ = [
    "ConsolidationInProgressError",
    "CycleDetectedError",
    "InvalidInputError",
    "NotFoundError",
    "PatternBankError",
    "StorageFailureError",
]
