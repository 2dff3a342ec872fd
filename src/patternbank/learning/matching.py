"""Context matching and near-duplicate detection.

Both are plain predicates so callers can inject their own (for example an
embedding-backed similarity) without the store depending on one:

- A ``ContextMatcher`` decides whether a query context selects a stored
  pattern context: ``matcher(query, context) -> bool``.
- A ``DuplicatePredicate`` decides whether two pattern texts in the same
  namespace should be merged: ``is_duplicate(a, b) -> bool``. It must be
  symmetric; consolidation relies on that for idempotence.
"""

from __future__ import annotations

import difflib
import re
from collections.abc import Callable

from patternbank.core.config import RetrievalConfig

ContextMatcher = Callable[[str, str], bool]
DuplicatePredicate = Callable[[str, str], bool]

_WHITESPACE = re.compile(r"\s+")
_TAG_SEPARATORS = re.compile(r"[,\s]+")


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return _WHITESPACE.sub(" ", text.strip().lower())


def text_similarity(a: str, b: str) -> float:
    """Symmetric similarity ratio in [0.0, 1.0] of two normalized strings.

    ``SequenceMatcher.ratio()`` can differ with argument order, so the
    arguments are put in a canonical order first.
    """
    left, right = sorted((normalize_text(a), normalize_text(b)))
    if left == right:
        return 1.0
    return difflib.SequenceMatcher(None, left, right).ratio()


def substring_match(query: str, context: str) -> bool:
    """Match when the query occurs in the context, case-insensitively.

    An empty query matches every context.
    """
    q = normalize_text(query)
    return not q or q in normalize_text(context)


def exact_match(query: str, context: str) -> bool:
    q = normalize_text(query)
    return not q or q == normalize_text(context)


def _tags(text: str) -> set[str]:
    return {t for t in _TAG_SEPARATORS.split(text.lower()) if t}


def tag_match(query: str, context: str) -> bool:
    """Match when the query and context share at least one tag.

    Tags are separated by commas or whitespace.
    """
    query_tags = _tags(query)
    return not query_tags or bool(query_tags & _tags(context))


class SimilarityMatcher:
    """Match when text similarity reaches a threshold.

    Args:
        threshold: Minimum similarity in [0.0, 1.0].
        similarity: Similarity function; defaults to ``text_similarity``.
    """

    def __init__(
        self,
        threshold: float = 0.6,
        similarity: Callable[[str, str], float] = text_similarity,
    ) -> None:
        self.threshold = threshold
        self.similarity = similarity

    def __call__(self, query: str, context: str) -> bool:
        if not normalize_text(query):
            return True
        return self.similarity(query, context) >= self.threshold


class NearDuplicate:
    """Default duplicate predicate: equal after normalization, or similar enough."""

    def __init__(self, threshold: float = 0.9) -> None:
        self.threshold = threshold

    def __call__(self, a: str, b: str) -> bool:
        return text_similarity(a, b) >= self.threshold


def matcher_for(config: RetrievalConfig) -> ContextMatcher:
    """Build the context matcher selected by ``config.match_mode``."""
    if config.match_mode == "exact":
        return exact_match
    if config.match_mode == "tags":
        return tag_match
    if config.match_mode == "similarity":
        return SimilarityMatcher(config.similarity_threshold)
    return substring_match


__all__ = [
    "ContextMatcher",
    "DuplicatePredicate",
    "NearDuplicate",
    "SimilarityMatcher",
    "exact_match",
    "matcher_for",
    "normalize_text",
    "substring_match",
    "tag_match",
    "text_similarity",
]
