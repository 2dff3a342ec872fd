"""Pytest fixtures for patternbank tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from patternbank.core.config import PatternBankConfig, StoreConfig
from patternbank.learning.store import LearningStore


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Return a temporary database path (not yet created)."""
    return tmp_path / "learning.db"


@pytest.fixture
def store(db_path: Path) -> LearningStore:
    """Create a LearningStore with a temporary database."""
    return LearningStore(db_path=db_path)


@pytest.fixture
def strict_store(tmp_path: Path) -> LearningStore:
    """A store that only accepts patterns in registered namespaces."""
    config = PatternBankConfig(
        store=StoreConfig(db_path=tmp_path / "strict.db", require_registered_namespace=True)
    )
    return LearningStore(config=config)
