"""Structured logging for patternbank.

Wraps structlog with store-specific context (task, namespace, run_id) and
supports console or JSON output, optionally to a rotating log file.

Example usage:
    from patternbank.core.logging import TaskContext, configure_logging, get_logger, with_context

    configure_logging(level="DEBUG", format="console")

    logger = get_logger("store.patterns")
    logger.info("pattern_upserted", pattern_id="ab12cd34ef56ab78")

    with with_context(TaskContext(task="git_commit", namespace="projects.web")):
        logger.info("task_started")  # includes task, namespace, run_id
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values are never written to logs
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "authorization",
})


@dataclass(frozen=True)
class TaskContext:
    """Immutable correlation context for log entries produced during a task.

    Attributes:
        task: The task (or hook) the caller is running.
        namespace: Namespace the task is scoped to.
        run_id: Unique id for this task invocation.
    """

    task: str
    namespace: str = "default"
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def with_namespace(self, namespace: str) -> TaskContext:
        """Return a copy of this context scoped to another namespace."""
        return replace(self, namespace=namespace)

    def to_dict(self) -> dict[str, Any]:
        return {"task": self.task, "namespace": self.namespace, "run_id": self.run_id}


_current_context: ContextVar[TaskContext | None] = ContextVar(
    "patternbank_context", default=None
)


def get_current_context() -> TaskContext | None:
    """Get the active TaskContext, or None outside a ``with_context()`` block."""
    return _current_context.get()


@contextmanager
def with_context(ctx: TaskContext) -> Iterator[TaskContext]:
    """Set the TaskContext for the duration of a block.

    Args:
        ctx: The context to activate.

    Yields:
        The activated context.
    """
    token = _current_context.set(ctx)
    try:
        yield ctx
    finally:
        _current_context.reset(token)


def _sanitize_value(key: str, value: Any) -> Any:
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that merges the active TaskContext into the event.

    Explicitly bound keys take precedence over context fields.
    """
    ctx = get_current_context()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            event_dict.setdefault(key, value)
    return event_dict


class BankLogger:
    """Component-bound wrapper around a structlog logger.

    The underlying structlog logger is fetched on every call so that loggers
    created at import time still honour a later ``configure_logging()``.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> BankLogger:
        """Return a new logger with additional bound context."""
        new_logger = BankLogger.__new__(BankLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback; call from inside an exception handler."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]
    if include_context:
        processors.append(_add_context)
    if include_timestamps:
        processors.append(_add_timestamp)
    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure structured logging for the process.

    Call once at startup, before the store is used.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable output, "json" for structured.
        file_path: Write to this rotating log file instead of a stream.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Add ISO8601 UTC timestamps to entries.
        include_context: Merge the active TaskContext into entries.
    """
    log_level = getattr(logging, level)

    handler: logging.Handler
    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
    elif format == "json":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=file_path is None)

    # cache_logger_on_first_use=False so module-level loggers see later config
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> BankLogger:
    """Get a logger bound to a component name.

    Args:
        component: Component name (e.g., "store.patterns", "consolidator").
        **initial_context: Additional context to bind.

    Returns:
        A BankLogger bound to the component.
    """
    return BankLogger(component, **initial_context)


__all__ = [
    "BankLogger",
    "SENSITIVE_PATTERNS",
    "TaskContext",
    "configure_logging",
    "get_current_context",
    "get_logger",
    "with_context",
]
