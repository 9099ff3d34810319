"""Structured logging configuration for Commit Stream."""

import logging
import os
import sys
from collections.abc import Mapping, MutableMapping
from datetime import datetime
from functools import lru_cache
from typing import Any

import structlog
from structlog.types import Processor

from . import __version__


def _is_development() -> bool:
    """Check if running in development mode."""
    from .config import get_settings

    settings = get_settings()
    return settings.debug or os.getenv("ENV", "development") == "development"


def _add_app_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]:
    """Add application context to log entries."""
    event_dict["app"] = "commit_stream"
    event_dict["version"] = __version__
    return event_dict


def _format_datetimes(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]:
    """Render datetime values (cursors, window bounds) as ISO-8601 strings."""
    for key, value in event_dict.items():
        if isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def get_processors() -> list[Processor]:
    """Get structlog processors based on environment."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _add_app_context,
        _format_datetimes,
    ]

    if _is_development():
        return shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        ]
    return shared_processors + [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


@lru_cache(maxsize=1)
def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging. Call once at application startup."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=get_processors(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)  # type: ignore[no-any-return]


# =============================================================================
# Context Management
# =============================================================================


def bind_context(**kwargs: Any) -> None:
    """Bind context variables included in all subsequent log entries."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """
    Context manager for temporary log context.

    Keys already bound by an outer scope get their previous values back on exit.

    Usage:
        with LogContext(source="apache/flink"):
            logger.info("window_fetched")  # Includes source
        logger.info("done")  # Does not include source
    """

    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs
        self._keys = list(kwargs.keys())
        self._previous: dict[str, Any] = {}

    def __enter__(self):
        bound = structlog.contextvars.get_contextvars()
        self._previous = {key: bound[key] for key in self._keys if key in bound}
        structlog.contextvars.bind_contextvars(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.unbind_contextvars(*self._keys)
        if self._previous:
            structlog.contextvars.bind_contextvars(**self._previous)
        return False


# =============================================================================
# Lazy-loaded Module Loggers
# =============================================================================


class _LazyLogger:
    """Lazy logger that defers initialization until first use."""

    def __init__(self, name: str):
        self._name = name
        self._logger: structlog.stdlib.BoundLogger | None = None

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        if self._logger is None:
            self._logger = get_logger(self._name)
        return self._logger

    def __getattr__(self, name: str):
        return getattr(self._get_logger(), name)


# Pre-configured loggers (lazy-loaded)
cli_logger = _LazyLogger("cli")
github_logger = _LazyLogger("github")
engine_logger = _LazyLogger("engine")
checkpoint_logger = _LazyLogger("checkpoint")
sink_logger = _LazyLogger("sink")


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogContext",
    "cli_logger",
    "github_logger",
    "engine_logger",
    "checkpoint_logger",
    "sink_logger",
]
