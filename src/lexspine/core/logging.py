"""
Structured logging for lexspine.

Manifesto:
    Every component (converter, validator, recommendation engine, executor)
    takes an injected logger so the same logic runs headless, in a batch
    job or behind a UI. This module provides the structlog configuration
    those loggers come from:

    - **Structures:** JSON output for log aggregation
    - **Correlates:** execution_id, plan_id, batch_id propagation
    - **Flexes:** Console output for development, JSON for production

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="lexspine")
            ↓
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars
          3. add_log_level / add_logger_name
          4. add_service_metadata
          5. ecs field names (JSON only)
          6. JSONRenderer (or ConsoleRenderer for dev)

        logger = get_logger(__name__)
        logger.info("migration.batch.start", batch_id="batch-1-terminology")

Examples:
    >>> from lexspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("validation.system.start", max_entities=50)

Tags:
    logging, structlog, observability, json-logging, lexspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Protocol

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "lexspine"


class StructuredLogger(Protocol):
    """The logging surface components depend on."""

    def debug(self, event: str, **fields: Any) -> Any: ...

    def info(self, event: str, **fields: Any) -> Any: ...

    def warning(self, event: str, **fields: Any) -> Any: ...

    def error(self, event: str, **fields: Any) -> Any: ...


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _ecs_field_names(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename timestamp and level to their ECS names."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "lexspine",
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(_ecs_field_names)
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> StructuredLogger:
    """Get a structlog logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(execution_id="exec-1", plan_id="plan-1"):
            logger.info("migration.batch.start")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
