"""Structured logging utilities using structlog for decision-path tracing.

The router, aggregator and decision engine log snake_case events through
structlog so a single verification can be followed by its request_id and
correlation_id. Level and format follow the same settings as the loguru
side (config/logging.py), which reconfigures both.
"""

import sys
import uuid
from typing import Any, List, Optional

import structlog
from structlog.contextvars import bind_contextvars, merge_contextvars, unbind_contextvars
from structlog.processors import JSONRenderer

from veda_orchestration.config.settings import settings


def _renderer(log_format: str) -> Any:
    if sys.stderr.isatty() and log_format == "console":
        return structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    return JSONRenderer(sort_keys=True)


def configure_structured_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structlog processors and renderer.

    Args:
        level: Level override, defaults to settings.log_level
        log_format: "console" or "json", defaults to settings.log_format
    """
    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()

    processors: List[Any] = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        _renderer(log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_structured_logger(
    name: str,
    component: Optional[str] = None,
    **additional_context: Any,
) -> structlog.BoundLogger:
    """
    Get a structured logger with bound context.

    Args:
        name: Logger name (typically module name)
        component: Optional component name to bind
        **additional_context: Additional context to bind

    Example:
        >>> logger = get_structured_logger(__name__, component="ResultAggregator")
        >>> logger.info("consensus_reached", verdict="verified_true")
    """
    logger = structlog.get_logger(name)

    if component:
        logger = logger.bind(component=component)
    if additional_context:
        logger = logger.bind(**additional_context)

    return logger


def get_correlation_id() -> str:
    """Generate a correlation ID for tracing one verification across components."""
    return str(uuid.uuid4())


def bind_request_context(request_id: str, correlation_id: Optional[str] = None) -> None:
    """
    Bind request identifiers to every structlog call in the current task.

    asyncio tasks copy the context on creation, so agents running in a wave
    inherit the ids bound before the wave started.
    """
    bind_contextvars(request_id=request_id)
    if correlation_id:
        bind_contextvars(correlation_id=correlation_id)


def clear_request_context() -> None:
    """Drop the ids bound by bind_request_context."""
    unbind_contextvars("request_id", "correlation_id")


configure_structured_logging()


__all__ = [
    "get_structured_logger",
    "get_correlation_id",
    "bind_request_context",
    "clear_request_context",
    "configure_structured_logging",
]
