"""
Logging setup for the verification runtime.

Two loggers share one configuration: loguru for the infrastructure side
(registry, bus, workflow manager, health monitor, orchestrator) and
structlog for the decision path (router, aggregator, decision engine).
The first Orchestrator built configures both from settings; the CLI
reconfigures them when --log-level is given.

request_scope() attaches a verification's request and correlation ids to
every line either logger writes while the verification runs.
"""

import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from loguru import logger

from veda_orchestration.config.settings import settings
from veda_orchestration.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_structured_logging,
)

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | <magenta>{extra[request_id]}</magenta> | "
    "<level>{message}</level>"
)

# Defaults so the console format never misses a key
DEFAULT_EXTRA = {"component": "veda", "request_id": "-"}

_state: Dict[str, Any] = {"configured": False, "level": None, "format": None}


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    (Re)configure loguru and structlog.

    Console output is used only when the format is "console" and stderr is
    a terminal; otherwise loguru writes serialized JSON to stdout.

    Args:
        level: Level override, defaults to settings.log_level
        log_format: "console" or "json", defaults to settings.log_format
    """
    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()

    logger.remove()
    logger.configure(extra=dict(DEFAULT_EXTRA))
    if log_format == "console" and sys.stderr.isatty():
        logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)
    else:
        logger.add(sys.stdout, format="{message}", level=level, serialize=True, diagnose=False)

    configure_structured_logging(level, log_format)
    _state.update(configured=True, level=level, format=log_format)


def ensure_logging_configured() -> None:
    """Configure from settings unless something already did."""
    if not _state["configured"]:
        configure_logging()


def logging_state() -> Dict[str, Any]:
    return dict(_state)


@contextmanager
def request_scope(request_id: str, correlation_id: Optional[str] = None) -> Iterator[None]:
    """
    Tag every loguru and structlog line in this block with the request ids.

    Both use context variables, so agent tasks started inside the block
    inherit the ids.
    """
    bind_request_context(request_id, correlation_id)
    try:
        with logger.contextualize(request_id=request_id, correlation_id=correlation_id or "-"):
            yield
    finally:
        clear_request_context()


def get_logger(component: str):
    """Loguru logger bound to a component name, e.g. get_logger("cli")."""
    return logger.bind(component=component)


__all__ = [
    "configure_logging",
    "ensure_logging_configured",
    "logging_state",
    "request_scope",
    "get_logger",
]
