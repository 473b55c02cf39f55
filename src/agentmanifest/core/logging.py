# src/agentmanifest/core/logging.py
"""Structured logging via structlog.

Modules log with ``get_logger(__name__)`` and keyword event fields:

    logger.warning("log_action_failed", table="audit_log", error=str(e))

``configure_logging`` is called once by entry points (the CLI); library
callers may skip it and get structlog's defaults.
"""

import logging
import sys
from typing import Any

import structlog

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "info", *, json_output: bool = False) -> None:
    """Configure structlog processors and the minimum level.

    Args:
        level: debug, info, warning or error
        json_output: Render JSON lines instead of console output
    """
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_LEVELS[level]),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None, **initial_values: Any) -> Any:
    """Get a bound structlog logger."""
    if name is not None:
        initial_values.setdefault("logger_name", name)
    return structlog.get_logger(**initial_values)
