"""
Structured logging setup.
"""

import logging
from typing import Optional

import structlog


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog for the courier core.

    Args:
        level: Minimum log level name ("DEBUG", "INFO", ...)
        json_output: Render JSON lines when True, human-readable console output otherwise
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, **initial_values) -> structlog.BoundLogger:
    """Return a structlog logger bound to ``service_name`` when given."""
    if name is not None:
        initial_values.setdefault("service_name", name)
    return structlog.get_logger(**initial_values)
