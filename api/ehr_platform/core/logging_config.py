"""
Structured logging setup (structlog).

JSON lines by default; a colored console renderer when LOG_FORMAT=console.
"""

import logging
import os
import sys
from typing import Optional

import structlog


def configure_logging(
    json_output: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure structlog and the stdlib root logger once at startup.

    Args:
        json_output: Force JSON (True) or console (False) output. None reads LOG_FORMAT.
        log_level: DEBUG / INFO / WARNING / ERROR. None reads LOG_LEVEL.
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "json").lower() != "console"

    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # asyncpg and uvicorn access logs are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Return a structlog logger, usually get_logger(__name__)."""
    return structlog.get_logger(name)


Logger = structlog.BoundLogger
