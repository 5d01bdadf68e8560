"""Core module for settings, logging and request context."""

from .config import Settings, RecreatePolicy, HistoryBackend, get_settings
from .logging_config import configure_logging, get_logger
from .context import CorrelationIdMiddleware, get_correlation_id, bind_resource

__all__ = [
    "Settings",
    "RecreatePolicy",
    "HistoryBackend",
    "get_settings",
    "configure_logging",
    "get_logger",
    "CorrelationIdMiddleware",
    "get_correlation_id",
    "bind_resource",
]
