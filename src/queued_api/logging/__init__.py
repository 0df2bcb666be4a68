"""
Structured logging module.

Provides console and JSON file logging with context propagation.
"""

from queued_api.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from queued_api.logging.formatters import ConsoleFormatter, JSONFormatter
from queued_api.logging.serializers import json_serializer
from queued_api.logging.setup import (
    ArchivingTimedRotatingFileHandler,
    get_logger,
    setup_logging,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "ArchivingTimedRotatingFileHandler",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    "json_serializer",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
]
