"""
Structured logging module.

Provides JSON logging with request/session context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.context_managers import (
    LogContext,
    StreamOperation,
    log_phase,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import setup_logging
from core.logging.utilities import (
    format_batch_summary,
    log_exception,
    log_with_context,
)

__all__ = [
    # Setup
    "setup_logging",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Context Managers
    "LogContext",
    "StreamOperation",
    "log_phase",
    # Utilities
    "log_with_context",
    "log_exception",
    "format_batch_summary",
]
