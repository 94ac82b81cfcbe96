"""
Structured logging module.

Provides JSON logging with context propagation.
"""

from core.logging.context import (
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.setup import (
    get_log_file_path,
    setup_logging,
)
from core.logging.utilities import (
    detect_log_output_mode,
    format_fleet_stats,
    log_exception,
    log_startup_banner,
    log_with_context,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    # Periodic stats
    "PeriodicStatsLogger",
    # Utilities
    "log_with_context",
    "log_exception",
    "log_startup_banner",
    "detect_log_output_mode",
    "format_fleet_stats",
]
