"""
Core types used across modules.

This module provides the base enums shared across the core library and the
collector so that error handling decisions are made consistently.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should be retried later
                   (e.g., network timeouts, 429/503 errors, sink outages)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., 404, integrity violations, configuration issues)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
