"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- CollectorError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    CollectorError,
    ConfigurationError,
    DirectoryError,
    # Enums
    ErrorCategory,
    IntegrityError,
    PermanentError,
    # Domain errors
    PollError,
    SinkDeliveryError,
    StreamError,
    TransientError,
    # Classification utilities
    classify_http_status,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "CollectorError",
    "TransientError",
    "PermanentError",
    # Domain errors
    "PollError",
    "StreamError",
    "SinkDeliveryError",
    "DirectoryError",
    "IntegrityError",
    "ConfigurationError",
    # Classification utilities
    "classify_http_status",
]
