"""
Unified exception hierarchy for the log collector.

Provides typed exceptions with retry classification so that every failure
inside a Pod loop can be turned into a skip, a delay, or a retry.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class CollectorError(Exception):
    """
    Base exception for all collector errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(CollectorError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(CollectorError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class PollError(TransientError):
    """Batch discovery against a source endpoint failed (fetch, parse, or error status)."""

    pass


class StreamError(TransientError):
    """Transport failure while streaming a batch body."""

    pass


class SinkDeliveryError(TransientError):
    """POST to the ingestion sink failed (transport error or non-2xx)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


class DirectoryError(TransientError):
    """Desired endpoint set could not be fetched from the directory."""

    pass


class IntegrityError(PermanentError):
    """
    Delivered bytes are inconsistent with what the endpoint reports.

    Raised when the persisted offset exceeds a batch's declared size, or when
    an endpoint reports a smaller size for a batch than it did before.
    """

    def __init__(
        self,
        message: str,
        batch_id: int,
        delivered: int,
        batch_size: int,
        context: dict | None = None,
    ):
        super().__init__(message, context=context)
        self.batch_id = batch_id
        self.delivered = delivered
        self.batch_size = batch_size


class ConfigurationError(PermanentError):
    """Invalid collector configuration."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "CollectorError",
    "TransientError",
    "PermanentError",
    "PollError",
    "StreamError",
    "SinkDeliveryError",
    "DirectoryError",
    "IntegrityError",
    "ConfigurationError",
    "classify_http_status",
]
