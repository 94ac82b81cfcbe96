"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    logging     - Structured JSON logging with context propagation
    errors      - Error classification and exception hierarchy
    http        - aiohttp session factory and chunked streaming helpers
    utils       - JSON serialization helpers

Design Principles:
    - No dependencies on the collector domain
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
