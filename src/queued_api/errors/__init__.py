"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- ApiClientError hierarchy for typed exceptions
- Classification utilities for the retry executor
"""

from queued_api.errors.exceptions import (
    ApiClientError,
    CircuitOpenError,
    DisposedError,
    NonRetryableTransportError,
    TransientTransportError,
    TransportError,
    classify_transport_error,
    get_status_code,
)
from queued_api.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "ApiClientError",
    "TransportError",
    # Transport errors
    "NonRetryableTransportError",
    "TransientTransportError",
    # Lifecycle errors
    "CircuitOpenError",
    "DisposedError",
    # Classification utilities
    "classify_transport_error",
    "get_status_code",
]
