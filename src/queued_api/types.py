"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the library to keep error classification and timing hooks
consistent between the breaker, the retry executor and the scheduler.
"""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")

# Monotonic time source in seconds (time.monotonic by default)
Clock = Callable[[], float]

# Coroutine-based sleep (asyncio.sleep by default)
Sleeper = Callable[[float], Awaitable[Any]]

# Zero-argument coroutine factory wrapped by the retry executor
RequestFn = Callable[[], Awaitable[T]]


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Failures that may succeed on a later attempt
                   (e.g., timeouts, connection resets, 5xx, 429)
        PERMANENT: Failures that will not succeed on retry
                   (status code in the client's non-retryable set)
        CIRCUIT_OPEN: Circuit breaker is open, rejecting without attempting
        DISPOSED: Client was disposed before the request was dispatched
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    DISPOSED = "disposed"
    UNKNOWN = "unknown"


__all__ = [
    "Clock",
    "ErrorCategory",
    "RequestFn",
    "Sleeper",
    "T",
]
