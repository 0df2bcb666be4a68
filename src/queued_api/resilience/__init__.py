"""
Resilience patterns module.

Provides the fault tolerance primitives the client is built from.

Components:
    - CircuitBreaker: State machine (closed/open/half-open)
    - RateLimitWindow: Fixed per-window call budget
    - RetryPolicy: Retry budget, backoff and non-retryable status codes
    - RetryExecutor: Runs one logical call under the policy and breaker
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
)
from .rate_limiter import (
    DEFAULT_WINDOW_SECONDS,
    UNLIMITED,
    RateLimitWindow,
)
from .retry import (
    DEFAULT_NON_RETRYABLE_STATUS_CODES,
    DEFAULT_RETRY_POLICY,
    RetryExecutor,
    RetryPolicy,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    # Rate Limiter
    "RateLimitWindow",
    "UNLIMITED",
    "DEFAULT_WINDOW_SECONDS",
    # Retry
    "RetryPolicy",
    "RetryExecutor",
    "DEFAULT_RETRY_POLICY",
    "DEFAULT_NON_RETRYABLE_STATUS_CODES",
]
