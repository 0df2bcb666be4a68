"""
Queued, rate-limited, circuit-breaker-guarded HTTP client.

Calls are queued per client, dispatched on a fixed tick under a
requests-per-window budget, and retried with jittered exponential backoff
while a shared circuit breaker tracks the health of the upstream API.
"""

from queued_api.client import ApiClient, encode_url
from queued_api.config import ApiClientConfig, create_client, load_client_configs
from queued_api.errors import (
    ApiClientError,
    CircuitOpenError,
    DisposedError,
    ErrorCategory,
    NonRetryableTransportError,
    TransientTransportError,
    TransportError,
)
from queued_api.resilience import (
    UNLIMITED,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    RateLimitWindow,
    RetryExecutor,
    RetryPolicy,
)
from queued_api.transport import AiohttpTransport, Transport, TransportResponse

__version__ = "1.0.0"

__all__ = [
    "__version__",
    # Client
    "ApiClient",
    "encode_url",
    # Configuration
    "ApiClientConfig",
    "create_client",
    "load_client_configs",
    # Errors
    "ApiClientError",
    "CircuitOpenError",
    "DisposedError",
    "ErrorCategory",
    "NonRetryableTransportError",
    "TransientTransportError",
    "TransportError",
    # Resilience
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RateLimitWindow",
    "RetryExecutor",
    "RetryPolicy",
    "UNLIMITED",
    # Transport
    "AiohttpTransport",
    "Transport",
    "TransportResponse",
]
