"""
Exception hierarchy for the queued API client.

Provides typed exceptions with retry classification so the retry executor,
the circuit breaker and callers can tell a fail-fast rejection apart from a
transport failure.
"""

from collections.abc import Collection

from queued_api.types import ErrorCategory


class ApiClientError(Exception):
    """
    Base exception for all client errors.

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

    @property
    def is_retryable(self) -> bool:
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(ApiClientError):
    """
    Raised by a transport when a call fails.

    status_code is set when the server answered with a non-2xx status and is
    None for connection failures and timeouts.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: object | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code
        self.response = response


class NonRetryableTransportError(TransportError):
    """Status code is in the client's non-retryable set, fail without retry."""

    category = ErrorCategory.PERMANENT


class TransientTransportError(TransportError):
    """Any other transport failure, retried up to the configured budget."""

    category = ErrorCategory.TRANSIENT


# =============================================================================
# Lifecycle Errors
# =============================================================================


class CircuitOpenError(ApiClientError):
    """Circuit breaker is open, rejecting requests without calling the transport."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(
        self,
        circuit_name: str,
        state: str = "open",
        retry_after: float = 0.0,
    ):
        message = f"Too many failures, circuit is {state}"
        super().__init__(
            message,
            context={"circuit_name": circuit_name, "circuit_state": state},
        )
        self.circuit_name = circuit_name
        self.state = state
        self.retry_after = retry_after


class DisposedError(ApiClientError):
    """Client was disposed while the request was still waiting in the queue."""

    category = ErrorCategory.DISPOSED

    def __init__(self, client_name: str, url: str | None = None):
        super().__init__(
            f"API client '{client_name}' disposed",
            context={"client": client_name, "url": url} if url else {"client": client_name},
        )
        self.client_name = client_name
        self.url = url


# =============================================================================
# Classification Utilities
# =============================================================================


def get_status_code(exc: BaseException) -> int | None:
    """
    Read an HTTP status code from an exception, if it carries one.

    Understands our own TransportError (status_code) as well as foreign
    exceptions exposing `status` (aiohttp.ClientResponseError) or a
    `response.status_code` / `response.status` attribute.
    """
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value

    response = getattr(exc, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int):
                return value

    return None


def classify_transport_error(
    exc: BaseException,
    non_retryable_status_codes: Collection[int],
) -> TransportError:
    """
    Map any failure from a request function to a non-retryable or transient error.

    The status code alone decides the class. An error already typed by a
    transport is returned as is only when its class agrees with the
    configured non-retryable set; otherwise it is re-wrapped.
    """
    status_code = get_status_code(exc)
    error_class = (
        NonRetryableTransportError
        if status_code is not None and status_code in non_retryable_status_codes
        else TransientTransportError
    )
    if isinstance(exc, error_class):
        return exc

    message = exc.message if isinstance(exc, ApiClientError) else str(exc) or type(exc).__name__
    context = dict(exc.context) if isinstance(exc, ApiClientError) else {}
    response = getattr(exc, "response", None)
    if status_code is not None:
        context["status_code"] = status_code

    cause = exc if isinstance(exc, Exception) else None
    return error_class(
        message,
        status_code=status_code,
        response=response,
        cause=cause,
        context=context,
    )
