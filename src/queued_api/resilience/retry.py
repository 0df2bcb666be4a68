"""
Retry executor with circuit breaker consultation and jittered backoff.

Makes the per-call retry decision for one logical request:
- Circuit open: fail immediately, the transport is never called
- Non-retryable status (403/404 by default): record one failure, fail immediately
- Disposed client: fail immediately, no breaker accounting
- Anything else: retry with exponential backoff, record one failure when exhausted

Each call owns its own attempt counter; the only state shared between
concurrent calls is the circuit breaker.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

from queued_api.errors.exceptions import (
    CircuitOpenError,
    DisposedError,
    TransportError,
    classify_transport_error,
    get_status_code,
)
from queued_api.resilience.circuit_breaker import CircuitBreaker
from queued_api.types import RequestFn, Sleeper

DEFAULT_NON_RETRYABLE_STATUS_CODES = frozenset({403, 404})


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration, one per client."""

    max_retries: int = 3
    base_delay: float = 1.0
    jitter_range: tuple[float, float] = (0.85, 1.15)
    non_retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: DEFAULT_NON_RETRYABLE_STATUS_CODES
    )

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        # frozen dataclass: go through object.__setattr__
        object.__setattr__(self, "max_retries", int(self.max_retries))
        object.__setattr__(self, "base_delay", float(self.base_delay))
        low, high = (float(v) for v in self.jitter_range)
        object.__setattr__(self, "jitter_range", (low, high))
        object.__setattr__(
            self,
            "non_retryable_status_codes",
            frozenset(int(code) for code in self.non_retryable_status_codes),
        )

        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if not 0 < low <= high:
            raise ValueError(f"invalid jitter_range {self.jitter_range}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def get_delay(
        self,
        attempt: int,
        base_delay: float | None = None,
        rng: random.Random | None = None,
    ) -> float:
        """
        Calculate the backoff before the next attempt.

        Args:
            attempt: 0-indexed attempt number that just failed
            base_delay: Override for the policy's base delay
            rng: Random source for the jitter factor

        Returns:
            Delay in seconds: base_delay * 2**attempt * U(jitter_range)
        """
        base = self.base_delay if base_delay is None else base_delay
        jitter = (rng or random).uniform(*self.jitter_range)
        return base * (2**attempt) * jitter

    def is_non_retryable(self, error: BaseException) -> bool:
        status_code = get_status_code(error)
        return status_code is not None and status_code in self.non_retryable_status_codes


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryExecutor:
    """
    Runs a request function under the retry policy and the shared breaker.

    The backoff sleep suspends only the calling coroutine; the scheduler and
    other pending calls keep running.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
        sleep: Sleeper | None = None,
        rng: random.Random | None = None,
    ):
        self.breaker = breaker
        self.policy = policy or DEFAULT_RETRY_POLICY
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()  # nosec B311 - jitter only

    def _reject_open_circuit(self, operation: str) -> CircuitOpenError:
        state = self.breaker.state.value
        self._logger.warning(
            "Circuit breaker is %s, rejecting request",
            state.upper(),
            extra={
                "operation": operation,
                "circuit_state": state,
                "error_category": "circuit_open",
            },
        )
        return CircuitOpenError(
            self.breaker.name,
            state=state,
            retry_after=self.breaker.retry_after(),
        )

    async def execute(
        self,
        request_fn: RequestFn,
        max_retries: int | None = None,
        base_delay: float | None = None,
        operation: str = "request",
    ) -> Any:
        """
        Execute request_fn with up to max_retries retries.

        Args:
            request_fn: Zero-argument coroutine factory, invoked once per attempt
            max_retries: Override for policy.max_retries (attempts = retries + 1)
            base_delay: Override for policy.base_delay in seconds
            operation: Label used in log lines

        Returns:
            The result of the first successful attempt

        Raises:
            CircuitOpenError: Breaker rejected the call before any attempt
            NonRetryableTransportError: Status code in the non-retryable set
            DisposedError: Client disposed while the request was queued
            TransientTransportError: Retry budget exhausted
        """
        if self.breaker.is_open():
            raise self._reject_open_circuit(operation)

        retries = self.policy.max_retries if max_retries is None else int(max_retries)
        if retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {retries}")
        max_attempts = retries + 1
        last_error: TransportError | None = None

        for attempt in range(max_attempts):
            try:
                result = await request_fn()
            except DisposedError:
                raise
            except Exception as e:
                last_error = classify_transport_error(
                    e, self.policy.non_retryable_status_codes
                )
                self._logger.warning(
                    "Request failed (attempt %d/%d): %s",
                    attempt + 1,
                    max_attempts,
                    str(e)[:200],
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "http_status": last_error.status_code,
                        "error_category": last_error.category.value,
                        "error_message": str(e)[:200],
                    },
                )

                if self.policy.is_non_retryable(last_error):
                    self.breaker.record_failure()
                    self._logger.warning(
                        "Non-retryable status for %s, not retrying",
                        operation,
                        extra={
                            "operation": operation,
                            "http_status": last_error.status_code,
                            "error_category": last_error.category.value,
                        },
                    )
                    if last_error is e:
                        raise
                    raise last_error from e

                if attempt == max_attempts - 1:
                    break

                delay = self.policy.get_delay(attempt, base_delay, self._rng)
                self._logger.info(
                    "Retrying after %.0fms",
                    delay * 1000,
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "delay_seconds": round(delay, 3),
                    },
                )
                await self._sleep(delay)
            else:
                self.breaker.record_success()
                if attempt > 0:
                    self._logger.info(
                        "Retry succeeded for %s after %d attempts",
                        operation,
                        attempt + 1,
                        extra={
                            "operation": operation,
                            "attempt": attempt + 1,
                            "total_attempts": max_attempts,
                        },
                    )
                return result

        self.breaker.record_failure()
        self._logger.error(
            "Max retries exhausted for %s: %s",
            operation,
            str(last_error)[:200],
            extra={
                "operation": operation,
                "max_attempts": max_attempts,
                "http_status": last_error.status_code if last_error else None,
                "error_category": "transient",
            },
        )
        assert last_error is not None  # loop ran at least once
        if last_error.cause is not None and last_error is not last_error.cause:
            raise last_error from last_error.cause
        raise last_error


__all__ = [
    "DEFAULT_NON_RETRYABLE_STATUS_CODES",
    "DEFAULT_RETRY_POLICY",
    "RetryExecutor",
    "RetryPolicy",
]
