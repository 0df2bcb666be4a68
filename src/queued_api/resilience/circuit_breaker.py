"""
Circuit breaker pattern for resilience against cascading failures.

Protects against scenarios like:
- Upstream API outages
- Sustained 5xx / timeout storms
- Network partitions

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests rejected immediately (fast-fail)
- HALF_OPEN: Testing recovery, one probe per probe interval allowed

Transitions are re-evaluated lazily whenever the state is queried, so an
OPEN breaker only becomes HALF_OPEN when someone asks.

Usage:
    breaker = CircuitBreaker("riot_api")
    if breaker.is_open():
        raise CircuitOpenError(breaker.name, breaker.state.value)
    try:
        result = await call()
        breaker.record_success()
    except Exception:
        breaker.record_failure()
        raise
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from queued_api.types import Clock


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive failures before opening circuit
    failure_threshold: int = 5

    # Seconds since the last failure before a probe is allowed
    reset_timeout_seconds: float = 60.0

    # At most one half-open probe per this many seconds
    probe_interval_seconds: float = 1.0

    def __post_init__(self):
        self.failure_threshold = int(self.failure_threshold)
        self.reset_timeout_seconds = float(self.reset_timeout_seconds)
        self.probe_interval_seconds = float(self.probe_interval_seconds)
        if self.failure_threshold < 1:
            raise ValueError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}"
            )
        if self.reset_timeout_seconds < 0:
            raise ValueError(
                f"reset_timeout_seconds must be >= 0, got {self.reset_timeout_seconds}"
            )


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    probes_admitted: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None
    last_state_change_time: float | None = None
    current_state: str = "closed"


class CircuitBreaker:
    """Three-state circuit breaker with single-probe half-open admission. Thread-safe."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.on_state_change = on_state_change
        self._clock = clock or time.monotonic
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._probe_time: float | None = None

        self._stats = CircuitStats()
        self._lock = threading.RLock()

    @property
    def state(self) -> CircuitState:
        """Current circuit state (may transition on access)."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        with self._lock:
            return self._last_failure_time

    @property
    def stats(self) -> CircuitStats:
        """Get copy of current statistics."""
        with self._lock:
            self._check_state_transition()
            return CircuitStats(
                successful_calls=self._stats.successful_calls,
                failed_calls=self._stats.failed_calls,
                rejected_calls=self._stats.rejected_calls,
                probes_admitted=self._stats.probes_admitted,
                state_changes=self._stats.state_changes,
                last_failure_time=self._stats.last_failure_time,
                last_success_time=self._stats.last_success_time,
                last_state_change_time=self._stats.last_state_change_time,
                current_state=self._state.value,
            )

    def _check_state_transition(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._last_failure_time is not None
            and self._clock() - self._last_failure_time > self.config.reset_timeout_seconds
        ):
            self._logger.debug(
                "Circuit breaker timeout elapsed, transitioning to half-open: "
                "circuit_name=%s, timeout_seconds=%.2f, failure_count=%d",
                self.name,
                self.config.reset_timeout_seconds,
                self._failure_count,
            )
            self._transition_to(CircuitState.HALF_OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change_time = self._clock()
        self._stats.current_state = new_state.value

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._logger.info(
                "Circuit closed: circuit_name=%s",
                self.name,
                extra={"circuit_state": new_state.value},
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._logger.info(
                "Circuit half-open: circuit_name=%s",
                self.name,
                extra={"circuit_state": new_state.value},
            )
        elif new_state == CircuitState.OPEN:
            self._logger.warning(
                "Circuit open: circuit_name=%s, failure_count=%d, reset_timeout_seconds=%.2f",
                self.name,
                self._failure_count,
                self.config.reset_timeout_seconds,
                extra={"circuit_state": new_state.value},
            )

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                self._logger.warning(
                    "Error in circuit state change callback: circuit_name=%s, error=%s",
                    self.name,
                    str(e),
                    exc_info=False,
                )

    def is_open(self) -> bool:
        """
        Gate a call: True means reject, False means the call may proceed.

        In HALF_OPEN a single probe is admitted per probe interval; the
        admission itself is recorded, so this is not a side-effect free query.
        """
        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.HALF_OPEN:
                now = self._clock()
                if (
                    self._probe_time is not None
                    and now - self._probe_time < self.config.probe_interval_seconds
                ):
                    self._stats.rejected_calls += 1
                    return True

                self._probe_time = now
                self._stats.probes_admitted += 1
                self._logger.debug(
                    "Circuit breaker admitting probe: circuit_name=%s",
                    self.name,
                )
                return False

            if self._state == CircuitState.OPEN:
                self._stats.rejected_calls += 1
                return True

            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_calls += 1
            self._stats.last_success_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                # Consecutive failure tracking
                self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._stats.failed_calls += 1
            self._stats.last_failure_time = now
            self._last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                self._logger.debug(
                    "Circuit breaker probe failed: circuit_name=%s, action=transitioning to open",
                    self.name,
                )
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                self._logger.debug(
                    "Circuit breaker failure recorded: circuit_name=%s, "
                    "failure_count=%d, failure_threshold=%d",
                    self.name,
                    self._failure_count,
                    self.config.failure_threshold,
                )
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    def retry_after(self) -> float:
        """Seconds until an OPEN breaker will admit a probe (0 when not open)."""
        with self._lock:
            self._check_state_transition()
            if self._state != CircuitState.OPEN or self._last_failure_time is None:
                return 0.0
            elapsed = self._clock() - self._last_failure_time
            return max(0.0, self.config.reset_timeout_seconds - elapsed)

    def reset(self) -> None:
        """Force the breaker back to CLOSED (operator override)."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None
            self._probe_time = None
            self._logger.info(
                "Circuit manually reset: circuit_name=%s",
                self.name,
            )

    def get_diagnostics(self) -> dict:
        with self._lock:
            self._check_state_transition()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "reset_timeout_seconds": self.config.reset_timeout_seconds,
                    "probe_interval_seconds": self.config.probe_interval_seconds,
                },
                "stats": {
                    "successful_calls": self._stats.successful_calls,
                    "failed_calls": self._stats.failed_calls,
                    "rejected_calls": self._stats.rejected_calls,
                    "probes_admitted": self._stats.probes_admitted,
                    "state_changes": self._stats.state_changes,
                },
            }


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
]
