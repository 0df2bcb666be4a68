"""
Fixed-window rate limiter for outbound API throttling.

Keeps outbound calls under an upstream "N requests per minute" limit.

How the window works:
- The window allows `capacity` dispatches
- Each dispatch consumes one slot (count += 1)
- An independent timer resets the count to 0 once per window
- The dispatch cadence is spread evenly: tick_interval = window / capacity

A capacity of UNLIMITED (-1) disables the budget entirely. There is no
meaningful tick interval in that case, callers must special-case it.

Usage:
    window = RateLimitWindow(capacity=100)
    if window.has_budget():
        window.consume()
        dispatch(request)
"""

import logging

logger = logging.getLogger(__name__)

UNLIMITED = -1

DEFAULT_WINDOW_SECONDS = 60.0


class RateLimitWindow:
    """
    Call counter for the current rate window.

    Not locked: mutated only from the event loop (dispatch tick and the
    window-reset tick), which never interleave at the statement level.

    Attributes:
        capacity: Max dispatches per window, or UNLIMITED
        window_seconds: Length of the window (60s for per-minute limits)
        count: Dispatches made in the current window
        resets: Number of window resets so far
    """

    def __init__(
        self,
        capacity: int = UNLIMITED,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ):
        capacity = int(capacity)
        window_seconds = float(window_seconds)

        if capacity != UNLIMITED and capacity < 1:
            raise ValueError(
                f"capacity must be a positive integer or {UNLIMITED} (unlimited), got {capacity}"
            )
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {window_seconds}")

        self.capacity = capacity
        self.window_seconds = window_seconds
        self.count = 0
        self.resets = 0

    @property
    def unlimited(self) -> bool:
        return self.capacity == UNLIMITED

    @property
    def tick_interval(self) -> float | None:
        """Seconds between dispatch ticks, or None when unlimited."""
        if self.unlimited:
            return None
        return self.window_seconds / self.capacity

    @property
    def remaining(self) -> int | None:
        if self.unlimited:
            return None
        return max(0, self.capacity - self.count)

    def has_budget(self) -> bool:
        """True when another dispatch is allowed in the current window."""
        return self.unlimited or self.count < self.capacity

    def consume(self) -> None:
        self.count += 1

    def reset(self) -> None:
        if self.count:
            logger.debug(
                "Rate window reset",
                extra={
                    "window_count": self.count,
                    "window_capacity": self.capacity,
                },
            )
        self.count = 0
        self.resets += 1

    def get_stats(self) -> dict:
        """
        Get current window statistics.

        Returns:
            Dict with the window configuration and current count
        """
        return {
            "capacity": self.capacity,
            "unlimited": self.unlimited,
            "window_seconds": self.window_seconds,
            "tick_interval": self.tick_interval,
            "count": self.count,
            "remaining": self.remaining,
            "resets": self.resets,
        }

    def __repr__(self) -> str:
        cap = "unlimited" if self.unlimited else self.capacity
        return f"RateLimitWindow(count={self.count}, capacity={cap}, window_seconds={self.window_seconds})"


__all__ = [
    "DEFAULT_WINDOW_SECONDS",
    "RateLimitWindow",
    "UNLIMITED",
]
