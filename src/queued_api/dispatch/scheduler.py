"""
Timer-driven dispatcher for the request queue.

Runs two independent background tasks:
- Dispatch loop: every tick_interval seconds, dispatch at most one request
- Window reset loop: every window_seconds, reset the rate window count

With an unlimited window there is no tick interval; the dispatch loop then
waits for work and dispatches each request as soon as it is enqueued.

Dispatch policy: a request leaves the queue iff the queue is non-empty AND
(the window is unlimited OR count < capacity).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from queued_api.dispatch.request_queue import QueuedRequest, RequestQueue
from queued_api.resilience.rate_limiter import RateLimitWindow

DispatchFn = Callable[[QueuedRequest], Awaitable[Any]]


class Scheduler:
    """Dequeues requests under the rate window and hands them to the transport."""

    def __init__(
        self,
        dispatch: DispatchFn,
        window: RateLimitWindow | None = None,
        queue: RequestQueue | None = None,
        name: str = "scheduler",
        logger: logging.Logger | None = None,
    ):
        self._dispatch = dispatch
        self.window = window or RateLimitWindow()
        self.queue = queue or RequestQueue()
        self.name = name
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._running = False
        self._dispatch_task: asyncio.Task | None = None
        self._reset_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

        self._dispatched = 0
        self._succeeded = 0
        self._failed = 0
        self._skipped = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _next_pending(self) -> QueuedRequest | None:
        # Callers that stopped waiting (cancelled futures) do not consume budget
        while True:
            request = self.queue.popleft()
            if request is None or not request.done:
                return request
            self._skipped += 1

    def tick(self) -> QueuedRequest | None:
        """
        Dispatch at most one request.

        Returns:
            The dispatched request, or None when the queue is empty or the
            window budget is spent
        """
        if not self.queue or not self.window.has_budget():
            return None

        request = self._next_pending()
        if request is None:
            return None

        self.window.consume()
        self._dispatched += 1
        self._logger.info(
            '%s : PROCESS from queue "%s" -> %d/%d',
            self.name,
            request.url,
            self.window.count,
            self.window.capacity,
            extra={
                "http_method": request.method,
                "http_url": request.url,
                "window_count": self.window.count,
                "window_capacity": self.window.capacity,
                "queue_depth": len(self.queue),
            },
        )

        task = asyncio.get_running_loop().create_task(self._run(request))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return request

    async def _run(self, request: QueuedRequest) -> None:
        try:
            result = await self._dispatch(request)
        except asyncio.CancelledError:
            if request.future is not None:
                request.future.cancel()
            raise
        except Exception as e:
            self._failed += 1
            request.reject(e)
        else:
            self._succeeded += 1
            request.resolve(result)

    def reset_window(self) -> None:
        self.window.reset()

    def start(self) -> None:
        """Start both background loops. Must be called from a running event loop."""
        if self._running:
            return

        loop = asyncio.get_running_loop()
        self._running = True
        self._dispatch_task = loop.create_task(
            self._dispatch_loop(), name=f"{self.name}-dispatch"
        )
        self._reset_task = loop.create_task(
            self._reset_loop(), name=f"{self.name}-window-reset"
        )
        self._logger.debug(
            "Scheduler started",
            extra={
                "window_capacity": self.window.capacity,
                "tick_interval": self.window.tick_interval,
            },
        )

    async def _dispatch_loop(self) -> None:
        interval = self.window.tick_interval

        while self._running:
            try:
                if interval is None:
                    await self.queue.wait_not_empty()
                    while self.tick() is not None:
                        pass
                    await asyncio.sleep(0)
                else:
                    await asyncio.sleep(interval)
                    self.tick()
            except asyncio.CancelledError:
                self._logger.debug("Dispatch loop cancelled")
                raise
            except Exception:
                self._logger.error(
                    "%s : Error processing queue",
                    self.name,
                    exc_info=True,
                )
                await asyncio.sleep(0)

    async def _reset_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.window.window_seconds)
                self.reset_window()
            except asyncio.CancelledError:
                self._logger.debug("Window reset loop cancelled")
                raise

    def stop(self) -> None:
        """Cancel both loops. Requests already handed to the transport keep running."""
        self._running = False
        for task in (self._dispatch_task, self._reset_task):
            if task is not None and not task.done():
                task.cancel()
        self._dispatch_task = None
        self._reset_task = None

    def dispose(self, error_factory: Callable[[QueuedRequest], BaseException]) -> int:
        """Stop scheduling and fail every request still waiting in the queue."""
        self.stop()
        return self.queue.drain(error_factory)

    async def wait_in_flight(self) -> None:
        """Wait for requests already handed to the transport to settle."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self._running,
            "queue_depth": len(self.queue),
            "in_flight": len(self._in_flight),
            "dispatched": self._dispatched,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "skipped": self._skipped,
            "window": self.window.get_stats(),
        }


__all__ = [
    "DispatchFn",
    "Scheduler",
]
