"""In-memory FIFO queue of pending outbound requests."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class QueuedRequest:
    """A request waiting for its dispatch tick, plus the future its caller awaits."""

    url: str
    method: str = "GET"
    body: Any = None
    options: dict[str, Any] = field(default_factory=dict)
    future: asyncio.Future | None = None

    @property
    def done(self) -> bool:
        return self.future is not None and self.future.done()

    def resolve(self, result: Any) -> None:
        """Settle the caller's future with a result (no-op if already settled)."""
        if self.future is not None and not self.future.done():
            self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        """Settle the caller's future with an error (no-op if already settled)."""
        if self.future is not None and not self.future.done():
            self.future.set_exception(error)


class RequestQueue:
    """FIFO queue of QueuedRequest entries.

    Entries leave the queue in insertion order, either one at a time via
    popleft() or all at once via drain().
    """

    def __init__(self) -> None:
        self._entries: deque[QueuedRequest] = deque()
        self._not_empty = asyncio.Event()
        self.total_enqueued = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def enqueue(self, request: QueuedRequest) -> asyncio.Future:
        """Append to the tail and return the future the caller should await."""
        if request.future is None:
            request.future = asyncio.get_running_loop().create_future()
        self._entries.append(request)
        self.total_enqueued += 1
        self._not_empty.set()
        return request.future

    def popleft(self) -> QueuedRequest | None:
        """Remove and return the head entry, or None when empty."""
        if not self._entries:
            return None
        request = self._entries.popleft()
        if not self._entries:
            self._not_empty.clear()
        return request

    async def wait_not_empty(self) -> None:
        await self._not_empty.wait()

    def drain(self, error_factory: Callable[[QueuedRequest], BaseException]) -> int:
        """Remove every entry and fail each pending future with error_factory(entry). Returns count."""
        drained = 0
        while self._entries:
            request = self._entries.popleft()
            request.reject(error_factory(request))
            drained += 1
        self._not_empty.clear()
        if drained:
            logger.debug(
                "Drained request queue",
                extra={"queue_depth": drained},
            )
        return drained


__all__ = [
    "QueuedRequest",
    "RequestQueue",
]
