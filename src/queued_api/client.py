"""Queued, rate-limited API client with circuit breaker protection and retry.

Every call goes through the same pipeline:

    verb method -> RetryExecutor (breaker check) -> enqueue
        -> Scheduler tick dispatches to the transport under the rate window
        -> caller's future settles -> RetryExecutor retries or returns

One ApiClient instance owns its queue, breaker and rate window; named API
variants are separate instances built from configuration.
"""

import asyncio
import logging
import random
import re
from typing import Any
from urllib.parse import quote

from queued_api.config import ApiClientConfig
from queued_api.dispatch.request_queue import QueuedRequest
from queued_api.dispatch.scheduler import Scheduler
from queued_api.errors.exceptions import DisposedError
from queued_api.resilience.circuit_breaker import CircuitBreaker, CircuitState
from queued_api.resilience.rate_limiter import RateLimitWindow
from queued_api.resilience.retry import RetryExecutor
from queued_api.transport.aiohttp_transport import AiohttpTransport
from queued_api.transport.base import SUPPORTED_METHODS, Transport, TransportResponse
from queued_api.types import Clock, Sleeper

# Characters encodeURI leaves alone, plus "%" so escaped input is not double-encoded
_URI_SAFE_CHARS = ";,/?:@&=+$!*'()#%"
_BARE_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")


def encode_url(url: str) -> str:
    """Percent-encode a full URL the way JavaScript's encodeURI does.

    Reserved URL delimiters are kept, existing %XX escapes are preserved, and
    a bare "%" is encoded as %25.
    """
    return quote(_BARE_PERCENT.sub("%25", url), safe=_URI_SAFE_CHARS)


class ApiClient:
    """Async HTTP client whose calls are queued, rate limited, retried and circuit broken.

    Usage:
        async with ApiClient(ApiClientConfig(name="riot", max_requests_per_minute=100)) as api:
            response = await api.get("https://euw1.api.riotgames.com/lol/status/v4/platform-data")
    """

    def __init__(
        self,
        config: ApiClientConfig | None = None,
        *,
        transport: Transport | None = None,
        logger: logging.Logger | None = None,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config or ApiClientConfig()
        self._logger = (
            logger
            if logger is not None
            else logging.getLogger(f"queued_api.client.{self.config.name}")
        )

        self._owns_transport = transport is None
        self._transport: Transport = transport or AiohttpTransport(
            headers=self.config.headers,
            base_url=self.config.base_url,
            timeout_seconds=self.config.timeout_seconds,
            max_connections=self.config.max_connections,
            max_connections_per_host=self.config.max_connections_per_host,
        )

        self._breaker = CircuitBreaker(
            self.config.name,
            self.config.circuit_config(),
            clock=clock,
            logger=self._logger,
        )
        self._scheduler = Scheduler(
            self._dispatch,
            window=self.config.rate_window(),
            name=self.config.name,
            logger=self._logger,
        )
        self._retry = RetryExecutor(
            self._breaker,
            self.config.retry_policy(),
            logger=self._logger,
            sleep=sleep,
            rng=rng,
        )
        self._disposed = False

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"ApiClient(name={self.name!r}, window={self.window!r}, "
            f"circuit={self._breaker.state.value}, queue_depth={self.queue_depth})"
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def queue_depth(self) -> int:
        return len(self._scheduler.queue)

    @property
    def circuit_state(self) -> CircuitState:
        return self._breaker.state

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def window(self) -> RateLimitWindow:
        return self._scheduler.window

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def _dispatch(self, request: QueuedRequest) -> TransportResponse:
        return await self._transport.request(
            request.method,
            request.url,
            request.body,
            **request.options,
        )

    def enqueue(
        self,
        method: str,
        url: str,
        data: Any = None,
        **options: Any,
    ) -> asyncio.Future:
        """
        Add one transport call to the tail of the queue.

        Starts the scheduler on first use. Must be called from a running
        event loop.

        Returns:
            Future settled with the TransportResponse or the transport error.
            After dispose() the future is already failed with DisposedError.
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        if self._disposed:
            future = asyncio.get_running_loop().create_future()
            future.set_exception(DisposedError(self.name, url))
            return future

        request = QueuedRequest(
            url=encode_url(url),
            method=method,
            body=data,
            options=options,
        )
        future = self._scheduler.queue.enqueue(request)
        self._logger.info(
            '%s : ADDED to queue "%s"',
            self.name,
            request.url,
            extra={
                "client": self.name,
                "http_method": method,
                "http_url": request.url,
                "queue_depth": self.queue_depth,
            },
        )

        if not self._scheduler.is_running:
            self._scheduler.start()
        return future

    async def request(
        self,
        method: str,
        url: str,
        data: Any = None,
        *,
        max_retries: int | None = None,
        base_delay: float | None = None,
        **options: Any,
    ) -> TransportResponse:
        """
        Queue a call and wait for it under the retry policy and circuit breaker.

        Args:
            method: HTTP verb
            url: Target URL (encoded before it is queued)
            data: Request body for POST/PUT/PATCH
            max_retries: Override the configured retry budget for this call
            base_delay: Override the configured backoff base (seconds)
            **options: Passed to the transport (params, headers, timeout)

        Raises:
            CircuitOpenError: Breaker open, nothing was queued
            NonRetryableTransportError: Status in the non-retryable set
            TransientTransportError: Retry budget exhausted
            DisposedError: Client disposed while the call was queued
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        return await self._retry.execute(
            lambda: self.enqueue(method, url, data, **options),
            max_retries=max_retries,
            base_delay=base_delay,
            operation=f"{method} {url}",
        )

    async def get(self, url: str, **options: Any) -> TransportResponse:
        return await self.request("GET", url, **options)

    async def delete(self, url: str, **options: Any) -> TransportResponse:
        return await self.request("DELETE", url, **options)

    async def head(self, url: str, **options: Any) -> TransportResponse:
        return await self.request("HEAD", url, **options)

    async def options(self, url: str, **options: Any) -> TransportResponse:
        return await self.request("OPTIONS", url, **options)

    async def post(self, url: str, data: Any = None, **options: Any) -> TransportResponse:
        return await self.request("POST", url, data, **options)

    async def put(self, url: str, data: Any = None, **options: Any) -> TransportResponse:
        return await self.request("PUT", url, data, **options)

    async def patch(self, url: str, data: Any = None, **options: Any) -> TransportResponse:
        return await self.request("PATCH", url, data, **options)

    def dispose(self) -> int:
        """
        Stop both timers and fail every queued call with DisposedError.

        Calls already handed to the transport are left to finish. Safe to
        call more than once.

        Returns:
            Number of queued calls that were failed
        """
        if self._disposed:
            return 0

        self._disposed = True
        drained = self._scheduler.dispose(
            lambda request: DisposedError(self.name, request.url)
        )
        self._logger.info(
            "%s : Disposed",
            self.name,
            extra={"client": self.name, "drained": drained},
        )
        return drained

    async def close(self) -> None:
        """Dispose, wait for in-flight calls, then close the transport if we created it."""
        self.dispose()
        await self._scheduler.wait_in_flight()
        if self._owns_transport:
            await self._transport.close()
            await asyncio.sleep(0)

    def get_diagnostics(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "disposed": self._disposed,
            "queue_depth": self.queue_depth,
            "circuit": self._breaker.get_diagnostics(),
            "scheduler": self._scheduler.stats,
            "retry": {
                "max_retries": self._retry.policy.max_retries,
                "base_delay": self._retry.policy.base_delay,
                "non_retryable_status_codes": sorted(
                    self._retry.policy.non_retryable_status_codes
                ),
            },
        }


__all__ = [
    "ApiClient",
    "encode_url",
]
