"""
HTTP transport using aiohttp.

Provides the default Transport implementation: plain async HTTP calls
without queuing, circuit breaking or retry (the client layers those on
top). Handles timeouts, connection pooling, default headers and JSON/text
payload decoding, and turns non-2xx replies into status-coded errors.
"""

import logging
from typing import Any

import aiohttp

from queued_api.errors.exceptions import TransportError
from queued_api.transport.base import SUPPORTED_METHODS, TransportResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def create_session(
    headers: dict[str, str] | None = None,
    max_connections: int = 100,
    max_connections_per_host: int = 10,
    enable_ssl: bool = True,
    timeout_total: float = 300,
    timeout_connect: float = 30,
) -> aiohttp.ClientSession:
    """
    Create aiohttp ClientSession with connection pooling and timeouts.

    Args:
        headers: Default headers sent with every request
        max_connections: Total connection pool size (default: 100)
        max_connections_per_host: Per-host connection limit (default: 10)
        enable_ssl: Enable SSL verification (default: True)
        timeout_total: Total timeout in seconds (default: 300)
        timeout_connect: Connection timeout in seconds (default: 30)

    Returns:
        Configured aiohttp.ClientSession

    Note:
        Caller is responsible for session lifecycle management.
    """
    connector = aiohttp.TCPConnector(
        limit=max_connections,
        limit_per_host=max_connections_per_host,
        ssl=enable_ssl,
        ttl_dns_cache=300,
    )

    timeout = aiohttp.ClientTimeout(
        total=timeout_total,
        connect=timeout_connect,
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=timeout,
        headers=headers or {},
    )


class AiohttpTransport:
    """Async Transport backed by a (lazily created) aiohttp.ClientSession."""

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        base_url: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
        max_connections: int = 100,
        max_connections_per_host: int = 10,
    ):
        self.headers = dict(headers or {})
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout_seconds = float(timeout_seconds)
        self.max_connections = max_connections
        self.max_connections_per_host = max_connections_per_host

        self._session = session
        self._owns_session = session is None
        self._closed = False

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise RuntimeError("AiohttpTransport is closed, cannot create new session")
        if self._session is None or self._session.closed:
            self._session = create_session(
                headers=self.headers,
                max_connections=self.max_connections,
                max_connections_per_host=self.max_connections_per_host,
            )
            self._owns_session = True
        return self._session

    def build_url(self, url: str) -> str:
        if self.base_url and not url.startswith(("http://", "https://")):
            return f"{self.base_url}/{url.lstrip('/')}"
        return url

    @staticmethod
    async def _read_payload(response: aiohttp.ClientResponse, method: str) -> Any:
        if method == "HEAD":
            return None
        if "json" in (response.content_type or ""):
            try:
                return await response.json(content_type=None)
            except ValueError:
                pass
        return await response.text()

    async def request(
        self,
        method: str,
        url: str,
        data: Any = None,
        **options: Any,
    ) -> TransportResponse:
        """
        Issue one HTTP call.

        Args:
            method: HTTP verb (GET, POST, PUT, DELETE, PATCH, HEAD, OPTIONS)
            url: Absolute URL, or a path joined onto base_url
            data: Request body; dict/list sent as JSON, str/bytes sent raw
            **options: Extra aiohttp request kwargs (params, headers, timeout
                as seconds or aiohttp.ClientTimeout)

        Returns:
            TransportResponse for 2xx replies

        Raises:
            TransportError: Non-2xx status (status_code set), timeout or
                connection failure (status_code None)
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        session = self._ensure_session()
        full_url = self.build_url(url)

        kwargs = dict(options)
        timeout = kwargs.pop("timeout", None)
        if not isinstance(timeout, aiohttp.ClientTimeout):
            timeout = aiohttp.ClientTimeout(total=float(timeout or self.timeout_seconds))
        if data is not None:
            if isinstance(data, (str, bytes, bytearray)):
                kwargs["data"] = data
            else:
                kwargs["json"] = data

        try:
            async with session.request(
                method,
                full_url,
                timeout=timeout,
                **kwargs,
            ) as response:
                payload = await self._read_payload(response, method)
                result = TransportResponse(
                    status_code=response.status,
                    data=payload,
                    headers=dict(response.headers),
                    url=str(response.url),
                )
        except TimeoutError as e:
            raise TransportError(
                f"Timeout after {timeout.total}s: {full_url}",
                cause=e,
                context={"http_method": method, "http_url": full_url},
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"Connection error: {e}",
                cause=e,
                context={"http_method": method, "http_url": full_url},
            ) from e

        if not result.ok:
            logger.debug(
                "HTTP error response",
                extra={
                    "http_method": method,
                    "http_url": full_url,
                    "http_status": result.status_code,
                },
            )
            raise TransportError(
                f"Request failed with status code {result.status_code}: {full_url}",
                status_code=result.status_code,
                response=result,
                context={"http_method": method, "http_url": full_url},
            )

        return result

    async def close(self) -> None:
        self._closed = True
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    "AiohttpTransport",
    "DEFAULT_TIMEOUT_SECONDS",
    "create_session",
]
