"""
Tests for the ApiClient surface.

Verifies the end-to-end behaviour of queue + rate window + retry + breaker:
- FIFO settlement order
- Breaker opens after consecutive failures and then fails fast
- Non-retryable status codes are attempted once
- Retry budget and backoff
- Disposal of queued calls
- Rate window holding calls until the window resets
"""

import asyncio
import logging
import random
from unittest.mock import AsyncMock

import pytest

from queued_api.client import ApiClient, encode_url
from queued_api.config import ApiClientConfig
from queued_api.errors import (
    CircuitOpenError,
    DisposedError,
    NonRetryableTransportError,
    TransientTransportError,
    TransportError,
)
from queued_api.resilience.circuit_breaker import CircuitState
from queued_api.transport import AiohttpTransport, TransportResponse


class FakeTransport:
    """Transport double answering from a handler and recording every call."""

    def __init__(self, handler=None):
        self.calls = []
        self.closed = False
        self._handler = handler or (lambda method, url, data: {"url": url})

    async def request(self, method, url, data=None, **options):
        self.calls.append((method, url, data, options))
        outcome = self._handler(method, url, data)
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        if isinstance(outcome, BaseException):
            raise outcome
        return TransportResponse(status_code=200, data=outcome, url=url)

    async def close(self):
        self.closed = True

    @property
    def urls(self):
        return [url for _, url, _, _ in self.calls]


def failing(status):
    return lambda method, url, data: TransportError(f"HTTP {status}", status_code=status)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def make_client(sleep, clock):
    clients = []

    def _make(transport=None, **config):
        config.setdefault("name", "test")
        client = ApiClient(
            ApiClientConfig(**config),
            transport=transport or FakeTransport(),
            sleep=sleep,
            clock=clock,
            rng=random.Random(0),
        )
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.dispose()


class TestEncodeUrl:
    def test_spaces_and_unicode_encoded(self):
        assert (
            encode_url("https://x.test/summoner/Hide on bush/ü")
            == "https://x.test/summoner/Hide%20on%20bush/%C3%BC"
        )

    def test_reserved_characters_kept(self):
        url = "https://x.test/a/b?x=1&y=a,b;c#frag"
        assert encode_url(url) == url

    def test_existing_escapes_preserved(self):
        assert encode_url("https://x.test/a%20b") == "https://x.test/a%20b"

    def test_bare_percent_encoded(self):
        assert encode_url("https://x.test/100%") == "https://x.test/100%25"


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_returns_transport_response(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)

        response = await client.get("https://x.test/a", params={"q": "1"})

        assert response.status_code == 200
        assert response.data == {"url": "https://x.test/a"}
        assert transport.calls == [("GET", "https://x.test/a", None, {"params": {"q": "1"}})]

    @pytest.mark.parametrize("verb", ["post", "put", "patch"])
    @pytest.mark.asyncio
    async def test_body_verbs(self, make_client, verb):
        transport = FakeTransport()
        client = make_client(transport)

        await getattr(client, verb)("https://x.test/items", {"id": 1})

        method, url, data, _ = transport.calls[0]
        assert method == verb.upper()
        assert data == {"id": 1}

    @pytest.mark.parametrize("verb", ["delete", "head", "options"])
    @pytest.mark.asyncio
    async def test_bodyless_verbs(self, make_client, verb):
        transport = FakeTransport()
        client = make_client(transport)

        await getattr(client, verb)("https://x.test/items/1")

        assert transport.calls[0][0] == verb.upper()
        assert transport.calls[0][2] is None

    @pytest.mark.asyncio
    async def test_url_encoded_before_queueing(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)

        await client.get("https://x.test/summoner/Hide on bush")

        assert transport.urls == ["https://x.test/summoner/Hide%20on%20bush"]

    @pytest.mark.asyncio
    async def test_unsupported_method(self, make_client):
        client = make_client()
        with pytest.raises(ValueError, match="Unsupported"):
            await client.request("TRACE", "https://x.test/")

    @pytest.mark.asyncio
    async def test_fifo_settlement_order(self, make_client):
        settled = []
        transport = FakeTransport()
        client = make_client(transport)

        async def call(i):
            await client.get(f"https://x.test/{i}")
            settled.append(i)

        await asyncio.gather(*(call(i) for i in range(5)))

        assert transport.urls == [f"https://x.test/{i}" for i in range(5)]
        assert settled == list(range(5))

    @pytest.mark.asyncio
    async def test_retry_requeues_at_tail(self, make_client):
        release = asyncio.Event()
        attempts = {"a": 0}

        async def handler(method, url, data):
            if url.endswith("/a"):
                attempts["a"] += 1
                if attempts["a"] == 1:
                    await release.wait()
                    return TransportError("connection reset")
            return {"url": url}

        transport = FakeTransport(handler)
        client = make_client(transport, max_requests_per_minute=10)
        settled = []

        async def call(name):
            await client.get(f"https://x.test/{name}")
            settled.append(name)

        task_a = asyncio.create_task(call("a"))
        await asyncio.sleep(0)
        client.scheduler.tick()
        task_b = asyncio.create_task(call("b"))
        await asyncio.sleep(0)
        assert client.queue_depth == 1

        release.set()
        for _ in range(20):
            if client.queue_depth == 2:
                break
            await asyncio.sleep(0)
        assert client.queue_depth == 2

        client.scheduler.tick()
        client.scheduler.tick()
        await asyncio.gather(task_a, task_b)

        assert transport.urls == ["https://x.test/a", "https://x.test/b", "https://x.test/a"]
        assert settled == ["b", "a"]


class TestResilience:
    @pytest.mark.asyncio
    async def test_breaker_opens_and_fails_fast(self, make_client):
        transport = FakeTransport(failing(500))
        client = make_client(transport, failure_threshold=2, max_retries=0)

        for _ in range(2):
            with pytest.raises(TransientTransportError):
                await client.get("https://x.test/down")

        assert client.circuit_state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError, match="Too many failures, circuit is open"):
            await client.get("https://x.test/down")
        assert len(transport.calls) == 2
        assert client.queue_depth == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_recovers(self, make_client, clock):
        healthy = {"up": False}

        def handler(method, url, data):
            return {"ok": True} if healthy["up"] else TransportError("HTTP 500", status_code=500)

        client = make_client(FakeTransport(handler), failure_threshold=1, max_retries=0)
        with pytest.raises(TransientTransportError):
            await client.get("https://x.test/")
        assert client.circuit_state == CircuitState.OPEN

        healthy["up"] = True
        clock.advance(61.0)
        response = await client.get("https://x.test/")

        assert response.data == {"ok": True}
        assert client.circuit_state == CircuitState.CLOSED
        assert client.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_non_retryable_status_single_attempt(self, make_client, sleep):
        transport = FakeTransport(failing(404))
        client = make_client(transport)

        with pytest.raises(NonRetryableTransportError) as exc_info:
            await client.get("https://x.test/missing")

        assert exc_info.value.status_code == 404
        assert len(transport.calls) == 1
        assert client.breaker.failure_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_budget(self, make_client, sleep):
        transport = FakeTransport(failing(503))
        client = make_client(transport, max_retries=3, base_delay=1.0)

        with pytest.raises(TransientTransportError):
            await client.get("https://x.test/flaky")

        assert len(transport.calls) == 4
        delays = [call.args[0] for call in sleep.await_args_list]
        for delay, nominal in zip(delays, [1.0, 2.0, 4.0], strict=True):
            assert nominal * 0.85 <= delay <= nominal * 1.15
        assert client.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_retry_then_success(self, make_client):
        outcomes = iter([TransportError("reset"), {"ok": True}])
        transport = FakeTransport(lambda method, url, data: next(outcomes))
        client = make_client(transport)

        response = await client.get("https://x.test/")

        assert response.data == {"ok": True}
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_per_call_retry_override(self, make_client, sleep):
        transport = FakeTransport(failing(500))
        client = make_client(transport, max_retries=3)

        with pytest.raises(TransientTransportError):
            await client.get("https://x.test/", max_retries=1, base_delay=0.5)

        assert len(transport.calls) == 2
        (delay,) = sleep.await_args.args
        assert 0.425 <= delay <= 0.575

    @pytest.mark.asyncio
    async def test_custom_non_retryable_codes(self, make_client):
        transport = FakeTransport(failing(401))
        client = make_client(transport, non_retryable_status_codes=[401])

        with pytest.raises(NonRetryableTransportError):
            await client.get("https://x.test/")
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_pretyped_transient_with_non_retryable_status(self, make_client, sleep):
        transport = FakeTransport(
            lambda method, url, data: TransientTransportError("not found", status_code=404)
        )
        client = make_client(transport)

        with pytest.raises(NonRetryableTransportError) as exc_info:
            await client.get("https://x.test/missing")

        assert exc_info.value.status_code == 404
        assert len(transport.calls) == 1
        assert client.breaker.failure_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pretyped_non_retryable_with_retryable_status(self, make_client):
        transport = FakeTransport(
            lambda method, url, data: NonRetryableTransportError("boom", status_code=500)
        )
        client = make_client(transport, max_retries=2)

        with pytest.raises(TransientTransportError) as exc_info:
            await client.get("https://x.test/")

        assert exc_info.value.status_code == 500
        assert len(transport.calls) == 3


class TestRateWindow:
    @pytest.mark.asyncio
    async def test_third_call_waits_for_window_reset(self, make_client):
        transport = FakeTransport()
        client = make_client(transport, max_requests_per_minute=2)
        assert client.window.tick_interval == 30.0

        tasks = [
            asyncio.create_task(client.get(f"https://x.test/c{i}")) for i in (1, 2, 3)
        ]
        await asyncio.sleep(0)
        assert client.queue_depth == 3

        client.scheduler.tick()
        client.scheduler.tick()
        assert client.scheduler.tick() is None
        await asyncio.gather(tasks[0], tasks[1])
        assert not tasks[2].done()
        assert client.queue_depth == 1

        client.scheduler.reset_window()
        client.scheduler.tick()
        await tasks[2]

        assert transport.urls == [f"https://x.test/c{i}" for i in (1, 2, 3)]

    @pytest.mark.asyncio
    async def test_short_window_dispatches_through_loops(self, make_client):
        transport = FakeTransport()
        client = make_client(transport, max_requests_per_minute=2, window_seconds=0.1)

        results = await asyncio.wait_for(
            asyncio.gather(*(client.get(f"https://x.test/{i}") for i in range(4))),
            timeout=3.0,
        )

        assert [r.url for r in results] == [f"https://x.test/{i}" for i in range(4)]

    @pytest.mark.asyncio
    async def test_cancelled_call_does_not_consume_budget(self, make_client):
        transport = FakeTransport()
        client = make_client(transport, max_requests_per_minute=1)

        abandoned = asyncio.create_task(client.get("https://x.test/abandoned"))
        wanted = asyncio.create_task(client.get("https://x.test/wanted"))
        await asyncio.sleep(0)
        abandoned.cancel()
        await asyncio.sleep(0)

        client.scheduler.tick()
        await wanted

        assert transport.urls == ["https://x.test/wanted"]
        assert client.window.count == 1


class TestDispose:
    @pytest.mark.asyncio
    async def test_dispose_fails_queued_and_spares_in_flight(self, make_client):
        release = asyncio.Event()

        async def slow(method, url, data):
            await release.wait()
            return {"url": url}

        transport = FakeTransport(slow)
        client = make_client(transport, max_requests_per_minute=10)

        tasks = [asyncio.create_task(client.get(f"https://x.test/{i}")) for i in range(3)]
        await asyncio.sleep(0)
        client.scheduler.tick()
        await asyncio.sleep(0)

        drained = client.dispose()

        assert drained == 2
        assert client.disposed
        assert not client.scheduler.is_running
        for task in tasks[1:]:
            with pytest.raises(DisposedError, match="API client 'test' disposed"):
                await task

        release.set()
        response = await tasks[0]
        assert response.data == {"url": "https://x.test/0"}
        assert transport.urls == ["https://x.test/0"]
        assert client.breaker.stats.failed_calls == 0

    @pytest.mark.asyncio
    async def test_calls_after_dispose_fail(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)
        client.dispose()

        future = client.enqueue("GET", "https://x.test/")
        assert isinstance(future.exception(), DisposedError)

        with pytest.raises(DisposedError):
            await client.get("https://x.test/")
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, make_client):
        client = make_client()
        assert client.dispose() == 0
        assert client.dispose() == 0

    @pytest.mark.asyncio
    async def test_close_waits_for_in_flight_and_keeps_injected_transport(self, make_client):
        transport = FakeTransport()
        client = make_client(transport)
        await client.get("https://x.test/")

        await client.close()

        assert client.disposed
        assert not transport.closed

    @pytest.mark.asyncio
    async def test_close_closes_owned_transport(self):
        client = ApiClient(ApiClientConfig(name="owned"))
        assert isinstance(client.transport, AiohttpTransport)

        async with client:
            pass

        assert client.disposed
        assert client.transport.closed


class TestObservability:
    @pytest.mark.asyncio
    async def test_properties_and_diagnostics(self, make_client):
        client = make_client(max_requests_per_minute=5, name="riot")
        await client.get("https://x.test/")

        assert client.name == "riot"
        assert client.queue_depth == 0
        assert client.circuit_state == CircuitState.CLOSED

        diagnostics = client.get_diagnostics()
        assert diagnostics["name"] == "riot"
        assert diagnostics["disposed"] is False
        assert diagnostics["circuit"]["state"] == "closed"
        assert diagnostics["scheduler"]["dispatched"] == 1
        assert diagnostics["retry"]["non_retryable_status_codes"] == [403, 404]
        assert "riot" in repr(client)

    @pytest.mark.asyncio
    async def test_log_lines(self, make_client, caplog):
        client = make_client(name="riot", max_requests_per_minute=4, window_seconds=0.2)

        with caplog.at_level(logging.INFO, logger="queued_api.client.riot"):
            await asyncio.wait_for(client.get("https://x.test/a"), timeout=2.0)
            client.dispose()

        messages = [record.getMessage() for record in caplog.records]
        assert 'riot : ADDED to queue "https://x.test/a"' in messages
        assert 'riot : PROCESS from queue "https://x.test/a" -> 1/4' in messages
        assert "riot : Disposed" in messages
        assert all(r.name == "queued_api.client.riot" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_injected_logger(self, sleep):
        logger = logging.getLogger("custom.api")
        client = ApiClient(
            ApiClientConfig(name="x"), transport=FakeTransport(), logger=logger, sleep=sleep
        )
        try:
            assert client.scheduler._logger is logger
        finally:
            client.dispose()
