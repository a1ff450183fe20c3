"""Tests for the rate-limited HTTP client, status classification and retry."""

import asyncio

import httpx
import pytest

from luma_sync.client.http import HttpClient, RetryPolicy, retry_async
from luma_sync.client.ratelimit import TokenBucket
from luma_sync.errors import FatalRequestError, RequestTimeoutError, TransientNetworkError
from tests.fakes import FakeClock


def make_client(handler, timeout: float = 10.0, max_attempts: int = 3):
    """HttpClient over a mock transport; returns the client and retry sleeps."""
    clock = FakeClock()
    bucket_clock = FakeClock()
    client = HttpClient(
        headers={"x-test": "1"},
        timeout=timeout,
        retry=RetryPolicy(max_attempts=max_attempts, base_delay=1.0, max_delay=30.0),
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://api.test",
        ),
        bucket=TokenBucket(600, clock=bucket_clock, sleep=bucket_clock.sleep),
        sleep=clock.sleep,
    )
    return client, clock


class Responder:
    """Plays back status codes in order, then repeats the last one."""

    def __init__(self, *statuses: int, headers=None) -> None:
        self.statuses = list(statuses)
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, json={"ok": status < 400}, headers=self.headers)


class TestRetryPolicy:
    """Backoff schedule."""

    def test_exponential_and_capped(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=5.0)

        assert [policy.delay_for(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestRetryAsync:
    """Only transient errors are retried."""

    @pytest.mark.asyncio
    async def test_non_transient_propagates_immediately(self):
        clock = FakeClock()
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_async(operation, RetryPolicy(), sleep=clock.sleep)

        assert calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        clock = FakeClock()
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise TransientNetworkError("down")

        with pytest.raises(TransientNetworkError):
            await retry_async(operation, RetryPolicy(max_attempts=4), sleep=clock.sleep)

        assert calls == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]


class TestHttpClient:
    """Classification and retry over a mock transport."""

    @pytest.mark.asyncio
    async def test_success(self):
        responder = Responder(200)
        client, _ = make_client(responder)

        data = await client.get_json("/ping", params={"a": "b"})

        assert data == {"ok": True}
        request = responder.requests[0]
        assert request.url.params["a"] == "b"
        assert request.headers["x-test"] == "1"

    @pytest.mark.asyncio
    async def test_server_errors_retried(self):
        """5xx is transient and retried with backoff."""
        responder = Responder(503, 502, 200)
        client, clock = make_client(responder)

        response = await client.request_with_retry("GET", "/ping")

        assert response.status_code == 200
        assert len(responder.requests) == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_errors_exhaust(self):
        responder = Responder(500)
        client, _ = make_client(responder)

        with pytest.raises(TransientNetworkError) as exc_info:
            await client.request_with_retry("GET", "/ping")

        assert exc_info.value.status_code == 500
        assert len(responder.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_is_fatal(self):
        """4xx surfaces on the first attempt with status and body."""
        responder = Responder(404)
        client, clock = make_client(responder)

        with pytest.raises(FatalRequestError) as exc_info:
            await client.request_with_retry("GET", "/missing")

        assert exc_info.value.status_code == 404
        assert "ok" in exc_info.value.body
        assert len(responder.requests) == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_too_many_requests_honours_retry_after(self):
        """429 is retried after at least the Retry-After delay."""
        responder = Responder(429, 200, headers={"Retry-After": "7"})
        client, clock = make_client(responder)

        await client.request_with_retry("GET", "/ping")

        assert clock.sleeps == [7.0]

    @pytest.mark.asyncio
    async def test_transport_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client, _ = make_client(handler, max_attempts=1)

        with pytest.raises(RequestTimeoutError):
            await client.request("GET", "/slow")

    @pytest.mark.asyncio
    async def test_request_timeout(self):
        """A response slower than the timeout is a transient timeout."""
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200)

        client, _ = make_client(handler, timeout=0.01)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.request("GET", "/slow")

        assert isinstance(exc_info.value, TransientNetworkError)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = make_client(handler)

        with pytest.raises(TransientNetworkError):
            await client.request("GET", "/ping")

    @pytest.mark.asyncio
    async def test_does_not_close_injected_client(self):
        inner = httpx.AsyncClient(transport=httpx.MockTransport(Responder(200)))
        client = HttpClient(client=inner)

        await client.aclose()

        assert not inner.is_closed
        await inner.aclose()


class SlowServer:
    """Local HTTP server that answers every request after a fixed delay."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.server = None

    async def _handle(self, reader, writer) -> None:
        await reader.readuntil(b"\r\n\r\n")
        await asyncio.sleep(self.delay)
        writer.write(
            b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\nConnection: close\r\n\r\nok"
        )
        await writer.drain()
        writer.close()

    async def __aenter__(self) -> str:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        host, port = self.server.sockets[0].getsockname()[:2]
        return f"http://{host}:{port}"

    async def __aexit__(self, *args) -> None:
        self.server.close()
        await self.server.wait_closed()


class TestHttpClientTimeouts:
    """The configured timeout governs the owned httpx client."""

    def test_owned_client_uses_configured_timeout(self):
        client = HttpClient(timeout=30.0)

        assert client._client.timeout == httpx.Timeout(30.0)

    @pytest.mark.asyncio
    async def test_slow_response_within_timeout_succeeds(self):
        """A reply slower than httpx's 5s default still lands under a 30s timeout."""
        async with SlowServer(delay=5.5) as base_url:
            async with HttpClient(
                base_url=base_url,
                timeout=30.0,
                retry=RetryPolicy(max_attempts=1),
            ) as client:
                response = await client.request("GET", "/")

        assert response.status_code == 200
        assert response.text == "ok"

    @pytest.mark.asyncio
    async def test_slow_response_past_timeout_fails(self):
        async with SlowServer(delay=1.0) as base_url:
            async with HttpClient(
                base_url=base_url,
                timeout=0.2,
                retry=RetryPolicy(max_attempts=1),
            ) as client:
                with pytest.raises(RequestTimeoutError):
                    await client.request("GET", "/")
