"""Rate-limited HTTP client with timeout, status classification and retry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from luma_sync.client.ratelimit import ConcurrencyGate, Sleep, TokenBucket
from luma_sync.config.settings import RetryConfig
from luma_sync.errors import (
    FatalRequestError,
    MalformedResponseError,
    RequestTimeoutError,
    TransientNetworkError,
)
from luma_sync.utils.logging import get_logger

logger = get_logger("client.http")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * 2**attempt``, capped."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given zero-based failed attempt."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    description: str = "request",
) -> T:
    """
    Run an operation, retrying only on TransientNetworkError.

    Any other exception, FatalRequestError included, propagates on the first
    occurrence. After ``policy.max_attempts`` transient failures the last one
    is re-raised.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientNetworkError as e:
            attempt += 1
            if attempt >= policy.max_attempts:
                logger.error(
                    "retries_exhausted",
                    operation=description,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = policy.delay_for(attempt - 1)
            if e.retry_after is not None:
                delay = max(delay, min(e.retry_after, policy.max_delay))

            logger.warning(
                "retrying_after_transient_error",
                operation=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=delay,
                status_code=e.status_code,
                error=str(e),
            )
            await sleep(delay)


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def raise_for_status(response: httpx.Response) -> None:
    """
    Classify an HTTP response.

    Raises:
        TransientNetworkError: On 5xx or 429
        FatalRequestError: On any other 4xx
    """
    status = response.status_code
    if status < 400:
        return

    url = str(response.request.url) if response.request else ""
    body = response.text[:500]

    if status >= 500 or status == 429:
        raise TransientNetworkError(
            f"HTTP {status} from {url}: {body}",
            url=url,
            status_code=status,
            retry_after=_parse_retry_after(response),
        )

    raise FatalRequestError(
        f"HTTP {status} from {url}: {body}",
        url=url,
        status_code=status,
        body=body,
    )


class HttpClient:
    """
    Outbound HTTP with a concurrency cap, a token bucket and a timeout.

    ``request`` performs exactly one attempt; ``request_with_retry`` wraps it
    in the backoff policy. Callers that add their own retry (the batch sink
    writer) use ``request`` directly so attempts are not multiplied.
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[dict[str, str]] = None,
        requests_per_minute: int = 300,
        max_concurrent: int = 3,
        timeout: float = 10.0,
        retry: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        bucket: Optional[TokenBucket] = None,
        sleep: Sleep = asyncio.sleep,
        name: str = "http",
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Prefix for relative URLs
            headers: Headers sent with every request
            requests_per_minute: Token bucket capacity
            max_concurrent: In-flight request cap
            timeout: Per-request timeout in seconds
            retry: Backoff policy for request_with_retry
            client: Pre-built httpx client (tests inject a MockTransport)
            bucket: Pre-built token bucket
            sleep: Coroutine used for backoff waits
            name: Label used in log events
        """
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.name = name
        self.bucket = bucket or TokenBucket(requests_per_minute, sleep=sleep)
        self.gate = ConcurrencyGate(max_concurrent)
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
        )
        if client is not None and headers:
            self._client.headers.update(headers)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Perform one rate-limited request.

        Raises:
            RequestTimeoutError: If the request exceeds the timeout
            TransientNetworkError: On 5xx/429 or connection failure
            FatalRequestError: On 4xx
        """
        async with self.gate:
            await self.bucket.acquire()

            logger.debug("http_request", client=self.name, method=method, url=url)
            try:
                response = await asyncio.wait_for(
                    self._client.request(method, url, **kwargs),
                    timeout=self.timeout,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException) as e:
                raise RequestTimeoutError(
                    f"{method} {url} timed out after {self.timeout}s",
                    url=url,
                ) from e
            except httpx.TransportError as e:
                raise TransientNetworkError(
                    f"{method} {url} failed: {e}",
                    url=url,
                ) from e

        raise_for_status(response)
        return response

    async def request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Perform a request under the retry policy."""
        return await retry_async(
            lambda: self.request(method, url, **kwargs),
            self.retry,
            sleep=self._sleep,
            description=f"{self.name} {method} {url}",
        )

    async def get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET with retry and decode the JSON body."""
        response = await self.request_with_retry("GET", url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"GET {url} returned a non-JSON body: {e}",
                path=url,
            ) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
