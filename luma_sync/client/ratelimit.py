"""Client-side rate limiting primitives."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from luma_sync.utils.logging import get_logger

logger = get_logger("client.ratelimit")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucket:
    """
    Token bucket with a minimum spacing between dispatches.

    A caller may proceed only when a whole token is available AND at least
    ``60 / requests_per_minute`` seconds have passed since the previous
    dispatch. Waiting is done with the event loop's sleep, never a busy poll.
    """

    def __init__(
        self,
        requests_per_minute: int,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize the bucket.

        Args:
            requests_per_minute: Bucket capacity and refill per minute
            clock: Monotonic clock in seconds
            sleep: Coroutine used to wait
        """
        if requests_per_minute < 1:
            raise ValueError(f"requests_per_minute must be >= 1, got {requests_per_minute}")

        self.capacity = float(requests_per_minute)
        self.refill_rate = requests_per_minute / 60.0  # tokens per second
        self.min_interval = 60.0 / requests_per_minute
        self.tokens = self.capacity

        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._last_dispatch: Optional[float] = None
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def time_until_ready(self) -> float:
        """Seconds until the next dispatch is allowed (0 if ready now)."""
        self._refill()

        wait = 0.0
        if self.tokens < 1.0:
            wait = (1.0 - self.tokens) / self.refill_rate

        if self._last_dispatch is not None:
            spacing = self._last_dispatch + self.min_interval - self._clock()
            wait = max(wait, spacing)

        return max(0.0, wait)

    async def acquire(self) -> None:
        """Wait for both gates, then consume one token."""
        async with self._lock:
            while True:
                wait = self.time_until_ready()
                if wait <= 0:
                    break
                logger.debug("rate_limit_wait", wait_seconds=round(wait, 3))
                await self._sleep(wait)

            self.tokens -= 1.0
            self._last_dispatch = self._clock()


class ConcurrencyGate:
    """Caps the number of in-flight requests; excess callers queue."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self.limit = limit
        self.in_flight = 0
        self._semaphore = asyncio.Semaphore(limit)

    async def __aenter__(self) -> "ConcurrencyGate":
        await self._semaphore.acquire()
        self.in_flight += 1
        return self

    async def __aexit__(self, *args: object) -> None:
        self.in_flight -= 1
        self._semaphore.release()
