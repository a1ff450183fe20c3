"""Tests for the token bucket and concurrency gate."""

import asyncio

import pytest

from luma_sync.client.ratelimit import ConcurrencyGate, TokenBucket
from tests.fakes import FakeClock


class TestTokenBucket:
    """Dual gate: token available and minimum spacing."""

    @pytest.mark.asyncio
    async def test_first_acquire_is_immediate(self):
        """A full bucket with no prior dispatch does not wait."""
        clock = FakeClock()
        bucket = TokenBucket(60, clock=clock, sleep=clock.sleep)

        await bucket.acquire()

        assert clock.sleeps == []
        assert bucket.tokens == pytest.approx(59.0)

    @pytest.mark.asyncio
    async def test_dispatches_are_spaced(self):
        """Consecutive acquires are at least 60/N seconds apart."""
        clock = FakeClock()
        bucket = TokenBucket(60, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            await bucket.acquire()

        assert clock.sleeps == [pytest.approx(1.0), pytest.approx(1.0)]
        assert clock.now == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_waits_for_token_when_drained(self):
        """An empty bucket waits for one token to refill."""
        clock = FakeClock()
        bucket = TokenBucket(120, clock=clock, sleep=clock.sleep)
        bucket.tokens = 0.0

        assert bucket.time_until_ready() == pytest.approx(0.5)
        await bucket.acquire()

        assert sum(clock.sleeps) == pytest.approx(0.5)

    def test_spacing_already_elapsed(self):
        """No wait once the spacing interval has passed."""
        clock = FakeClock()
        bucket = TokenBucket(30, clock=clock, sleep=clock.sleep)
        bucket._last_dispatch = 0.0
        clock.now = 5.0

        assert bucket.time_until_ready() == 0.0

    def test_rejects_zero_rate(self):
        with pytest.raises(ValueError):
            TokenBucket(0)


class TestConcurrencyGate:
    """In-flight cap."""

    @pytest.mark.asyncio
    async def test_limits_in_flight(self):
        """No more than ``limit`` holders at any moment."""
        gate = ConcurrencyGate(2)
        peak = 0

        async def worker():
            nonlocal peak
            async with gate:
                peak = max(peak, gate.in_flight)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(6)))

        assert peak == 2
        assert gate.in_flight == 0

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            ConcurrencyGate(0)
