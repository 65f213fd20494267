"""Unit tests for per-provider token-bucket rate limiting."""

import asyncio

import pytest

from medsales_geo.core.config import GeocodingConfig, ProviderConfig
from medsales_geo.lib.geocoder.rate_limit import RateLimiter, RateLimitTimeout, TokenBucket


class SimulatedTime:
    """Clock plus sleep that advances the clock instead of waiting."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class TestTokenBucket:
    """Tests for a single provider bucket."""

    def test_rejects_bad_parameters(self) -> None:
        with pytest.raises(ValueError, match="rate"):
            TokenBucket(0, 1)
        with pytest.raises(ValueError, match="capacity"):
            TokenBucket(1, 0)

    @pytest.mark.asyncio
    async def test_burst_is_immediate(self) -> None:
        t = SimulatedTime()
        bucket = TokenBucket(2.0, 5, clock=t.clock, sleep=t.sleep)
        for _ in range(5):
            assert await bucket.acquire() == 0.0
        assert t.sleeps == []

    @pytest.mark.asyncio
    async def test_waits_for_refill(self) -> None:
        t = SimulatedTime()
        bucket = TokenBucket(2.0, 1, clock=t.clock, sleep=t.sleep)
        await bucket.acquire()
        waited = await bucket.acquire()
        assert waited == pytest.approx(0.5)
        assert t.now == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_refill_capped_at_capacity(self) -> None:
        t = SimulatedTime()
        bucket = TokenBucket(10.0, 3, clock=t.clock, sleep=t.sleep)
        t.now = 100.0
        assert bucket.try_acquire()
        assert bucket.tokens == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_timeout_when_wait_exceeds_bound(self) -> None:
        t = SimulatedTime()
        bucket = TokenBucket(0.1, 1, max_wait=5.0, name="nominatim", clock=t.clock, sleep=t.sleep)
        await bucket.acquire()
        with pytest.raises(RateLimitTimeout, match="nominatim"):
            await bucket.acquire()
        assert t.sleeps == []

    @pytest.mark.asyncio
    async def test_max_wait_override(self) -> None:
        t = SimulatedTime()
        bucket = TokenBucket(0.1, 1, max_wait=5.0, clock=t.clock, sleep=t.sleep)
        await bucket.acquire()
        assert await bucket.acquire(max_wait=20.0) == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_rate_bound_under_concurrency(self) -> None:
        """No more than capacity + rate * T grants in any window of T seconds."""
        t = SimulatedTime()
        rate, capacity = 4.0, 3
        bucket = TokenBucket(rate, capacity, max_wait=1000.0, clock=t.clock, sleep=t.sleep)
        grants: list[float] = []

        async def worker() -> None:
            for _ in range(10):
                await bucket.acquire()
                grants.append(t.now)

        await asyncio.gather(*(worker() for _ in range(5)))

        assert len(grants) == 50
        assert bucket.tokens >= 0
        for start in grants:
            for window in (0.5, 1.0, 2.5):
                in_window = [g for g in grants if start <= g <= start + window]
                assert len(in_window) <= capacity + rate * window + 1e-9


class TestRateLimiter:
    """Tests for the per-provider registry."""

    def test_from_config_registers_every_provider(self) -> None:
        config = GeocodingConfig(
            providers=(ProviderConfig("google", 40.0, 50), ProviderConfig("nominatim", 1.0, 1)),
            rate_limit_max_wait=3.0,
        )
        limiter = RateLimiter.from_config(config)
        assert "google" in limiter
        assert "nominatim" in limiter
        assert limiter.bucket("nominatim").rate == 1.0
        assert limiter.bucket("google").max_wait == 3.0

    def test_register_keeps_existing_bucket(self) -> None:
        limiter = RateLimiter()
        first = limiter.register("google", rate=10, capacity=10)
        second = limiter.register("google", rate=1, capacity=1)
        assert first is second
        assert second.rate == 10

    @pytest.mark.asyncio
    async def test_unknown_provider(self) -> None:
        limiter = RateLimiter()
        with pytest.raises(KeyError):
            await limiter.acquire("census")
        with pytest.raises(KeyError):
            limiter.bucket("census")

    @pytest.mark.asyncio
    async def test_buckets_are_independent(self) -> None:
        t = SimulatedTime()
        limiter = RateLimiter(clock=t.clock, sleep=t.sleep)
        limiter.register("nominatim", rate=1.0, capacity=1, max_wait=0.0)
        limiter.register("google", rate=50.0, capacity=50)

        await limiter.acquire("nominatim")
        with pytest.raises(RateLimitTimeout):
            await limiter.acquire("nominatim")
        for _ in range(10):
            assert await limiter.acquire("google") == 0.0
        assert t.now == 0.0

    @pytest.mark.asyncio
    async def test_wait_is_cancellable(self) -> None:
        limiter = RateLimiter()
        limiter.register("nominatim", rate=0.01, capacity=1, max_wait=1000.0)
        await limiter.acquire("nominatim")
        task = asyncio.create_task(limiter.acquire("nominatim"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
