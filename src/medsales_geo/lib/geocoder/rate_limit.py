"""Per-provider token-bucket rate limiting for outbound geocoding calls.

Each provider owns exactly one ``TokenBucket`` for the lifetime of the
``RateLimiter``. Buckets refill continuously at ``rate`` tokens per second up
to ``capacity``; ``acquire`` takes one token or suspends the calling
coroutine (never the event loop) until one is available.

Bucket state is only read and written between awaits on a single event
loop, so the refill/check/decrement step is atomic with respect to other
coroutines and the token count can never go below zero.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from medsales_geo.core.config import GeocodingConfig


class RateLimitTimeout(Exception):
    """Raised when no token became available within the bounded wait."""

    def __init__(self, provider: str, max_wait: float) -> None:
        self.provider = provider
        self.max_wait = max_wait
        super().__init__(f"{provider}: no rate-limit token within {max_wait:.2f}s")


class TokenBucket:
    """Token bucket for a single provider.

    Args:
        rate: Tokens added per second.
        capacity: Maximum tokens held (burst size).
        max_wait: Default maximum seconds ``acquire`` may wait.
        name: Provider name, for errors and logs.
        clock: Monotonic clock returning seconds.
        sleep: Coroutine used to wait; ``asyncio.sleep`` keeps waits cancellable.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        *,
        max_wait: float = 10.0,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            msg = "rate must be > 0"
            raise ValueError(msg)
        if capacity <= 0:
            msg = "capacity must be > 0"
            raise ValueError(msg)

        self.name = name
        self.rate = float(rate)
        self.capacity = float(capacity)
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self.tokens = float(capacity)
        self.last_refill = clock()

    def _refill(self) -> float:
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now
        return now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now, without waiting."""
        self._refill()
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False

    async def acquire(self, max_wait: float | None = None) -> float:
        """Take one token, waiting for a refill if the bucket is empty.

        Args:
            max_wait: Override for the bucket's default bounded wait.

        Returns:
            Seconds spent waiting.

        Raises:
            RateLimitTimeout: If a token would not be available within the wait bound.
        """
        limit = self.max_wait if max_wait is None else max_wait
        start = self._clock()

        while True:
            now = self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return now - start

            wait_for = (1.0 - self.tokens) / self.rate
            if (now - start) + wait_for > limit:
                raise RateLimitTimeout(self.name, limit)

            # Another waiter may take the token first; the loop re-checks
            await self._sleep(wait_for)


class RateLimiter:
    """Registry of independent per-provider token buckets."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}

    @classmethod
    def from_config(cls, config: GeocodingConfig, **kwargs: object) -> RateLimiter:
        """Create a limiter with one bucket per configured provider."""
        limiter = cls(**kwargs)  # type: ignore[arg-type]
        limiter.register_config(config)
        return limiter

    def register_config(self, config: GeocodingConfig) -> None:
        """Register buckets for providers in ``config`` that have none yet."""
        for provider in config.providers:
            self.register(
                provider.name,
                rate=provider.rate_per_second,
                capacity=provider.capacity,
                max_wait=config.rate_limit_max_wait,
            )

    def register(self, provider: str, *, rate: float, capacity: int, max_wait: float = 10.0) -> TokenBucket:
        """Create the bucket for ``provider``; an existing bucket is kept as-is.

        Returns:
            The provider's bucket.
        """
        existing = self._buckets.get(provider)
        if existing is not None:
            return existing

        bucket = TokenBucket(
            rate,
            capacity,
            max_wait=max_wait,
            name=provider,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._buckets[provider] = bucket
        logger.debug(f"Registered rate limit for {provider}: {rate}/s, burst {capacity}")
        return bucket

    def bucket(self, provider: str) -> TokenBucket:
        """Return the bucket for ``provider``.

        Raises:
            KeyError: If the provider has no registered bucket.
        """
        return self._buckets[provider]

    async def acquire(self, provider: str, max_wait: float | None = None) -> float:
        """Take one token from ``provider``'s bucket.

        Raises:
            KeyError: If the provider has no registered bucket.
            RateLimitTimeout: If the bounded wait is exceeded.
        """
        return await self._buckets[provider].acquire(max_wait)

    def __contains__(self, provider: object) -> bool:
        return provider in self._buckets
