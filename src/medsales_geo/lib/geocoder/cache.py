"""Geocode cache keyed by normalized-address hash.

Two backends share the ``GeocodeCache`` interface: a bounded in-process
TLRU map and a SQLAlchemy table. ``cache_lookup`` / ``cache_store`` wrap
either backend so an unavailable cache degrades to "always miss" instead of
failing the resolution.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cachetools import TLRUCache
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medsales_geo.lib.geocoder.base import GeocodeResult
from medsales_geo.models.geocode_cache import GeocodeCacheEntry

DEFAULT_MAXSIZE = 100_000


class GeocodeCache(ABC):
    """Abstract cache of geocoding results. Expired entries are never returned."""

    @abstractmethod
    async def get(self, key: str) -> GeocodeResult | None:
        """Return the cached result for ``key`` or None on a miss or expiry."""

    @abstractmethod
    async def put(self, key: str, result: GeocodeResult, ttl: float) -> None:
        """Store or overwrite ``result`` under ``key`` for ``ttl`` seconds."""

    @abstractmethod
    async def invalidate(self, key: str) -> None:
        """Drop any entry stored under ``key``."""


@dataclass(frozen=True)
class CacheEntry:
    """A cached result with its storage time and TTL (clock seconds)."""

    result: GeocodeResult
    stored_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl


def _entry_expiry(_key: str, entry: CacheEntry, _now: float) -> float:
    return entry.expires_at


class InMemoryGeocodeCache(GeocodeCache):
    """Process-local cache on a ``cachetools.TLRUCache``.

    Every entry expires after its own TTL. Expired entries are dropped on each
    write, and the least recently used entry is evicted once ``maxsize``
    entries are held.
    """

    def __init__(self, maxsize: int = DEFAULT_MAXSIZE, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=clock)
        self._hits = 0
        self._misses = 0

    @property
    def maxsize(self) -> int:
        return int(self._entries.maxsize)

    async def get(self, key: str) -> GeocodeResult | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry.result

    async def put(self, key: str, result: GeocodeResult, ttl: float) -> None:
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = CacheEntry(result=result, stored_at=self._clock(), ttl=ttl)

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries removed.
        """
        before = self._entries.currsize
        self._entries.expire()
        return int(before - self._entries.currsize)

    def stats(self) -> dict[str, int]:
        """Return entry count, capacity and hit/miss counters."""
        return {"entries": len(self), "maxsize": self.maxsize, "hits": self._hits, "misses": self._misses}

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)


class SqlGeocodeCache(GeocodeCache):
    """Cache backed by the ``geocode_cache`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._session_factory = session_factory
        self._now = now

    async def get(self, key: str) -> GeocodeResult | None:
        async with self._session_factory() as session:
            entry = await session.get(GeocodeCacheEntry, key)
            if entry is None:
                return None

            expires_at = entry.expires_at
            # SQLite drops tzinfo on round-trip
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
            if self._now() >= expires_at:
                await session.delete(entry)
                await session.commit()
                return None

            return GeocodeResult.from_dict(entry.payload)

    async def put(self, key: str, result: GeocodeResult, ttl: float) -> None:
        stored_at = self._now()
        async with self._session_factory() as session:
            await session.merge(
                GeocodeCacheEntry(
                    address_hash=key,
                    payload=result.to_dict(),
                    provider=result.provider,
                    stored_at=stored_at,
                    expires_at=stored_at + timedelta(seconds=ttl),
                )
            )
            await session.commit()

    async def invalidate(self, key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(GeocodeCacheEntry).where(GeocodeCacheEntry.address_hash == key))
            await session.commit()

    async def stats(self) -> list[dict]:
        """Return per-provider entry counts."""
        async with self._session_factory() as session:
            rows = await session.execute(select(GeocodeCacheEntry.provider))
            counts: dict[str, int] = {}
            for (provider,) in rows:
                counts[provider] = counts.get(provider, 0) + 1
        return [{"provider": p, "cached_count": c} for p, c in sorted(counts.items())]


async def cache_lookup(cache: GeocodeCache | None, key: str) -> GeocodeResult | None:
    """Look up a cached geocoding result, treating backend failures as a miss.

    Args:
        cache: Cache backend (None disables caching).
        key: Normalized-address hash.

    Returns:
        GeocodeResult if found, None on a miss or backend failure.
    """
    if cache is None:
        return None
    try:
        return await cache.get(key)
    except Exception as e:
        logger.warning(f"Geocode cache lookup failed, treating as miss: {e}")
        return None


async def cache_store(cache: GeocodeCache | None, key: str, result: GeocodeResult, ttl: float) -> bool:
    """Store a geocoding result, logging instead of raising on backend failure.

    Args:
        cache: Cache backend (None disables caching).
        key: Normalized-address hash.
        result: Result to cache.
        ttl: Time-to-live in seconds.

    Returns:
        True if the result was stored.
    """
    if cache is None:
        return False
    try:
        await cache.put(key, result, ttl)
    except Exception as e:
        logger.warning(f"Geocode cache store failed: {e}")
        return False
    return True
