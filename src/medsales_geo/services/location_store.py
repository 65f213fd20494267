"""Write contract to the store of record for resolved coordinates.

The geocoding core does not own the store's schema beyond this write:
owner key, latitude/longitude, accuracy tier, confidence, provider and
timestamp.
"""

from abc import ABC, abstractmethod

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medsales_geo.lib.geocoder.base import GeocodeResult
from medsales_geo.models.geocoded_location import GeocodedLocation


class LocationStore(ABC):
    """Destination for resolved coordinates keyed by owning entity."""

    @abstractmethod
    async def write(self, owner_key: str, result: GeocodeResult) -> None:
        """Persist ``result`` as the current location of ``owner_key``."""


class InMemoryLocationStore(LocationStore):
    """Keeps the latest result per owner key; used by the CLI and tests."""

    def __init__(self) -> None:
        self.locations: dict[str, GeocodeResult] = {}

    async def write(self, owner_key: str, result: GeocodeResult) -> None:
        self.locations[owner_key] = result


class SqlLocationStore(LocationStore):
    """Upserts ``geocoded_locations`` rows through SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, owner_key: str, result: GeocodeResult) -> None:
        async with self._session_factory() as session:
            existing = await session.execute(select(GeocodedLocation).where(GeocodedLocation.owner_key == owner_key))
            location = existing.scalar_one_or_none()

            if location:
                location.latitude = result.latitude
                location.longitude = result.longitude
                location.accuracy = result.accuracy.value if result.accuracy else None
                location.confidence_score = result.confidence_score
                location.provider = result.provider
                location.geocoded_at = result.geocoded_at
            else:
                session.add(
                    GeocodedLocation(
                        owner_key=owner_key,
                        latitude=result.latitude,
                        longitude=result.longitude,
                        accuracy=result.accuracy.value if result.accuracy else None,
                        confidence_score=result.confidence_score,
                        provider=result.provider,
                        geocoded_at=result.geocoded_at,
                    )
                )

            await session.commit()
        logger.debug(f"Stored location for {owner_key} from {result.provider}")

    async def get(self, owner_key: str) -> GeocodedLocation | None:
        """Read back the stored location for ``owner_key``."""
        async with self._session_factory() as session:
            row = await session.execute(select(GeocodedLocation).where(GeocodedLocation.owner_key == owner_key))
            return row.scalar_one_or_none()
