"""Shared test fixtures for settings, configuration snapshots and the async database."""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from medsales_geo.core.config import GeocodingConfig, ProviderConfig, Settings
from medsales_geo.models.base import Base


@pytest.fixture
def settings() -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        geocoder_google_api_key="test-google-key",
        geocoder_geocodio_api_key="test-geocodio-key",
    )


@pytest.fixture
def geocoding_config() -> GeocodingConfig:
    """Three-provider snapshot with generous limits and no backoff."""
    return GeocodingConfig(
        providers=(
            ProviderConfig("google", rate_per_second=100.0, capacity=100),
            ProviderConfig("geocodio", rate_per_second=100.0, capacity=100),
            ProviderConfig("nominatim", rate_per_second=100.0, capacity=100),
        ),
        worker_count=2,
        backoff_schedule=(0.0,),
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(async_engine, expire_on_commit=False)
