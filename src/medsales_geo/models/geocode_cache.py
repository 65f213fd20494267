"""GeocodeCacheEntry model: caches geocoding results by normalized-address hash."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from medsales_geo.models.base import Base


class GeocodeCacheEntry(Base):
    """Cached geocoding result keyed by the SHA-256 of the canonical address."""

    __tablename__ = "geocode_cache"

    address_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    stored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
