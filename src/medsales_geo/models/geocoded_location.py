"""GeocodedLocation model: resolved coordinates in the store of record."""

from datetime import datetime

from sqlalchemy import DateTime, Double, String, func
from sqlalchemy.orm import Mapped, mapped_column

from medsales_geo.models.base import Base, UUIDMixin


class GeocodedLocation(Base, UUIDMixin):
    """The current geocoded position of an owning entity's address."""

    __tablename__ = "geocoded_locations"

    owner_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    latitude: Mapped[float] = mapped_column(Double, nullable=False)
    longitude: Mapped[float] = mapped_column(Double, nullable=False)
    accuracy: Mapped[str | None] = mapped_column(String(20), nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Double, nullable=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    geocoded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
