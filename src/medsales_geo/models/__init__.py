"""ORM model registry: import all models so metadata.create_all discovers them."""

from medsales_geo.models.base import Base
from medsales_geo.models.geocode_cache import GeocodeCacheEntry
from medsales_geo.models.geocoded_location import GeocodedLocation

__all__ = [
    "Base",
    "GeocodeCacheEntry",
    "GeocodedLocation",
]
