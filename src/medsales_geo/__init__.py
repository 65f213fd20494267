"""Geocoding core for medical sales intelligence: normalization, caching, fallback providers, batch jobs."""

__version__ = "0.1.0"
