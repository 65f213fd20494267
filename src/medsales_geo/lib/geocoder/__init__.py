"""Geocoder library: normalization, caching, rate limiting and provider fallback.

Public API:
    - Address / NormalizedAddress / normalize: Canonical address form and hash
    - parse_freeform_address: Split a one-line address into an Address
    - BaseGeocoder: Abstract provider interface
    - GeocodeResult: Result dataclass
    - GeocodingProviderError / FailureKind: Provider failure typing
    - AccuracyTier / classify: Shared accuracy tiers and per-provider mapping
    - GeocodeCache / InMemoryGeocodeCache / SqlGeocodeCache: Result caches
    - cache_lookup / cache_store: Cache access that degrades to a miss
    - RateLimiter / TokenBucket / RateLimitTimeout: Per-provider admission control
    - FallbackOrchestrator / Resolution / ProviderAttempt: Provider chain
    - GoogleMapsGeocoder / GeocodioGeocoder / NominatimGeocoder: Providers
    - get_geocoder: Provider factory/registry
    - get_configured_providers: Get providers that are enabled and configured
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from medsales_geo.lib.geocoder.address import (
    Address,
    NormalizedAddress,
    normalize,
    parse_freeform_address,
)
from medsales_geo.lib.geocoder.base import (
    BaseGeocoder,
    FailureKind,
    GeocodeResult,
    GeocodingProviderError,
)
from medsales_geo.lib.geocoder.cache import (
    GeocodeCache,
    InMemoryGeocodeCache,
    SqlGeocodeCache,
    cache_lookup,
    cache_store,
)
from medsales_geo.lib.geocoder.fallback import (
    AttemptOutcome,
    FallbackOrchestrator,
    ProviderAttempt,
    Resolution,
    ResolutionState,
)
from medsales_geo.lib.geocoder.geocodio import GeocodioGeocoder
from medsales_geo.lib.geocoder.google_maps import GoogleMapsGeocoder
from medsales_geo.lib.geocoder.nominatim import NominatimGeocoder
from medsales_geo.lib.geocoder.quality import TIER_RANK, AccuracyTier, classify
from medsales_geo.lib.geocoder.rate_limit import RateLimiter, RateLimitTimeout, TokenBucket

if TYPE_CHECKING:
    from medsales_geo.core.config import Settings

# Provider registry: all known providers
_PROVIDERS: dict[str, type[BaseGeocoder]] = {
    "google": GoogleMapsGeocoder,
    "geocodio": GeocodioGeocoder,
    "nominatim": NominatimGeocoder,
}


def get_available_providers() -> list[str]:
    """Return the names of all registered geocoder providers.

    Returns:
        Sorted list of provider name strings.
    """
    return sorted(_PROVIDERS.keys())


def get_geocoder(provider: str, **kwargs: Any) -> BaseGeocoder:
    """Get a geocoder instance by provider name.

    Args:
        provider: Provider name (e.g., "google").
        **kwargs: Additional arguments forwarded to the provider constructor
            (e.g., ``timeout=2.0``).

    Returns:
        An instance of the requested geocoder provider.

    Raises:
        ValueError: If the provider is not registered.
    """
    cls = _PROVIDERS.get(provider)
    if cls is None:
        msg = f"Unknown geocoder provider: {provider!r}. Available: {list(_PROVIDERS.keys())}"
        raise ValueError(msg)
    return cls(**kwargs)


def _provider_configs(settings: Settings) -> dict[str, dict[str, Any]]:
    return {
        "google": {
            "enabled": settings.geocoder_google_enabled and bool(settings.geocoder_google_api_key),
            "kwargs": {
                "api_key": settings.geocoder_google_api_key or "",
                "timeout": settings.geocoder_google_timeout,
            },
        },
        "geocodio": {
            "enabled": settings.geocoder_geocodio_enabled and bool(settings.geocoder_geocodio_api_key),
            "kwargs": {
                "api_key": settings.geocoder_geocodio_api_key or "",
                "timeout": settings.geocoder_geocodio_timeout,
            },
        },
        "nominatim": {
            "enabled": settings.geocoder_nominatim_enabled,
            "kwargs": {
                "timeout": settings.geocoder_nominatim_timeout,
                "email": settings.geocoder_nominatim_email,
            },
        },
    }


def get_configured_providers(settings: Settings) -> list[BaseGeocoder]:
    """Get geocoder instances for all providers that are enabled and properly configured.

    Reads per-provider enabled flags and config from settings, instantiates
    each provider with its settings, and returns only those that are both
    enabled and have required configuration (e.g., API keys).

    Args:
        settings: Application settings.

    Returns:
        List of configured BaseGeocoder instances, in fallback order.
    """
    provider_configs = _provider_configs(settings)

    # Return in fallback order, filtered to enabled + configured (deduplicated)
    providers: list[BaseGeocoder] = []
    seen: set[str] = set()

    for name in settings.geocoder_fallback_order_list:
        if name in seen:
            continue
        seen.add(name)
        config = provider_configs.get(name)
        if config is None or not config.get("enabled", False):
            continue

        kwargs = config.get("kwargs", {})
        try:
            geocoder = get_geocoder(name, **kwargs)
            if geocoder.is_configured:
                providers.append(geocoder)
        except (ValueError, TypeError):
            continue

    return providers


@dataclass
class ProviderMetadata:
    """Metadata about a geocoding provider (configured or not)."""

    name: str
    requires_api_key: bool
    is_configured: bool
    rate_per_second: float
    burst_capacity: int


def get_all_provider_metadata(settings: Settings) -> list[ProviderMetadata]:
    """Return metadata for all registered providers.

    For configured providers, metadata is read from the live instance.
    Providers that cannot be instantiated without an API key fall back
    to conservative defaults.

    Args:
        settings: Application settings.

    Returns:
        List of ProviderMetadata for every registered provider.
    """
    configured = get_configured_providers(settings)
    configured_map = {p.provider_name: p for p in configured}

    metadata: list[ProviderMetadata] = []
    for name in get_available_providers():
        provider = configured_map.get(name)

        if provider is None:
            # Not configured: try to instantiate with defaults for metadata
            with contextlib.suppress(ValueError, TypeError):
                provider = get_geocoder(name)

        metadata.append(
            ProviderMetadata(
                name=name,
                requires_api_key=provider.requires_api_key if provider else True,
                is_configured=name in configured_map,
                rate_per_second=getattr(settings, f"geocoder_{name}_rate_per_second"),
                burst_capacity=getattr(settings, f"geocoder_{name}_burst_capacity"),
            )
        )

    return metadata


__all__ = [
    "TIER_RANK",
    "AccuracyTier",
    "Address",
    "AttemptOutcome",
    "BaseGeocoder",
    "FailureKind",
    "FallbackOrchestrator",
    "GeocodeCache",
    "GeocodeResult",
    "GeocodingProviderError",
    "GeocodioGeocoder",
    "GoogleMapsGeocoder",
    "InMemoryGeocodeCache",
    "NominatimGeocoder",
    "NormalizedAddress",
    "ProviderAttempt",
    "ProviderMetadata",
    "RateLimitTimeout",
    "RateLimiter",
    "Resolution",
    "ResolutionState",
    "SqlGeocodeCache",
    "TokenBucket",
    "cache_lookup",
    "cache_store",
    "classify",
    "get_all_provider_metadata",
    "get_available_providers",
    "get_configured_providers",
    "get_geocoder",
    "normalize",
    "parse_freeform_address",
]
