"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
``Settings`` is read once at startup and turned into a frozen ``GeocodingConfig``
snapshot; batch jobs carry that snapshot for their whole lifetime.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from medsales_geo.lib.geocoder.quality import AccuracyTier

# Chain positions map onto TRY_PRIMARY / TRY_SECONDARY / TRY_TERTIARY
MAX_CHAIN_LENGTH = 3


class ConfigurationError(Exception):
    """Raised when the geocoding configuration cannot be used to accept jobs."""


def _split_csv(value: str) -> list[str]:
    if not value.strip():
        return []
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (optional, enables the SQL cache and location store)
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async connection string for cache and store of record",
    )

    # Geocoding: general
    geocoder_fallback_order: str = Field(
        default="google,geocodio,nominatim",
        description="Comma-separated provider priority order (primary first, at most three)",
    )
    geocoder_cache_ttl_seconds: int = Field(
        default=60 * 60 * 24 * 90,
        description="Time-to-live of cached geocoding results in seconds",
        gt=0,
    )
    geocoder_cache_maxsize: int = Field(
        default=100_000,
        description="Maximum entries held by the in-process geocode cache",
        gt=0,
    )
    geocoder_acceptable_tiers: str = Field(
        default="precise,interpolated",
        description="Comma-separated accuracy tiers accepted without a quality warning",
    )
    geocoder_worker_count: int = Field(
        default=8,
        description="Number of concurrent batch workers",
        gt=0,
    )
    geocoder_job_deadline_seconds: float = Field(
        default=3600.0,
        description="Maximum wall-clock duration of a batch job",
        gt=0,
    )
    geocoder_address_max_wait_seconds: float = Field(
        default=120.0,
        description="Maximum time a single address may spend in the fallback chain",
        gt=0,
    )
    geocoder_retry_passes: int = Field(
        default=3,
        description="Full passes through the provider chain before an address is dead-lettered",
        gt=0,
    )
    geocoder_backoff_schedule: str = Field(
        default="1,5,30",
        description="Comma-separated seconds to sleep between retry passes",
    )
    geocoder_rate_limit_max_wait: float = Field(
        default=10.0,
        description="Maximum seconds to wait for a provider rate-limit token",
        ge=0,
    )

    @field_validator("geocoder_backoff_schedule")
    @classmethod
    def validate_backoff_schedule(cls, v: str) -> str:
        for part in _split_csv(v):
            try:
                delay = float(part)
            except ValueError as e:
                msg = f"Invalid backoff delay: {part!r}"
                raise ValueError(msg) from e
            if delay < 0:
                msg = f"Backoff delays must be non-negative, got {delay}"
                raise ValueError(msg)
        return v

    @field_validator("geocoder_acceptable_tiers")
    @classmethod
    def validate_acceptable_tiers(cls, v: str) -> str:
        for part in _split_csv(v):
            try:
                AccuracyTier(part)
            except ValueError as e:
                msg = f"Unknown accuracy tier: {part!r}"
                raise ValueError(msg) from e
        return v

    # Geocoding: Google Maps (primary)
    geocoder_google_enabled: bool = Field(default=True, description="Enable Google Maps geocoder")
    geocoder_google_api_key: str | None = Field(default=None, description="Google Maps Geocoding API key")
    geocoder_google_timeout: float = Field(default=10.0, description="Google request timeout in seconds", gt=0)
    geocoder_google_rate_per_second: float = Field(default=40.0, description="Google token refill rate", gt=0)
    geocoder_google_burst_capacity: int = Field(default=50, description="Google token bucket capacity", gt=0)
    geocoder_google_max_passes: int = Field(default=3, description="Retry passes Google takes part in", gt=0)

    # Geocoding: Geocodio (secondary)
    geocoder_geocodio_enabled: bool = Field(default=True, description="Enable Geocodio geocoder")
    geocoder_geocodio_api_key: str | None = Field(default=None, description="Geocodio API key")
    geocoder_geocodio_timeout: float = Field(default=30.0, description="Geocodio request timeout in seconds", gt=0)
    geocoder_geocodio_rate_per_second: float = Field(default=15.0, description="Geocodio token refill rate", gt=0)
    geocoder_geocodio_burst_capacity: int = Field(default=15, description="Geocodio token bucket capacity", gt=0)
    geocoder_geocodio_max_passes: int = Field(default=3, description="Retry passes Geocodio takes part in", gt=0)

    # Geocoding: Nominatim (free fallback)
    geocoder_nominatim_enabled: bool = Field(default=True, description="Enable Nominatim (OpenStreetMap) geocoder")
    geocoder_nominatim_email: str = Field(default="", description="Email for Nominatim usage policy compliance")
    geocoder_nominatim_timeout: float = Field(default=10.0, description="Nominatim request timeout in seconds", gt=0)
    geocoder_nominatim_rate_per_second: float = Field(
        default=1.0,
        description="Nominatim token refill rate (usage policy: 1 req/sec)",
        gt=0,
    )
    geocoder_nominatim_burst_capacity: int = Field(default=1, description="Nominatim token bucket capacity", gt=0)
    geocoder_nominatim_max_passes: int = Field(default=3, description="Retry passes Nominatim takes part in", gt=0)

    @property
    def geocoder_fallback_order_list(self) -> list[str]:
        """Parse fallback order string into a list of provider names.

        Returns:
            List of provider names in fallback order.
        """
        return _split_csv(self.geocoder_fallback_order)

    @property
    def geocoder_acceptable_tier_set(self) -> frozenset[AccuracyTier]:
        """Parse acceptable tiers string into a set of AccuracyTier values."""
        return frozenset(AccuracyTier(t) for t in _split_csv(self.geocoder_acceptable_tiers))

    @property
    def geocoder_backoff_list(self) -> list[float]:
        """Parse the backoff schedule into seconds."""
        return [float(d) for d in _split_csv(self.geocoder_backoff_schedule)]

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Write stderr logs as serialized JSON records",
    )


@dataclass(frozen=True)
class ProviderConfig:
    """Per-provider limits captured in a configuration snapshot."""

    name: str
    rate_per_second: float
    capacity: int
    max_passes: int = 3


@dataclass(frozen=True)
class GeocodingConfig:
    """Immutable geocoding configuration snapshot.

    Created once at startup (or on an explicit reconfigure) and carried by
    each job, so a running batch never observes configuration changes.
    """

    providers: tuple[ProviderConfig, ...]
    cache_ttl: float = 60 * 60 * 24 * 90
    acceptable_tiers: frozenset[AccuracyTier] = field(
        default_factory=lambda: frozenset({AccuracyTier.PRECISE, AccuracyTier.INTERPOLATED})
    )
    worker_count: int = 8
    job_deadline: float = 3600.0
    address_max_wait: float = 120.0
    retry_passes: int = 3
    backoff_schedule: tuple[float, ...] = (1.0, 5.0, 30.0)
    rate_limit_max_wait: float = 10.0

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    def provider(self, name: str) -> ProviderConfig:
        for p in self.providers:
            if p.name == name:
                return p
        raise KeyError(name)

    def backoff_for_pass(self, pass_index: int) -> float:
        """Return the sleep before the pass following ``pass_index`` (0-based)."""
        if not self.backoff_schedule:
            return 0.0
        return self.backoff_schedule[min(pass_index, len(self.backoff_schedule) - 1)]

    def validate(self) -> GeocodingConfig:
        """Check the snapshot can drive a fallback chain.

        Returns:
            The same config, for chaining.

        Raises:
            ConfigurationError: On an empty or oversized provider list,
                duplicate providers, or non-positive limits.
        """
        if not self.providers:
            msg = "At least one geocoding provider must be configured"
            raise ConfigurationError(msg)
        if len(self.providers) > MAX_CHAIN_LENGTH:
            msg = f"At most {MAX_CHAIN_LENGTH} providers may be chained, got {len(self.providers)}"
            raise ConfigurationError(msg)
        names = self.provider_names
        if len(set(names)) != len(names):
            msg = f"Duplicate providers in fallback order: {names}"
            raise ConfigurationError(msg)
        for p in self.providers:
            if p.rate_per_second <= 0 or p.capacity <= 0:
                msg = f"Provider {p.name!r} needs a positive rate and capacity"
                raise ConfigurationError(msg)
        if self.worker_count <= 0 or self.retry_passes <= 0:
            msg = "worker_count and retry_passes must be positive"
            raise ConfigurationError(msg)
        if not self.acceptable_tiers:
            msg = "At least one acceptable accuracy tier is required"
            raise ConfigurationError(msg)
        return self

    @classmethod
    def from_settings(cls, settings: Settings, provider_names: list[str] | None = None) -> GeocodingConfig:
        """Build a validated snapshot from application settings.

        Args:
            settings: Application settings.
            provider_names: Providers to include, in priority order. Defaults to
                the enabled providers from ``geocoder_fallback_order``.

        Raises:
            ConfigurationError: If the resulting configuration is unusable.
        """
        if provider_names is None:
            provider_names = [
                name
                for name in dict.fromkeys(settings.geocoder_fallback_order_list)
                if getattr(settings, f"geocoder_{name}_enabled", False)
            ]

        providers: list[ProviderConfig] = []
        for name in provider_names:
            if not hasattr(settings, f"geocoder_{name}_rate_per_second"):
                msg = f"Unknown geocoder provider in configuration: {name!r}"
                raise ConfigurationError(msg)
            providers.append(
                ProviderConfig(
                    name=name,
                    rate_per_second=getattr(settings, f"geocoder_{name}_rate_per_second"),
                    capacity=getattr(settings, f"geocoder_{name}_burst_capacity"),
                    max_passes=getattr(settings, f"geocoder_{name}_max_passes"),
                )
            )

        return cls(
            providers=tuple(providers),
            cache_ttl=float(settings.geocoder_cache_ttl_seconds),
            acceptable_tiers=settings.geocoder_acceptable_tier_set,
            worker_count=settings.geocoder_worker_count,
            job_deadline=settings.geocoder_job_deadline_seconds,
            address_max_wait=settings.geocoder_address_max_wait_seconds,
            retry_passes=settings.geocoder_retry_passes,
            backoff_schedule=tuple(settings.geocoder_backoff_list),
            rate_limit_max_wait=settings.geocoder_rate_limit_max_wait,
        ).validate()


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
