"""Abstract base geocoder interface for pluggable provider support."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from medsales_geo.lib.geocoder.quality import AccuracyTier


class FailureKind(StrEnum):
    """Why a provider call did not produce a result."""

    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_MATCH = "no_match"
    LOW_CONFIDENCE = "low_confidence"
    TRANSIENT_ERROR = "transient_error"


# Failures worth another pass through the chain after a backoff
RETRYABLE_FAILURES: frozenset[FailureKind] = frozenset(
    {FailureKind.TIMEOUT, FailureKind.QUOTA_EXCEEDED, FailureKind.TRANSIENT_ERROR}
)


@dataclass(frozen=True)
class GeocodeResult:
    """Result from a geocoding operation.

    ``accuracy`` and ``confidence_score`` are either both set or both unset.
    """

    latitude: float
    longitude: float
    accuracy: AccuracyTier | None = None
    confidence_score: float | None = None
    provider: str = ""
    raw_response: dict | None = None
    matched_address: str | None = None
    geocoded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    below_acceptable: bool = False

    def __post_init__(self) -> None:
        if not (-90 <= self.latitude <= 90):
            msg = f"latitude must be between -90 and 90, got {self.latitude}"
            raise ValueError(msg)
        if not (-180 <= self.longitude <= 180):
            msg = f"longitude must be between -180 and 180, got {self.longitude}"
            raise ValueError(msg)
        if (self.accuracy is None) != (self.confidence_score is None):
            msg = "accuracy and confidence_score must be provided together"
            raise ValueError(msg)
        if self.confidence_score is not None and not (0 <= self.confidence_score <= 1):
            msg = f"confidence_score must be between 0 and 1, got {self.confidence_score}"
            raise ValueError(msg)

    def to_dict(self) -> dict:
        """Serialize for cache storage and CLI output."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy.value if self.accuracy else None,
            "confidence_score": self.confidence_score,
            "provider": self.provider,
            "raw_response": self.raw_response,
            "matched_address": self.matched_address,
            "geocoded_at": self.geocoded_at.isoformat(),
            "below_acceptable": self.below_acceptable,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GeocodeResult":
        """Rebuild a result serialized with ``to_dict``."""
        accuracy = data.get("accuracy")
        geocoded_at = data.get("geocoded_at")
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            accuracy=AccuracyTier(accuracy) if accuracy else None,
            confidence_score=data.get("confidence_score"),
            provider=data.get("provider", ""),
            raw_response=data.get("raw_response"),
            matched_address=data.get("matched_address"),
            geocoded_at=datetime.fromisoformat(geocoded_at) if geocoded_at else datetime.now(UTC),
            below_acceptable=bool(data.get("below_acceptable", False)),
        )


class GeocodingProviderError(Exception):
    """Raised when a geocoding provider call fails.

    Distinguishes provider failures (timeout, quota, HTTP error, connection
    error) from a successful response with no match (which returns None).

    Args:
        provider_name: Name of the failing provider.
        message: Human-readable error description.
        kind: Failure classification used by the fallback chain.
        status_code: Optional HTTP status code from the provider.
    """

    def __init__(
        self,
        provider_name: str,
        message: str,
        kind: FailureKind = FailureKind.TRANSIENT_ERROR,
        status_code: int | None = None,
    ) -> None:
        self.provider_name = provider_name
        self.message = message
        self.kind = kind
        self.status_code = status_code
        super().__init__(f"{provider_name}: {message}")


def failure_kind_for_status(status_code: int) -> FailureKind:
    """Classify an HTTP error status from a provider."""
    if status_code == 429:
        return FailureKind.QUOTA_EXCEEDED
    if status_code == 408 or status_code >= 500:
        return FailureKind.TRANSIENT_ERROR
    return FailureKind.NO_MATCH


class BaseGeocoder(ABC):
    """Abstract geocoder interface. All providers must implement this.

    Adapters make exactly one outbound call per ``geocode`` invocation;
    retries and rate limiting belong to the fallback orchestrator.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name identifying this geocoder provider."""

    @property
    def requires_api_key(self) -> bool:
        """Whether this provider requires an API key to function."""
        return False

    @property
    def is_configured(self) -> bool:
        """Whether this provider has all required configuration (e.g., API keys)."""
        return True

    @abstractmethod
    async def geocode(self, address: str) -> GeocodeResult | None:
        """Geocode a single address.

        Args:
            address: Canonical normalized address string.

        Returns:
            GeocodeResult or None if the provider found no match.

        Raises:
            GeocodingProviderError: On transport, quota, or service errors.
        """
