"""Google Maps Geocoding API provider (primary).

Uses the Google Maps Geocoding API
(https://developers.google.com/maps/documentation/geocoding/)
for address-to-coordinate resolution. Requires an API key.
"""

import httpx
from loguru import logger

from medsales_geo.lib.geocoder.base import (
    BaseGeocoder,
    FailureKind,
    GeocodeResult,
    GeocodingProviderError,
    failure_kind_for_status,
)
from medsales_geo.lib.geocoder.quality import classify

GOOGLE_API_URL = "https://maps.googleapis.com/maps/api/geocode/json"
DEFAULT_TIMEOUT = 10.0

# Google API status → failure kind
_STATUS_FAILURES: dict[str, FailureKind] = {
    "OVER_QUERY_LIMIT": FailureKind.QUOTA_EXCEEDED,
    "OVER_DAILY_LIMIT": FailureKind.QUOTA_EXCEEDED,
    "INVALID_REQUEST": FailureKind.NO_MATCH,
    "REQUEST_DENIED": FailureKind.TRANSIENT_ERROR,
    "UNKNOWN_ERROR": FailureKind.TRANSIENT_ERROR,
}


class GoogleMapsGeocoder(BaseGeocoder):
    """Google Maps geocoder provider."""

    def __init__(
        self,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        region: str = "us",
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._region = region

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def requires_api_key(self) -> bool:
        return True

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def geocode(self, address: str) -> GeocodeResult | None:
        """Geocode an address using the Google Maps API.

        Args:
            address: Canonical normalized address string.

        Returns:
            GeocodeResult or None if no match found.

        Raises:
            GeocodingProviderError: On transport, quota, or API-specific errors.
        """
        params = {
            "address": address,
            "key": self._api_key,
            "region": self._region,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(GOOGLE_API_URL, params=params)
                response.raise_for_status()

            data = response.json()
            return self._parse_response(data)

        except httpx.TimeoutException as e:
            logger.warning("Google Maps geocoder timeout for address (redacted)")
            raise GeocodingProviderError("google", "Geocoding request timed out", FailureKind.TIMEOUT) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(f"Google Maps geocoder HTTP error {status_code}")
            raise GeocodingProviderError(
                "google",
                f"Provider returned HTTP {status_code}",
                failure_kind_for_status(status_code),
                status_code=status_code,
            ) from e
        except httpx.TransportError as e:
            logger.warning("Google Maps geocoder connection error")
            raise GeocodingProviderError("google", "Connection to geocoding provider failed") from e
        except GeocodingProviderError:
            raise
        except Exception as e:
            logger.exception("Google Maps geocoder unexpected error")
            raise GeocodingProviderError("google", f"Unexpected error: {e}") from e

    def _parse_response(self, data: dict) -> GeocodeResult | None:
        """Parse Google Maps API response into a GeocodeResult.

        Args:
            data: Raw JSON response from Google Maps API.

        Returns:
            GeocodeResult or None if no match found.

        Raises:
            GeocodingProviderError: On API-specific error statuses.
        """
        api_status = data.get("status", "UNKNOWN")

        if api_status == "ZERO_RESULTS":
            return None

        if api_status in _STATUS_FAILURES:
            msg = data.get("error_message", api_status)
            raise GeocodingProviderError("google", f"API error: {msg}", _STATUS_FAILURES[api_status])

        if api_status != "OK":
            raise GeocodingProviderError("google", f"Unexpected API status: {api_status}")

        results = data.get("results", [])
        if not results:
            return None

        best = results[0]
        try:
            location = best["geometry"]["location"]
            lat = float(location["lat"])
            lng = float(location["lng"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Google Maps response: {e}")
            raise GeocodingProviderError("google", f"Failed to parse response: {e}") from e

        tier, confidence = classify("google", best.get("geometry", {}).get("location_type"))

        return GeocodeResult(
            latitude=lat,
            longitude=lng,
            accuracy=tier,
            confidence_score=confidence,
            provider=self.provider_name,
            raw_response=data,
            matched_address=best.get("formatted_address"),
        )
