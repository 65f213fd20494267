"""Geocodio geocoder provider (secondary).

Uses the Geocodio API (https://www.geocod.io/docs/) for address-to-coordinate
resolution. Requires an API key.
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

GEOCODIO_API_URL = "https://api.geocod.io/v1.7/geocode"
DEFAULT_TIMEOUT = 30.0


class GeocodioGeocoder(BaseGeocoder):
    """Geocodio geocoder provider."""

    def __init__(
        self,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout

    @property
    def provider_name(self) -> str:
        return "geocodio"

    @property
    def requires_api_key(self) -> bool:
        return True

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def geocode(self, address: str) -> GeocodeResult | None:
        """Geocode a single address using the Geocodio API.

        Args:
            address: Canonical normalized address string.

        Returns:
            GeocodeResult or None if no match found.

        Raises:
            GeocodingProviderError: On transport, quota, or service errors.
        """
        params = {
            "q": address,
            "api_key": self._api_key,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(GEOCODIO_API_URL, params=params)
                response.raise_for_status()

            data = response.json()
            results = data.get("results", [])
            if not results:
                return None

            return self._parse_single_result(results[0], data)

        except httpx.TimeoutException as e:
            logger.warning("Geocodio geocoder timeout for address (redacted)")
            raise GeocodingProviderError("geocodio", "Geocoding request timed out", FailureKind.TIMEOUT) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(f"Geocodio geocoder HTTP error {status_code}")
            # Geocodio answers 422 for addresses it cannot parse
            raise GeocodingProviderError(
                "geocodio",
                f"Provider returned HTTP {status_code}",
                failure_kind_for_status(status_code),
                status_code=status_code,
            ) from e
        except httpx.TransportError as e:
            logger.warning("Geocodio geocoder connection error")
            raise GeocodingProviderError("geocodio", "Connection to geocoding provider failed") from e
        except GeocodingProviderError:
            raise
        except Exception as e:
            logger.exception("Geocodio geocoder unexpected error")
            raise GeocodingProviderError("geocodio", f"Unexpected error: {e}") from e

    def _parse_single_result(self, result: dict, raw: dict) -> GeocodeResult:
        """Parse a single Geocodio result into a GeocodeResult.

        Geocodio's own 0-1 ``accuracy`` caps the table confidence.
        """
        try:
            location = result.get("location", {})
            lat = float(location["lat"])
            lng = float(location["lng"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Geocodio response: {e}")
            raise GeocodingProviderError("geocodio", f"Failed to parse response: {e}") from e

        tier, confidence = classify("geocodio", result.get("accuracy_type"))
        accuracy = result.get("accuracy")
        if accuracy is not None:
            try:
                confidence = min(confidence, max(0.0, float(accuracy)))
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric Geocodio accuracy {accuracy!r}")

        return GeocodeResult(
            latitude=lat,
            longitude=lng,
            accuracy=tier,
            confidence_score=confidence,
            provider=self.provider_name,
            raw_response=raw,
            matched_address=result.get("formatted_address"),
        )
