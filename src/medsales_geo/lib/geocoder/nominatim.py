"""OpenStreetMap Nominatim geocoder provider (free fallback).

Uses the Nominatim API (https://nominatim.org/release-docs/develop/api/Search/)
for address-to-coordinate resolution. Free but rate-limited to 1 req/sec.
"""

import httpx
from loguru import logger

from medsales_geo import __version__
from medsales_geo.lib.geocoder.base import (
    BaseGeocoder,
    FailureKind,
    GeocodeResult,
    GeocodingProviderError,
    failure_kind_for_status,
)
from medsales_geo.lib.geocoder.quality import classify

NOMINATIM_API_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = f"medsales-geo/{__version__}"


class NominatimGeocoder(BaseGeocoder):
    """OpenStreetMap Nominatim geocoder provider."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        email: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        country_codes: str = "us",
    ) -> None:
        self._timeout = timeout
        self._email = email
        self._user_agent = user_agent
        self._country_codes = country_codes

    @property
    def provider_name(self) -> str:
        return "nominatim"

    async def geocode(self, address: str) -> GeocodeResult | None:
        """Geocode an address using the Nominatim API.

        Args:
            address: Canonical normalized address string.

        Returns:
            GeocodeResult or None if no match found.

        Raises:
            GeocodingProviderError: On transport or service errors.
        """
        params: dict[str, str | int] = {
            "q": address,
            "format": "jsonv2",
            "limit": 1,
            "addressdetails": 1,
            "countrycodes": self._country_codes,
        }
        if self._email:
            params["email"] = self._email

        headers = {"User-Agent": self._user_agent}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(NOMINATIM_API_URL, params=params, headers=headers)
                response.raise_for_status()

            data = response.json()
            return self._parse_response(data)

        except httpx.TimeoutException as e:
            logger.warning("Nominatim geocoder timeout for address (redacted)")
            raise GeocodingProviderError("nominatim", "Geocoding request timed out", FailureKind.TIMEOUT) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(f"Nominatim geocoder HTTP error {status_code}")
            raise GeocodingProviderError(
                "nominatim",
                f"Provider returned HTTP {status_code}",
                failure_kind_for_status(status_code),
                status_code=status_code,
            ) from e
        except httpx.TransportError as e:
            logger.warning("Nominatim geocoder connection error")
            raise GeocodingProviderError("nominatim", "Connection to geocoding provider failed") from e
        except GeocodingProviderError:
            raise
        except Exception as e:
            logger.exception("Nominatim geocoder unexpected error")
            raise GeocodingProviderError("nominatim", f"Unexpected error: {e}") from e

    def _parse_response(self, data: list[dict]) -> GeocodeResult | None:
        """Parse Nominatim API response into a GeocodeResult.

        Args:
            data: Raw JSON response (list of results) from Nominatim API.

        Returns:
            GeocodeResult or None if no match found.
        """
        if not data:
            return None

        best = data[0]
        try:
            lat = float(best["lat"])
            lon = float(best["lon"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Nominatim response: {e}")
            raise GeocodingProviderError("nominatim", f"Failed to parse response: {e}") from e

        tier, confidence = classify("nominatim", best.get("addresstype") or best.get("type"))

        return GeocodeResult(
            latitude=lat,
            longitude=lon,
            accuracy=tier,
            confidence_score=confidence,
            provider=self.provider_name,
            raw_response={"results": data},
            matched_address=best.get("display_name"),
        )
