"""Unit tests for Google Maps geocoder provider."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from medsales_geo.lib.geocoder.base import FailureKind, GeocodingProviderError
from medsales_geo.lib.geocoder.google_maps import GoogleMapsGeocoder
from medsales_geo.lib.geocoder.quality import AccuracyTier

ADDRESS = "123 North Main Street Suite 200, Springfield, IL 62701"


def _ok(location_type: str = "ROOFTOP") -> dict:
    return {
        "status": "OK",
        "results": [
            {
                "formatted_address": "123 N Main St #200, Springfield, IL 62701, USA",
                "geometry": {
                    "location": {"lat": 39.8017, "lng": -89.6436},
                    "location_type": location_type,
                },
            }
        ],
    }


def _http_error(status_code: int) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError("error", request=MagicMock(), response=MagicMock(status_code=status_code))


class TestGoogleMapsResponseParsing:
    """Tests for Google Maps API response parsing."""

    def setup_method(self) -> None:
        self.geocoder: GoogleMapsGeocoder = GoogleMapsGeocoder(api_key="test-key")

    def test_successful_rooftop_match(self) -> None:
        result = self.geocoder._parse_response(_ok())
        assert result is not None
        assert result.latitude == pytest.approx(39.8017)
        assert result.longitude == pytest.approx(-89.6436)
        assert result.accuracy == AccuracyTier.PRECISE
        assert result.confidence_score == pytest.approx(1.0)
        assert result.provider == "google"
        assert result.matched_address == "123 N Main St #200, Springfield, IL 62701, USA"

    def test_range_interpolated(self) -> None:
        result = self.geocoder._parse_response(_ok("RANGE_INTERPOLATED"))
        assert result is not None
        assert result.accuracy == AccuracyTier.INTERPOLATED
        assert result.confidence_score == pytest.approx(0.85)

    def test_geometric_center(self) -> None:
        result = self.geocoder._parse_response(_ok("GEOMETRIC_CENTER"))
        assert result is not None
        assert result.accuracy == AccuracyTier.APPROXIMATE

    def test_zero_results(self) -> None:
        assert self.geocoder._parse_response({"status": "ZERO_RESULTS"}) is None

    def test_empty_results_returns_none(self) -> None:
        assert self.geocoder._parse_response({"status": "OK", "results": []}) is None

    def test_over_query_limit_is_quota(self) -> None:
        data = {"status": "OVER_QUERY_LIMIT", "error_message": "Quota exceeded"}
        with pytest.raises(GeocodingProviderError, match="API error") as exc_info:
            self.geocoder._parse_response(data)
        assert exc_info.value.kind == FailureKind.QUOTA_EXCEEDED

    def test_invalid_request_is_no_match(self) -> None:
        with pytest.raises(GeocodingProviderError) as exc_info:
            self.geocoder._parse_response({"status": "INVALID_REQUEST"})
        assert exc_info.value.kind == FailureKind.NO_MATCH

    def test_request_denied_is_transient(self) -> None:
        data = {"status": "REQUEST_DENIED", "error_message": "Invalid API key"}
        with pytest.raises(GeocodingProviderError) as exc_info:
            self.geocoder._parse_response(data)
        assert exc_info.value.kind == FailureKind.TRANSIENT_ERROR

    def test_unknown_status_raises(self) -> None:
        with pytest.raises(GeocodingProviderError, match="Unexpected API status"):
            self.geocoder._parse_response({"status": "SOMETHING_NEW"})

    def test_missing_geometry_raises(self) -> None:
        data = {"status": "OK", "results": [{"formatted_address": "test"}]}
        with pytest.raises(GeocodingProviderError, match="Failed to parse"):
            self.geocoder._parse_response(data)


class TestGoogleMapsGeocoderErrors:
    """Tests for GoogleMapsGeocoder error classification."""

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_kind(self) -> None:
        geocoder = GoogleMapsGeocoder(api_key="test-key", timeout=0.1)
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.TimeoutException("Connection timed out")
            with pytest.raises(GeocodingProviderError, match="google") as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        geocoder = GoogleMapsGeocoder(api_key="test-key")
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ConnectError("Connection refused")
            with pytest.raises(GeocodingProviderError) as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == FailureKind.TRANSIENT_ERROR

    @pytest.mark.parametrize(
        ("status_code", "kind"),
        [
            (429, FailureKind.QUOTA_EXCEEDED),
            (503, FailureKind.TRANSIENT_ERROR),
            (400, FailureKind.NO_MATCH),
        ],
    )
    @pytest.mark.asyncio
    async def test_http_status_classified(self, status_code: int, kind: FailureKind) -> None:
        geocoder = GoogleMapsGeocoder(api_key="test-key")
        mock_response = MagicMock()
        mock_response.raise_for_status.side_effect = _http_error(status_code)
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = mock_response
            with pytest.raises(GeocodingProviderError) as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == kind
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_successful_geocode(self) -> None:
        geocoder = GoogleMapsGeocoder(api_key="test-key")
        mock_response = MagicMock()
        mock_response.json.return_value = _ok()
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = mock_response
            result = await geocoder.geocode(ADDRESS)
        assert result is not None
        assert result.accuracy == AccuracyTier.PRECISE
        params = mock_get.call_args.kwargs["params"]
        assert params["address"] == ADDRESS
        assert params["key"] == "test-key"


class TestGoogleMapsProperties:
    """Tests for provider metadata."""

    def test_requires_api_key(self) -> None:
        assert GoogleMapsGeocoder(api_key="k").requires_api_key is True

    def test_is_configured(self) -> None:
        assert GoogleMapsGeocoder(api_key="k").is_configured is True
        assert GoogleMapsGeocoder(api_key="").is_configured is False
