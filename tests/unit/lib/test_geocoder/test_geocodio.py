"""Unit tests for Geocodio geocoder provider."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from medsales_geo.lib.geocoder.base import FailureKind, GeocodingProviderError
from medsales_geo.lib.geocoder.geocodio import GeocodioGeocoder
from medsales_geo.lib.geocoder.quality import AccuracyTier

ADDRESS = "42 Elm Street, Peoria, IL 61602"


def _response(data: dict) -> MagicMock:
    mock_response = MagicMock()
    mock_response.json.return_value = data
    return mock_response


class TestGeocodioParsing:
    """Tests for Geocodio result parsing."""

    def setup_method(self) -> None:
        self.geocoder: GeocodioGeocoder = GeocodioGeocoder(api_key="test-key")

    def test_rooftop_result(self) -> None:
        item = {
            "formatted_address": "42 Elm St, Peoria, IL 61602",
            "location": {"lat": 40.6936, "lng": -89.589},
            "accuracy": 1,
            "accuracy_type": "rooftop",
        }
        result = self.geocoder._parse_single_result(item, {"results": [item]})
        assert result.accuracy == AccuracyTier.PRECISE
        assert result.confidence_score == pytest.approx(1.0)
        assert result.matched_address == "42 Elm St, Peoria, IL 61602"
        assert result.provider == "geocodio"

    def test_provider_accuracy_caps_confidence(self) -> None:
        item = {"location": {"lat": 40.0, "lng": -89.0}, "accuracy": 0.7, "accuracy_type": "range_interpolation"}
        result = self.geocoder._parse_single_result(item, {})
        assert result.accuracy == AccuracyTier.INTERPOLATED
        assert result.confidence_score == pytest.approx(0.7)

    def test_non_numeric_accuracy_ignored(self) -> None:
        item = {"location": {"lat": 40.0, "lng": -89.0}, "accuracy": "high", "accuracy_type": "street_center"}
        result = self.geocoder._parse_single_result(item, {})
        assert result.accuracy == AccuracyTier.APPROXIMATE
        assert result.confidence_score == pytest.approx(0.6)

    def test_missing_location_raises(self) -> None:
        with pytest.raises(GeocodingProviderError, match="Failed to parse"):
            self.geocoder._parse_single_result({"accuracy_type": "rooftop"}, {})


class TestGeocodioGeocode:
    """Tests for the HTTP call path."""

    @pytest.mark.asyncio
    async def test_no_results_returns_none(self) -> None:
        geocoder = GeocodioGeocoder(api_key="test-key")
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response({"results": []})
            assert await geocoder.geocode(ADDRESS) is None

    @pytest.mark.asyncio
    async def test_successful_geocode(self) -> None:
        geocoder = GeocodioGeocoder(api_key="test-key")
        data = {
            "results": [
                {"location": {"lat": 40.6936, "lng": -89.589}, "accuracy": 0.9, "accuracy_type": "point"},
            ]
        }
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _response(data)
            result = await geocoder.geocode(ADDRESS)
        assert result is not None
        assert result.accuracy == AccuracyTier.PRECISE
        assert result.confidence_score == pytest.approx(0.9)
        assert mock_get.call_args.kwargs["params"] == {"q": ADDRESS, "api_key": "test-key"}

    @pytest.mark.asyncio
    async def test_unprocessable_address_is_no_match(self) -> None:
        geocoder = GeocodioGeocoder(api_key="test-key")
        mock_response = MagicMock()
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "422", request=MagicMock(), response=MagicMock(status_code=422)
        )
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = mock_response
            with pytest.raises(GeocodingProviderError) as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == FailureKind.NO_MATCH

    @pytest.mark.asyncio
    async def test_rate_limited_is_quota(self) -> None:
        geocoder = GeocodioGeocoder(api_key="test-key")
        mock_response = MagicMock()
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "429", request=MagicMock(), response=MagicMock(status_code=429)
        )
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = mock_response
            with pytest.raises(GeocodingProviderError) as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == FailureKind.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        geocoder = GeocodioGeocoder(api_key="test-key")
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ReadTimeout("slow")
            with pytest.raises(GeocodingProviderError, match="timed out") as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_unparseable_payload_is_transient(self) -> None:
        geocoder = GeocodioGeocoder(api_key="test-key")
        mock_response = MagicMock()
        mock_response.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = mock_response
            with pytest.raises(GeocodingProviderError, match="Unexpected error") as exc_info:
                await geocoder.geocode(ADDRESS)
        assert exc_info.value.kind == FailureKind.TRANSIENT_ERROR

    def test_is_configured(self) -> None:
        assert GeocodioGeocoder(api_key="k").is_configured is True
        assert GeocodioGeocoder(api_key="").is_configured is False
