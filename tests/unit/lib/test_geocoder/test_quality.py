"""Unit tests for accuracy tiers and per-provider quality classification."""

import pytest

from medsales_geo.lib.geocoder.base import GeocodeResult
from medsales_geo.lib.geocoder.quality import (
    DEFAULT_ACCEPTABLE_TIERS,
    TIER_RANK,
    UNKNOWN_SIGNAL,
    AccuracyTier,
    apply_quality_flag,
    classify,
    is_acceptable,
    is_better,
)


def _result(tier: AccuracyTier, confidence: float) -> GeocodeResult:
    return GeocodeResult(latitude=39.78, longitude=-89.65, accuracy=tier, confidence_score=confidence)


class TestAccuracyTier:
    """Tests for AccuracyTier enum values and ordering."""

    def test_tier_values(self) -> None:
        assert AccuracyTier.PRECISE == "precise"
        assert AccuracyTier.REGION_CENTER == "region_center"

    def test_rank_order(self) -> None:
        ordered = sorted(AccuracyTier, key=TIER_RANK.__getitem__)
        assert ordered == [
            AccuracyTier.PRECISE,
            AccuracyTier.INTERPOLATED,
            AccuracyTier.APPROXIMATE,
            AccuracyTier.REGION_CENTER,
        ]

    def test_invalid_tier_raises(self) -> None:
        with pytest.raises(ValueError):
            AccuracyTier("street")


class TestClassify:
    """Tests for provider vocabulary mapping."""

    @pytest.mark.parametrize(
        ("provider", "signal", "expected"),
        [
            ("google", "ROOFTOP", (AccuracyTier.PRECISE, 1.0)),
            ("google", "range_interpolated", (AccuracyTier.INTERPOLATED, 0.85)),
            ("google", "GEOMETRIC_CENTER", (AccuracyTier.APPROXIMATE, 0.6)),
            ("google", "APPROXIMATE", (AccuracyTier.REGION_CENTER, 0.4)),
            ("geocodio", "rooftop", (AccuracyTier.PRECISE, 1.0)),
            ("geocodio", "range_interpolation", (AccuracyTier.INTERPOLATED, 0.85)),
            ("geocodio", "street_center", (AccuracyTier.APPROXIMATE, 0.6)),
            ("geocodio", "place", (AccuracyTier.REGION_CENTER, 0.4)),
            ("nominatim", "house", (AccuracyTier.PRECISE, 0.9)),
            ("nominatim", "road", (AccuracyTier.APPROXIMATE, 0.55)),
            ("nominatim", "City", (AccuracyTier.REGION_CENTER, 0.3)),
        ],
    )
    def test_known_signals(self, provider: str, signal: str, expected: tuple[AccuracyTier, float]) -> None:
        assert classify(provider, signal) == expected

    def test_unknown_signal(self) -> None:
        assert classify("google", "SOMEWHERE") == UNKNOWN_SIGNAL
        assert classify("nominatim", None) == UNKNOWN_SIGNAL

    def test_unknown_provider(self) -> None:
        assert classify("mapquest", "ROOFTOP") == UNKNOWN_SIGNAL

    def test_deterministic(self) -> None:
        assert classify("geocodio", "point") == classify("geocodio", "point")


class TestAcceptability:
    """Tests for acceptable-tier checks and the quality flag."""

    def test_default_acceptable(self) -> None:
        assert is_acceptable(AccuracyTier.PRECISE, DEFAULT_ACCEPTABLE_TIERS)
        assert is_acceptable(AccuracyTier.INTERPOLATED, DEFAULT_ACCEPTABLE_TIERS)
        assert not is_acceptable(AccuracyTier.APPROXIMATE, DEFAULT_ACCEPTABLE_TIERS)
        assert not is_acceptable(None, DEFAULT_ACCEPTABLE_TIERS)

    def test_flag_set_below_acceptable(self) -> None:
        flagged = apply_quality_flag(_result(AccuracyTier.APPROXIMATE, 0.6), DEFAULT_ACCEPTABLE_TIERS)
        assert flagged.below_acceptable is True

    def test_flag_cleared_when_acceptable(self) -> None:
        result = _result(AccuracyTier.PRECISE, 1.0)
        assert apply_quality_flag(result, DEFAULT_ACCEPTABLE_TIERS) is result
        assert result.below_acceptable is False

    def test_custom_acceptable_set(self) -> None:
        acceptable = {AccuracyTier.PRECISE, AccuracyTier.INTERPOLATED, AccuracyTier.APPROXIMATE}
        assert apply_quality_flag(_result(AccuracyTier.APPROXIMATE, 0.6), acceptable).below_acceptable is False


class TestIsBetter:
    """Tests for candidate ranking (tier first, then confidence)."""

    def test_anything_beats_none(self) -> None:
        assert is_better(_result(AccuracyTier.REGION_CENTER, 0.1), None)

    def test_tier_beats_confidence(self) -> None:
        assert is_better(_result(AccuracyTier.INTERPOLATED, 0.5), _result(AccuracyTier.APPROXIMATE, 0.99))

    def test_confidence_breaks_ties(self) -> None:
        assert is_better(_result(AccuracyTier.APPROXIMATE, 0.65), _result(AccuracyTier.APPROXIMATE, 0.6))
        assert not is_better(_result(AccuracyTier.APPROXIMATE, 0.6), _result(AccuracyTier.APPROXIMATE, 0.6))
