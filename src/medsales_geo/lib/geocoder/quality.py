"""Quality classification: maps provider accuracy vocabularies onto shared tiers.

Each provider reports accuracy in its own terms (Google ``location_type``,
Geocodio ``accuracy_type``, Nominatim ``addresstype``). The tables here
normalize those signals to a four-tier scale plus a confidence score.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from medsales_geo.lib.geocoder.base import GeocodeResult


class AccuracyTier(StrEnum):
    """Accuracy tier of a geocoding result, from most to least precise."""

    PRECISE = "precise"
    INTERPOLATED = "interpolated"
    APPROXIMATE = "approximate"
    REGION_CENTER = "region_center"


# Ranking for tier comparison (lower = better)
TIER_RANK: dict[AccuracyTier, int] = {
    AccuracyTier.PRECISE: 0,
    AccuracyTier.INTERPOLATED: 1,
    AccuracyTier.APPROXIMATE: 2,
    AccuracyTier.REGION_CENTER: 3,
}

DEFAULT_ACCEPTABLE_TIERS: frozenset[AccuracyTier] = frozenset({AccuracyTier.PRECISE, AccuracyTier.INTERPOLATED})

# Unknown vocabulary is treated as a region centroid
UNKNOWN_SIGNAL: tuple[AccuracyTier, float] = (AccuracyTier.REGION_CENTER, 0.3)

# Google location_type → (tier, confidence)
_GOOGLE_MAP: dict[str, tuple[AccuracyTier, float]] = {
    "ROOFTOP": (AccuracyTier.PRECISE, 1.0),
    "RANGE_INTERPOLATED": (AccuracyTier.INTERPOLATED, 0.85),
    "GEOMETRIC_CENTER": (AccuracyTier.APPROXIMATE, 0.6),
    "APPROXIMATE": (AccuracyTier.REGION_CENTER, 0.4),
}

# Geocodio accuracy_type → (tier, confidence)
_GEOCODIO_MAP: dict[str, tuple[AccuracyTier, float]] = {
    "rooftop": (AccuracyTier.PRECISE, 1.0),
    "point": (AccuracyTier.PRECISE, 0.95),
    "range_interpolation": (AccuracyTier.INTERPOLATED, 0.85),
    "nearest_rooftop_match": (AccuracyTier.INTERPOLATED, 0.8),
    "intersection": (AccuracyTier.APPROXIMATE, 0.65),
    "street_center": (AccuracyTier.APPROXIMATE, 0.6),
    "nearest_street": (AccuracyTier.APPROXIMATE, 0.55),
    "place": (AccuracyTier.REGION_CENTER, 0.4),
    "county": (AccuracyTier.REGION_CENTER, 0.3),
    "state": (AccuracyTier.REGION_CENTER, 0.2),
}

# Nominatim addresstype → (tier, confidence)
_NOMINATIM_MAP: dict[str, tuple[AccuracyTier, float]] = {
    "house": (AccuracyTier.PRECISE, 0.9),
    "building": (AccuracyTier.PRECISE, 0.9),
    "amenity": (AccuracyTier.PRECISE, 0.85),
    "office": (AccuracyTier.PRECISE, 0.85),
    "road": (AccuracyTier.APPROXIMATE, 0.55),
    "neighbourhood": (AccuracyTier.APPROXIMATE, 0.5),
    "suburb": (AccuracyTier.REGION_CENTER, 0.4),
    "postcode": (AccuracyTier.REGION_CENTER, 0.35),
    "city": (AccuracyTier.REGION_CENTER, 0.3),
    "town": (AccuracyTier.REGION_CENTER, 0.3),
    "village": (AccuracyTier.REGION_CENTER, 0.3),
    "county": (AccuracyTier.REGION_CENTER, 0.2),
    "state": (AccuracyTier.REGION_CENTER, 0.1),
}

_PROVIDER_TABLES: dict[str, dict[str, tuple[AccuracyTier, float]]] = {
    "google": _GOOGLE_MAP,
    "geocodio": _GEOCODIO_MAP,
    "nominatim": _NOMINATIM_MAP,
}


def classify(provider: str, signal: str | None) -> tuple[AccuracyTier, float]:
    """Map a provider-reported accuracy signal to a tier and confidence score.

    Args:
        provider: Provider name (e.g., "google").
        signal: The provider's accuracy value (e.g., "ROOFTOP").

    Returns:
        Tuple of (AccuracyTier, confidence in [0, 1]). Unknown providers or
        signals map to ``UNKNOWN_SIGNAL``.
    """
    table = _PROVIDER_TABLES.get(provider)
    if table is None or not signal:
        return UNKNOWN_SIGNAL
    if provider == "google":
        return table.get(signal.upper(), UNKNOWN_SIGNAL)
    return table.get(signal.lower(), UNKNOWN_SIGNAL)


def is_acceptable(tier: AccuracyTier | None, acceptable: Iterable[AccuracyTier]) -> bool:
    """Whether a tier belongs to the configured acceptable set."""
    return tier is not None and tier in frozenset(acceptable)


def is_better(candidate: GeocodeResult, current: GeocodeResult | None) -> bool:
    """Whether ``candidate`` beats ``current`` (better tier, then higher confidence)."""
    if current is None:
        return True
    cand_rank = TIER_RANK.get(candidate.accuracy, len(TIER_RANK)) if candidate.accuracy else len(TIER_RANK)
    curr_rank = TIER_RANK.get(current.accuracy, len(TIER_RANK)) if current.accuracy else len(TIER_RANK)
    if cand_rank != curr_rank:
        return cand_rank < curr_rank
    return (candidate.confidence_score or 0.0) > (current.confidence_score or 0.0)


def apply_quality_flag(result: GeocodeResult, acceptable: Iterable[AccuracyTier]) -> GeocodeResult:
    """Return ``result`` with ``below_acceptable`` set for the UI warning display."""
    flagged = not is_acceptable(result.accuracy, acceptable)
    if result.below_acceptable == flagged:
        return result
    return dataclasses.replace(result, below_acceptable=flagged)
