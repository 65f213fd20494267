"""Address normalization and hashing.

Turns raw address records into a deterministic canonical form so that
syntactically different spellings of the same physical address share one
cache key. Street-type, directional and unit abbreviations are expanded to
full words (USPS Publication 28 vocabulary), words are capitalized, and
ZIP+4 codes are truncated to five digits.
"""

import hashlib
import re
from collections.abc import Mapping
from dataclasses import dataclass

# USPS Pub 28 directional abbreviations
DIRECTIONAL_MAP: dict[str, str] = {
    "N": "NORTH",
    "S": "SOUTH",
    "E": "EAST",
    "W": "WEST",
    "NE": "NORTHEAST",
    "NW": "NORTHWEST",
    "SE": "SOUTHEAST",
    "SW": "SOUTHWEST",
}

# USPS Pub 28 Appendix C: common street type abbreviations
STREET_TYPE_MAP: dict[str, str] = {
    "ALY": "ALLEY",
    "AVE": "AVENUE",
    "AV": "AVENUE",
    "BLVD": "BOULEVARD",
    "CIR": "CIRCLE",
    "CT": "COURT",
    "DR": "DRIVE",
    "EXPY": "EXPRESSWAY",
    "FWY": "FREEWAY",
    "HWY": "HIGHWAY",
    "LN": "LANE",
    "PKWY": "PARKWAY",
    "PL": "PLACE",
    "RD": "ROAD",
    "SQ": "SQUARE",
    "ST": "STREET",
    "TER": "TERRACE",
    "TRL": "TRAIL",
    "TPKE": "TURNPIKE",
}

# USPS Pub 28 Appendix C2: secondary unit designators
UNIT_DESIGNATOR_MAP: dict[str, str] = {
    "APT": "APARTMENT",
    "BLDG": "BUILDING",
    "DEPT": "DEPARTMENT",
    "FL": "FLOOR",
    "RM": "ROOM",
    "STE": "SUITE",
}

DEFAULT_ABBREVIATIONS: dict[str, str] = {**STREET_TYPE_MAP, **DIRECTIONAL_MAP, **UNIT_DESIGNATOR_MAP}

_WHITESPACE = re.compile(r"\s+")
# Anything that is not a word character, whitespace, or address punctuation
_NON_ADDRESS_PUNCT = re.compile(r"[^\w\s#&/\-']")
_US_ZIP = re.compile(r"^(\d{5})(?:[-\s]?\d{4})?$")
_PO_BOX = re.compile(r"\b(?:P\s*O|POST\s+OFFICE)\s*BOX\b")


@dataclass(frozen=True)
class Address:
    """Raw address record as submitted by the ingestion pipeline.

    ``address_id`` is the opaque owning entity key (e.g. an NPI) and is only
    carried through.
    """

    address_id: str
    street: str
    city: str = ""
    region: str = ""
    postal_code: str = ""
    street2: str = ""


@dataclass(frozen=True)
class NormalizedAddress:
    """Canonical form of an Address plus its cache key."""

    street: str
    city: str
    region: str
    postal_code: str
    canonical: str
    address_hash: str
    non_geocodable: bool = False

    def as_address(self, address_id: str) -> Address:
        """Rebuild an Address from the normalized fields."""
        return Address(
            address_id=address_id,
            street=self.street,
            city=self.city,
            region=self.region,
            postal_code=self.postal_code,
        )


def _collapse(value: str) -> str:
    return _WHITESPACE.sub(" ", value.strip())


def _expand(word: str, abbreviations: Mapping[str, str]) -> str:
    key = _NON_ADDRESS_PUNCT.sub("", word.upper())
    return abbreviations.get(key, word)


def _capitalize(word: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in word.split("-"))


def _strip_punct(value: str) -> str:
    return _collapse(_NON_ADDRESS_PUNCT.sub("", value))


def normalize_street(value: str, abbreviations: Mapping[str, str] = DEFAULT_ABBREVIATIONS) -> str:
    """Normalize a street line.

    Applies in order: trim, collapse whitespace, expand abbreviations,
    capitalize words, strip non-address punctuation.

    Args:
        value: Raw street line.
        abbreviations: Uppercase abbreviation → uppercase full word table.

    Returns:
        Normalized street line (may be empty).
    """
    text = _collapse(value or "")
    if not text:
        return ""
    words = [_expand(w, abbreviations) for w in text.split(" ")]
    return _strip_punct(" ".join(_capitalize(w) for w in words))


def normalize_city(value: str) -> str:
    """Normalize a city name (no abbreviation expansion, ``St Louis`` stays)."""
    text = _collapse(value or "")
    if not text:
        return ""
    return _strip_punct(" ".join(_capitalize(w) for w in text.split(" ")))


def normalize_region(value: str) -> str:
    """Normalize a state/region code to uppercase without punctuation."""
    return _strip_punct((value or "").upper())


def normalize_postal_code(value: str) -> str:
    """Truncate US ZIP / ZIP+4 to five digits; uppercase other postal codes.

    Args:
        value: Raw postal code.

    Returns:
        Normalized postal code (may be empty).
    """
    text = _collapse(value or "").upper()
    match = _US_ZIP.match(text)
    if match:
        return match.group(1)
    if text.isdigit() and len(text) > 5:
        return text[:5]
    return _strip_punct(text)


def is_po_box(street: str) -> bool:
    """Whether a normalized street line is a PO-box style line."""
    return bool(_PO_BOX.search(street.upper()))


def canonical_string(street: str, city: str, region: str, postal_code: str) -> str:
    """Join normalized components into the one-line canonical form."""
    tail = f"{region} {postal_code}".strip()
    return ", ".join(part for part in (street, city, tail) if part)


def address_hash(canonical: str) -> str:
    """Fixed-width SHA-256 hex digest of a canonical address string."""
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def normalize(address: Address, abbreviations: Mapping[str, str] = DEFAULT_ABBREVIATIONS) -> NormalizedAddress:
    """Normalize an Address into its canonical form and hash.

    Never rejects input: malformed fields are normalized best-effort and left
    for providers to report as no-match. PO-box lines are tagged
    ``non_geocodable`` so callers skip the providers entirely.

    Args:
        address: Raw address record.
        abbreviations: Abbreviation table to expand (tunable).

    Returns:
        NormalizedAddress with canonical string and SHA-256 hash.
    """
    lines = [normalize_street(line, abbreviations) for line in (address.street, address.street2)]
    street = " ".join(line for line in lines if line)
    city = normalize_city(address.city)
    region = normalize_region(address.region)
    postal_code = normalize_postal_code(address.postal_code)

    canonical = canonical_string(street, city, region, postal_code)
    return NormalizedAddress(
        street=street,
        city=city,
        region=region,
        postal_code=postal_code,
        canonical=canonical,
        address_hash=address_hash(canonical),
        non_geocodable=is_po_box(street),
    )


def parse_freeform_address(address_id: str, line: str) -> Address:
    """Split a one-line ``street, city, ST 12345`` string into an Address.

    Best-effort: splits on commas, takes the last part as region + postal
    code when it ends in a postal code, and the part before it as city.

    Args:
        address_id: Owning entity key to carry through.
        line: Freeform address string.

    Returns:
        Address with whatever components could be separated.
    """
    parts = [p.strip() for p in (line or "").split(",") if p.strip()]
    if not parts:
        return Address(address_id=address_id, street="")
    if len(parts) == 1:
        return Address(address_id=address_id, street=parts[0])

    street = parts[0]
    city = ""
    region = ""
    postal_code = ""

    tail_tokens = parts[-1].split()
    if tail_tokens and any(ch.isdigit() for ch in tail_tokens[-1]):
        postal_code = tail_tokens[-1]
        region = " ".join(tail_tokens[:-1])
        middle = parts[1:-1]
    else:
        region = parts[-1] if len(parts) >= 3 else ""
        middle = parts[1:-1] if len(parts) >= 3 else parts[1:]

    if middle:
        city = middle[-1]
        if len(middle) > 1:
            street = ", ".join([street, *middle[:-1]])

    return Address(address_id=address_id, street=street, city=city, region=region, postal_code=postal_code)
