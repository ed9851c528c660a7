"""Supported-location allowlist.

Research is restricted to the five largest Danish cities and their
surrounding municipalities. Anything else is skipped with a logged reason.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Optional, Tuple, List


@dataclass(frozen=True)
class SupportedCity:
    name: str
    municipality_codes: Tuple[str, ...]
    municipality_names: Tuple[str, ...]
    postal_ranges: Tuple[Tuple[int, int], ...]
    aliases: Tuple[str, ...] = field(default_factory=tuple)


SUPPORTED_CITIES: List[SupportedCity] = [
    SupportedCity(
        name="København",
        municipality_codes=(
            "0101", "0147", "0153", "0155", "0157", "0159", "0161", "0163",
            "0165", "0167", "0169", "0173", "0175", "0183", "0185", "0187",
            "0190", "0240", "0250", "0270", "0210", "0217", "0219", "0223",
            "0230",
        ),
        municipality_names=(
            "københavn", "frederiksberg", "gentofte", "gladsaxe", "lyngby-taarbæk",
            "hvidovre", "rødovre", "brøndby", "tårnby", "dragør", "herlev",
            "glostrup", "albertslund", "høje-taastrup", "ishøj", "vallensbæk",
            "furesø", "ballerup", "rudersdal", "hørsholm",
        ),
        postal_ranges=((1000, 2990),),
        aliases=(
            "københavn", "kobenhavn", "copenhagen", "kbh", "cph",
            "frederiksberg", "valby", "vanløse", "amager", "nørrebro",
            "østerbro", "vesterbro", "hellerup", "charlottenlund",
            "gentofte", "gladsaxe", "lyngby", "hvidovre", "rødovre",
            "brøndby", "taastrup", "ballerup", "søborg",
        ),
    ),
    SupportedCity(
        name="Aarhus",
        municipality_codes=("0751",),
        municipality_names=("aarhus",),
        postal_ranges=((8000, 8299),),
        aliases=("aarhus", "århus"),
    ),
    SupportedCity(
        name="Odense",
        municipality_codes=("0461",),
        municipality_names=("odense",),
        postal_ranges=((5000, 5270),),
        aliases=("odense",),
    ),
    SupportedCity(
        name="Aalborg",
        municipality_codes=("0851",),
        municipality_names=("aalborg",),
        postal_ranges=((9000, 9260),),
        aliases=("aalborg", "ålborg", "nørresundby"),
    ),
    SupportedCity(
        name="Esbjerg",
        municipality_codes=("0561",),
        municipality_names=("esbjerg",),
        postal_ranges=((6700, 6731),),
        aliases=("esbjerg",),
    ),
]


def ascii_fold(text: str) -> str:
    """Lowercase, fold Danish letters and strip everything but a-z."""
    text = text.lower().replace("ø", "o").replace("æ", "ae").replace("å", "a")
    text = unicodedata.normalize("NFD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    return re.sub(r"[^a-z]", "", text)


def find_supported_city(
    city_or_municipality: Optional[str],
    postal_code: Optional[str] = None,
) -> Optional[SupportedCity]:
    """Match a city name, municipality ("0101 København") or postal code."""
    if city_or_municipality:
        folded = ascii_fold(city_or_municipality)
        if folded:
            for city in SUPPORTED_CITIES:
                for alias in city.aliases:
                    folded_alias = ascii_fold(alias)
                    if folded == folded_alias or folded.startswith(folded_alias):
                        return city

        code_match = re.match(r"^(\d{4})", city_or_municipality.strip())
        if code_match:
            for city in SUPPORTED_CITIES:
                if code_match.group(1) in city.municipality_codes:
                    return city

        lower = city_or_municipality.lower()
        for city in SUPPORTED_CITIES:
            if any(name in lower for name in city.municipality_names):
                return city

    if postal_code:
        try:
            pc = int(str(postal_code).strip()[:4])
        except ValueError:
            return None
        for city in SUPPORTED_CITIES:
            for low, high in city.postal_ranges:
                if low <= pc <= high:
                    return city

    return None


def is_supported_location(
    city: Optional[str],
    postal_code: Optional[str],
    municipality: Optional[str] = None,
) -> Tuple[bool, str]:
    """Returns (supported, city name or skip reason)."""
    match = find_supported_city(city, postal_code) or find_supported_city(municipality, postal_code)
    if match:
        return True, match.name
    names = ", ".join(c.name for c in SUPPORTED_CITIES)
    return False, (
        f"'{city or 'unknown city'}' (postal: {postal_code or '?'}, "
        f"municipality: {municipality or '?'}) is not one of the supported cities: {names}"
    )


def resolve_municipality_name(value: Optional[str]) -> Optional[str]:
    """'0101 København' / '0101' / 'København' → clean display name."""
    if not value:
        return None
    city = find_supported_city(value)
    if city:
        return city.name
    parts = value.strip().split()
    if len(parts) > 1 and re.fullmatch(r"\d{4}", parts[0]):
        return " ".join(parts[1:])
    return value
