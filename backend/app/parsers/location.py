"""Normalization of scraped location fields (state/district/city/zip).

Everything here is pure: bad input yields partially filled output, never an
exception.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, Optional
from urllib.parse import urlparse

VIENNA = "Wien"

VIENNA_ZIP_TO_DISTRICT: Dict[str, str] = {
    "1010": "Innere Stadt",
    "1020": "Leopoldstadt",
    "1030": "Landstraße",
    "1040": "Wieden",
    "1050": "Margareten",
    "1060": "Mariahilf",
    "1070": "Neubau",
    "1080": "Josefstadt",
    "1090": "Alsergrund",
    "1100": "Favoriten",
    "1110": "Simmering",
    "1120": "Meidling",
    "1130": "Hietzing",
    "1140": "Penzing",
    "1150": "Rudolfsheim-Fünfhaus",
    "1160": "Ottakring",
    "1170": "Hernals",
    "1180": "Währing",
    "1190": "Döbling",
    "1200": "Brigittenau",
    "1210": "Floridsdorf",
    "1220": "Donaustadt",
    "1230": "Liesing",
}

STATE_URL_TO_NAME: Dict[str, str] = {
    "wien": "Wien",
    "niederoesterreich": "Niederösterreich",
    "niederosterreich": "Niederösterreich",
    "oberoesterreich": "Oberösterreich",
    "oberosterreich": "Oberösterreich",
    "steiermark": "Steiermark",
    "kaernten": "Kärnten",
    "karnten": "Kärnten",
    "salzburg": "Salzburg",
    "tirol": "Tirol",
    "vorarlberg": "Vorarlberg",
    "burgenland": "Burgenland",
}

PROPERTY_TYPE_SEGMENTS = ("mietwohnungen", "neubauprojekt", "eigentumswohnungen")
PROPERTY_TYPE_TOKENS = ("zimmerwohnung", "wohnung")
AD_ID_SUFFIX_RE = re.compile(r"\d{5,}$")
VIENNA_ZIP_RE = re.compile(r"^1\d{2}0$")
VIENNA_CITY_RE = re.compile(r"Wien,?\s+(\d{1,2})\.\s+Bezirk,?\s*(.+)?", re.IGNORECASE)


@dataclass(frozen=True)
class Location:
    zip_code: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None


def normalize_district_name(district: str) -> str:
    lowered = district.lower()
    for src, dst in (("ä", "ae"), ("ö", "oe"), ("ü", "ue"), ("ß", "ss")):
        lowered = lowered.replace(src, dst)
    return re.sub(r"[^a-z0-9]+", "-", lowered).strip("-")


VIENNA_DISTRICT_TO_ZIP: Dict[str, str] = {
    normalize_district_name(name): zip_code for zip_code, name in VIENNA_ZIP_TO_DISTRICT.items()
}


def vienna_district_from_zip(zip_code: Optional[str]) -> Optional[str]:
    if not zip_code:
        return None
    return VIENNA_ZIP_TO_DISTRICT.get(zip_code.strip())


def vienna_zip_from_district(district: Optional[str]) -> Optional[str]:
    if not district:
        return None
    return VIENNA_DISTRICT_TO_ZIP.get(normalize_district_name(district))


def parse_vienna_city(city: str) -> tuple[str, Optional[str], Optional[str]]:
    """Split ``"Wien 3. Bezirk, Landstraße"`` into (city, district, two-digit district number)."""
    if not city or "Bezirk" not in city:
        return city, None, None
    match = VIENNA_CITY_RE.search(city)
    if not match:
        return city, None, None
    number = match.group(1).zfill(2)
    name_from_city = (match.group(2) or "").strip() or None
    district = VIENNA_ZIP_TO_DISTRICT.get(f"1{number}0") or name_from_city
    return VIENNA, district, number


def _vienna_from_segment(segment: str) -> Location:
    # e.g. "wien-1030-landstrasse"
    if not segment.startswith("wien-"):
        return Location()
    parts = segment.split("-")
    if len(parts) < 3 or not VIENNA_ZIP_RE.match(parts[1]):
        return Location()
    return Location(zip_code=parts[1], district=VIENNA_ZIP_TO_DISTRICT.get(parts[1]))


def location_from_url(url: Optional[str]) -> Location:
    if not url:
        return Location()
    try:
        path = urlparse(url).path
    except ValueError:
        return Location()
    parts = [part for part in path.split("/") if part]
    index = next((i for i, part in enumerate(parts) if part in PROPERTY_TYPE_SEGMENTS), -1)
    if index == -1 or index + 2 >= len(parts):
        return Location()

    state_segment = parts[index + 1]
    district_segment = parts[index + 2]
    state = STATE_URL_TO_NAME.get(state_segment.lower(), state_segment)
    if AD_ID_SUFFIX_RE.search(district_segment):
        return Location(state=state)
    if state == VIENNA:
        return replace(_vienna_from_segment(district_segment), state=state)
    return Location(state=state, district=district_segment)


def _is_bogus_district(district: str) -> bool:
    return any(token in district for token in PROPERTY_TYPE_TOKENS) or bool(AD_ID_SUFFIX_RE.search(district))


def enhance_location(raw: Location, source_url: Optional[str] = None) -> Location:
    zip_code = raw.zip_code or None
    city = raw.city or None
    district = raw.district or None
    state = raw.state or None

    from_url = location_from_url(source_url)
    state = state or from_url.state
    district = district or from_url.district
    zip_code = zip_code or from_url.zip_code

    if district and _is_bogus_district(district):
        district = None

    if state == VIENNA:
        if city:
            city, city_district, number = parse_vienna_city(city)
            district = district or city_district
            if number and not zip_code:
                zip_code = f"1{number}0"
        if zip_code and not district:
            district = vienna_district_from_zip(zip_code)
        if district and not zip_code:
            zip_code = vienna_zip_from_district(district)
        if district and zip_code:
            district = vienna_district_from_zip(zip_code) or district

    return Location(zip_code=zip_code, city=city, district=district, state=state)
