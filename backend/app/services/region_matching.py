"""Match loosely formatted scraped locations against the curated region table."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db import models

# Keys are loose-normalized scraped names, values are region slugs.
DISTRICT_OVERRIDES: Dict[str, str] = {
    "braunauaminn": "braunau",
    "kirchdorfanderkrems": "kirchdorf",
    "riediminnkreis": "ried",
    "graz": "graz-stadt",
    "wels": "stadt-wels",
    "linz": "stadt-linz",
    "steyr": "stadt-steyr",
    "sanktpolten": "sankt-polten-stadt",
    "wienerneustadt": "wiener-neustadt-stadt",
    "ruststadt": "rust-stadt",
}

SANKT_RE = re.compile(r"\bst\.?\s+")
PARENTHETICAL_RE = re.compile(r"\(.*?\)")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
SLUG_SUFFIX_RE = re.compile(r"-(stadt|land|umgebung)$")
VIENNA_REGION_NAME_RE = re.compile(r"Wien\s*\d+\.,\s*(.+)$", re.IGNORECASE)
BEZIRK_RE = re.compile(r"\bBezirk\b", re.IGNORECASE)


@dataclass(frozen=True)
class RegionRow:
    id: int
    name: str
    slug: str
    type: str
    parent_id: Optional[int]


@dataclass
class RegionIndices:
    state_key_to_slug: Dict[str, str] = field(default_factory=dict)
    composite_to_district_slug: Dict[Tuple[str, str], str] = field(default_factory=dict)
    district_key_to_slug: Dict[str, str] = field(default_factory=dict)


def loose_normalize(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    value = SANKT_RE.sub("sankt ", raw.lower())
    for src, dst in (("ä", "a"), ("ö", "o"), ("ü", "u"), ("ß", "ss"), ("ae", "a"), ("oe", "o"), ("ue", "u")):
        value = value.replace(src, dst)
    value = PARENTHETICAL_RE.sub("", value)
    value = NON_ALNUM_RE.sub("", value)
    return value or None


def _keys(*values: Optional[str]) -> List[str]:
    keys: List[str] = []
    for value in values:
        key = loose_normalize(value)
        if key and key not in keys:
            keys.append(key)
    return keys


def build_region_indices(rows: Iterable[RegionRow]) -> RegionIndices:
    rows = list(rows)
    by_id = {row.id: row for row in rows}
    indices = RegionIndices()

    for row in rows:
        if row.type != "state":
            continue
        for key in _keys(row.slug, row.name):
            indices.state_key_to_slug[key] = row.slug

    for row in rows:
        if row.type != "district":
            continue
        parent = by_id.get(row.parent_id) if row.parent_id is not None else None
        if parent is None:
            continue

        state_keys = _keys(parent.slug, parent.name)
        candidates = _keys(
            row.slug,
            row.name,
            PARENTHETICAL_RE.sub("", row.name).strip(),
            SLUG_SUFFIX_RE.sub("", row.slug),
            row.slug.split("-")[-1],
        )
        if "wien" in state_keys:
            match = VIENNA_REGION_NAME_RE.search(row.name)
            if match:
                candidates.extend(key for key in _keys(match.group(1)) if key not in candidates)

        for state_key in state_keys:
            for district_key in candidates:
                indices.composite_to_district_slug.setdefault((state_key, district_key), row.slug)
        for district_key in candidates:
            indices.district_key_to_slug.setdefault(district_key, row.slug)

    return indices


def resolve_region_slug(
    indices: RegionIndices,
    *,
    state: Optional[str],
    district: Optional[str] = None,
    city: Optional[str] = None,
) -> Optional[str]:
    state_key = loose_normalize(state)
    if not state_key:
        return None

    candidates: List[Optional[str]] = [district, city]
    if state_key == "wien" and city:
        for segment in reversed(city.split(",")):
            cleaned = BEZIRK_RE.sub("", segment).strip()
            if cleaned:
                candidates.append(cleaned)

    for candidate in candidates:
        raw_key = loose_normalize(candidate)
        if not raw_key:
            continue
        district_key = loose_normalize(DISTRICT_OVERRIDES.get(raw_key, raw_key))
        if not district_key:
            continue
        slug = indices.composite_to_district_slug.get((state_key, district_key))
        if slug:
            return slug
        slug = indices.district_key_to_slug.get(district_key)
        if slug:
            return slug

    if not district and not city:
        return indices.state_key_to_slug.get(state_key)
    return None


def load_region_indices(session: Session) -> Tuple[RegionIndices, Dict[str, int]]:
    """Build indices from the region table plus a slug -> region id map."""
    rows = [
        RegionRow(id=r.id, name=r.name, slug=r.slug, type=r.type, parent_id=r.parent_id)
        for r in session.execute(select(models.Region)).scalars()
    ]
    return build_region_indices(rows), {row.slug: row.id for row in rows}
