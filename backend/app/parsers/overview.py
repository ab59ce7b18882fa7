"""Parser for paginated search-result (overview) pages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ._next_data import (
    LISTING_BASE_URL,
    attribute_map,
    extract_next_data,
    first_attr,
    page_props,
    parse_decimal_comma,
    parse_first_int,
    parse_flag,
    parse_locale_amount,
)

logger = logging.getLogger(__name__)

ID_DISALLOWED_RE = re.compile(r"[^0-9A-Za-z_\-]")


@dataclass
class OverviewItem:
    id: str
    url: str
    title: str
    price: Optional[float] = None
    area: Optional[float] = None
    rooms: Optional[int] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_private: Optional[bool] = None
    platform_seller_id: Optional[str] = None


@dataclass
class OverviewDebug:
    has_next_data: bool
    has_search_result: bool
    page_requested: Optional[int] = None
    rows_requested: Optional[int] = None
    rows_found: Optional[int] = None
    rows_returned: Optional[int] = None
    items_count: Optional[int] = None

    def describe(self) -> str:
        def _fmt(value: Any) -> str:
            return "n/a" if value is None else str(value)

        return (
            f"hasNextData={self.has_next_data} hasSearchResult={self.has_search_result} "
            f"pageRequested={_fmt(self.page_requested)} rowsRequested={_fmt(self.rows_requested)} "
            f"rowsFound={_fmt(self.rows_found)} rowsReturned={_fmt(self.rows_returned)} "
            f"itemsCount={_fmt(self.items_count)}"
        )


def _search_result(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    result = page_props(data).get("searchResult")
    return result if isinstance(result, dict) else None


def _summaries(search_result: Dict[str, Any]) -> Optional[List[Any]]:
    summary_list = search_result.get("advertSummaryList")
    if not isinstance(summary_list, dict):
        return None
    summaries = summary_list.get("advertSummary")
    return summaries if isinstance(summaries, list) else None


def _coordinates(raw: Optional[str]) -> tuple[Optional[float], Optional[float]]:
    if not raw or "," not in raw:
        return None, None
    lat_raw, lng_raw = raw.split(",", 1)
    return parse_decimal_comma(lat_raw), parse_decimal_comma(lng_raw)


def _build_item(summary: Dict[str, Any]) -> Optional[OverviewItem]:
    raw_id = summary.get("id")
    if raw_id is None:
        return None
    raw_id = str(raw_id)
    normalized_id = ID_DISALLOWED_RE.sub("", raw_id)
    if normalized_id != raw_id:
        logger.warning("overview id normalized raw=%s normalized=%s", raw_id, normalized_id)
    if not normalized_id:
        return None

    attrs = attribute_map(summary.get("attributes"))
    seo_url = attrs.get("SEO_URL")
    if seo_url:
        url = f"{LISTING_BASE_URL}/{seo_url.lstrip('/')}"
    else:
        url = f"{LISTING_BASE_URL}/immobilien/d/{normalized_id}"

    latitude, longitude = _coordinates(attrs.get("COORDINATES"))
    return OverviewItem(
        id=normalized_id,
        url=url,
        title=str(summary.get("description") or ""),
        price=parse_locale_amount(first_attr(attrs, "RENT/PER_MONTH_LETTINGS", "PRICE")),
        area=parse_decimal_comma(first_attr(attrs, "ESTATE_SIZE/LIVING_AREA", "ESTATE_SIZE")),
        rooms=parse_first_int(attrs.get("NUMBER_OF_ROOMS")),
        zip_code=attrs.get("POSTCODE"),
        city=attrs.get("LOCATION"),
        district=attrs.get("DISTRICT"),
        state=attrs.get("STATE"),
        latitude=latitude,
        longitude=longitude,
        is_private=parse_flag(attrs.get("ISPRIVATE")),
        platform_seller_id=attrs.get("ORG_UUID"),
    )


def parse_overview(html: str) -> List[OverviewItem]:
    """Parse listing summaries from an overview page.

    Returns an empty list when the embedded payload or its result node is
    missing; callers treat that as the end of the result set.
    """
    search_result = _search_result(extract_next_data(html))
    if search_result is None:
        return []
    summaries = _summaries(search_result)
    if not summaries:
        return []

    items: List[OverviewItem] = []
    for summary in summaries:
        if not isinstance(summary, dict):
            continue
        item = _build_item(summary)
        if item is not None:
            items.append(item)
    return items


def extract_overview_debug(html: str) -> OverviewDebug:
    data = extract_next_data(html)
    search_result = _search_result(data)
    if search_result is None:
        return OverviewDebug(has_next_data=data is not None, has_search_result=False)

    def _int(key: str) -> Optional[int]:
        value = search_result.get(key)
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    summaries = _summaries(search_result)
    return OverviewDebug(
        has_next_data=True,
        has_search_result=True,
        page_requested=_int("pageRequested"),
        rows_requested=_int("rowsRequested"),
        rows_found=_int("rowsFound"),
        rows_returned=_int("rowsReturned"),
        items_count=len(summaries) if summaries is not None else None,
    )
