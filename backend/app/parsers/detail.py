"""Parser for single listing (detail) pages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ._next_data import (
    attribute_map,
    extract_next_data,
    first_attr,
    page_props,
    parse_decimal_comma,
    parse_first_int,
    parse_flag,
    parse_locale_amount,
)
from .location import Location, enhance_location

LIMITED_MARKER = "befristet"


@dataclass
class SellerInfo:
    platform_seller_id: Optional[str] = None
    name: Optional[str] = None
    is_private: Optional[bool] = None
    register_date: Optional[str] = None
    location: Optional[str] = None
    active_ad_count: Optional[int] = None
    total_ad_count: Optional[int] = None
    organisation_name: Optional[str] = None
    organisation_phone: Optional[str] = None
    organisation_email: Optional[str] = None
    organisation_website: Optional[str] = None
    has_profile_image: Optional[bool] = None


@dataclass
class DetailListing:
    id: str
    url: str
    title: str
    price: float
    area: Optional[float]
    location: Location
    is_limited: bool
    duration_months: Optional[int]
    is_commercial_seller: Optional[bool]
    seller: SellerInfo = field(default_factory=SellerInfo)
    platform: str = "willhaben"
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _dict(node: Any) -> Dict[str, Any]:
    return node if isinstance(node, dict) else {}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return parse_first_int(str(value))


def _parse_seller(details: Dict[str, Any], attrs: Dict[str, str]) -> SellerInfo:
    profile = _dict(details.get("sellerProfileUserData"))
    organisation = _dict(details.get("organisationDetails"))

    platform_seller_id = (
        _text(organisation.get("orgUUID"))
        or _text(organisation.get("id"))
        or _text(attrs.get("ORG_UUID"))
        or _text(profile.get("id"))
        or _text(profile.get("userId"))
    )
    has_profile_image = parse_flag(profile.get("hasProfileImage"))
    if has_profile_image is None and "profilePictureUrl" in profile:
        has_profile_image = bool(profile.get("profilePictureUrl"))

    return SellerInfo(
        platform_seller_id=platform_seller_id,
        name=_text(profile.get("name")) or _text(organisation.get("orgName")),
        is_private=parse_flag(profile.get("private")),
        register_date=_text(profile.get("registerDate")),
        location=_text(profile.get("location")),
        active_ad_count=_int(profile.get("activeAdCount")),
        total_ad_count=_int(profile.get("totalAdCount")),
        organisation_name=_text(organisation.get("orgName")),
        organisation_phone=_text(organisation.get("orgPhone")),
        organisation_email=_text(organisation.get("orgEmail")),
        organisation_website=_text(organisation.get("orgWebsite") or organisation.get("orgUrl")),
        has_profile_image=has_profile_image,
    )


def parse_detail(html: str) -> Optional[DetailListing]:
    """Parse a detail page.

    Returns ``None`` when the page carries no advert details, which callers
    read as "listing not found / delisted".
    """
    details = page_props(extract_next_data(html)).get("advertDetails")
    if not isinstance(details, dict):
        return None

    attrs = attribute_map(details.get("attributes"))
    url = _text(_dict(details.get("seoMetaData")).get("canonicalUrl")) or ""

    price = parse_locale_amount(first_attr(attrs, "RENT/PER_MONTH_LETTINGS", "RENTAL_PRICE/PER_MONTH"))
    area = parse_decimal_comma(attrs.get("ESTATE_SIZE/LIVING_AREA"))

    is_limited = attrs.get("DURATION/HASTERMLIMIT") == LIMITED_MARKER
    duration_text = attrs.get("DURATION/TERMLIMITTEXT")
    duration_months = None
    if duration_text:
        years = parse_first_int(duration_text)
        duration_months = (years or 0) * 12

    address = _dict(details.get("advertAddressDetails"))
    location = enhance_location(
        Location(
            zip_code=_text(address.get("postCode")),
            city=_text(address.get("postalName")),
            district=_text(attrs.get("DISTRICT")),
            state=_text(address.get("province")),
        ),
        url,
    )

    seller = _parse_seller(details, attrs)
    is_commercial = None if seller.is_private is None else not seller.is_private

    return DetailListing(
        id=str(details.get("id") or ""),
        url=url,
        title=str(details.get("description") or ""),
        price=price or 0.0,
        area=area,
        location=location,
        is_limited=is_limited,
        duration_months=duration_months,
        is_commercial_seller=is_commercial,
        seller=seller,
    )
