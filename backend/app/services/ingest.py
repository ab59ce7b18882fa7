from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.batch_writer import InsertRow, UpdateRows, UpsertRow, WriteIntent

# Filled once, never overwritten by later sightings.
SELLER_IDENTITY_FIELDS = (
    "name",
    "is_private",
    "register_date",
    "location",
    "organisation_name",
    "organisation_phone",
    "organisation_email",
    "organisation_website",
)
# Latest non-null observation wins.
SELLER_ACTIVITY_FIELDS = ("active_ad_count", "total_ad_count", "has_profile_image")


def ensure_utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return datetime.now(timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class ExistingListing:
    id: int
    price: Optional[float]


@dataclass(frozen=True)
class VerificationCandidate:
    id: int
    url: str


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def existing_listings_by_platform_id(platform_listing_ids: Sequence[str]) -> Dict[str, ExistingListing]:
    ids = _unique(platform_listing_ids)
    if not ids:
        return {}
    with session_scope() as session:
        rows = session.execute(
            select(models.Listing.id, models.Listing.platform_listing_id, models.Listing.price).where(
                models.Listing.platform_listing_id.in_(ids)
            )
        ).all()
    return {str(row.platform_listing_id): ExistingListing(id=row.id, price=row.price) for row in rows}


def existing_sellers(platform: str, platform_seller_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
    """Return ``platform_seller_id -> {id, <identity fields>}`` for known sellers."""
    ids = _unique(platform_seller_ids)
    if not ids:
        return {}
    with session_scope() as session:
        sellers = session.execute(
            select(models.Seller).where(
                models.Seller.platform == platform,
                models.Seller.platform_seller_id.in_(ids),
            )
        ).scalars().all()
        return {
            seller.platform_seller_id: {
                "id": seller.id,
                **{name: getattr(seller, name) for name in SELLER_IDENTITY_FIELDS},
            }
            for seller in sellers
        }


def verification_candidates(cutoff: datetime, limit: int) -> List[VerificationCandidate]:
    with session_scope() as session:
        rows = session.execute(
            select(models.Listing.id, models.Listing.url)
            .where(models.Listing.is_active.is_(True), models.Listing.last_seen_at < cutoff)
            .order_by(models.Listing.last_seen_at.asc(), models.Listing.id.asc())
            .limit(limit)
        ).all()
    return [VerificationCandidate(id=row.id, url=row.url) for row in rows]


def touch_listing_intents(listing_ids: Iterable[int], now: datetime) -> List[WriteIntent]:
    return [UpdateRows(models.Listing, {"id": listing_id}, {"last_seen_at": now}) for listing_id in listing_ids]


def seller_intents(
    platform: str,
    sellers: Iterable[Any],
    existing: Dict[str, Dict[str, Any]],
    now: datetime,
) -> tuple[List[WriteIntent], List[WriteIntent]]:
    """Split parsed sellers into (updates for known sellers, inserts for new ones)."""
    updates: List[WriteIntent] = []
    inserts: List[WriteIntent] = []
    for seller in sellers:
        psid = seller.platform_seller_id
        stored = existing.get(psid)
        if stored is not None:
            values: Dict[str, Any] = {"last_seen_at": now, "last_updated_at": now}
            for name in SELLER_IDENTITY_FIELDS:
                incoming = getattr(seller, name)
                if incoming is not None and stored.get(name) is None:
                    values[name] = incoming
            for name in SELLER_ACTIVITY_FIELDS:
                incoming = getattr(seller, name)
                if incoming is not None:
                    values[name] = incoming
            updates.append(UpdateRows(models.Seller, {"id": stored["id"]}, values))
        else:
            inserts.append(
                InsertRow(
                    models.Seller,
                    {
                        "platform": platform,
                        "platform_seller_id": psid,
                        "is_verified": False,
                        **{name: getattr(seller, name) for name in SELLER_IDENTITY_FIELDS + SELLER_ACTIVITY_FIELDS},
                        "first_seen_at": now,
                        "last_seen_at": now,
                        "last_updated_at": now,
                    },
                )
            )
    return updates, inserts


def seller_history_intent(seller_id: int, seller: Any, now: datetime) -> Optional[WriteIntent]:
    if seller.active_ad_count is None:
        return None
    return InsertRow(
        models.SellerHistory,
        {
            "seller_id": seller_id,
            "active_ad_count": seller.active_ad_count,
            "total_ad_count": seller.total_ad_count,
            "observed_at": now,
        },
    )


def listing_upsert_intent(
    values: Dict[str, Any],
    now: datetime,
) -> WriteIntent:
    """Insert a listing keyed by URL, or refresh it when the URL resurfaces."""
    insert_values = {
        **values,
        "first_seen_at": now,
        "last_seen_at": now,
        "last_scraped_at": now,
        "is_active": True,
        "verification_status": "active",
        "not_found_count": 0,
    }
    refresh = {
        key: value
        for key, value in values.items()
        if key not in {"url", "platform", "platform_listing_id", "external_id"}
    }
    refresh.update(
        {
            "last_seen_at": now,
            "last_scraped_at": now,
            "is_active": True,
            "verification_status": "active",
            "deactivated_at": None,
            "updated_at": now,
        }
    )
    return UpsertRow(models.Listing, insert_values, ("url",), refresh)


def price_history_intent(listing_id: int, price: float, now: datetime) -> WriteIntent:
    return InsertRow(models.PriceHistory, {"listing_id": listing_id, "price": price, "observed_at": now})
