from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.parsers.detail import SellerInfo
from backend.app.services import ingest
from backend.app.services.batch_writer import BatchWriter, InsertRow, UpdateRows


def test_seller_update_fills_identity_once_and_refreshes_activity():
    now = datetime.now(timezone.utc)
    existing = {"org-1": {"id": 7, "name": "Old Name", "register_date": None}}
    seller = SellerInfo(
        platform_seller_id="org-1",
        name="New Name",
        register_date="2019-01-01",
        active_ad_count=4,
        total_ad_count=None,
    )

    updates, inserts = ingest.seller_intents("willhaben", [seller], existing, now)

    assert inserts == []
    assert len(updates) == 1
    update = updates[0]
    assert isinstance(update, UpdateRows)
    assert update.where == {"id": 7}
    assert "name" not in update.values
    assert update.values["register_date"] == "2019-01-01"
    assert update.values["active_ad_count"] == 4
    assert "total_ad_count" not in update.values
    assert update.values["last_seen_at"] == now


def test_unknown_seller_becomes_insert():
    now = datetime.now(timezone.utc)
    seller = SellerInfo(platform_seller_id="org-2", name="Makler", is_private=False)

    updates, inserts = ingest.seller_intents("willhaben", [seller], {}, now)

    assert updates == []
    assert isinstance(inserts[0], InsertRow)
    assert inserts[0].values["platform_seller_id"] == "org-2"
    assert inserts[0].values["first_seen_at"] == now
    assert inserts[0].values["is_verified"] is False


def test_seller_history_requires_active_ad_count():
    now = datetime.now(timezone.utc)

    assert ingest.seller_history_intent(1, SellerInfo(platform_seller_id="x"), now) is None
    intent = ingest.seller_history_intent(1, SellerInfo(platform_seller_id="x", active_ad_count=3), now)
    assert intent.values == {"seller_id": 1, "active_ad_count": 3, "total_ad_count": None, "observed_at": now}


@pytest.mark.asyncio
async def test_listing_upsert_reactivates_on_url_conflict():
    writer = BatchWriter(attempts=1, base_delay=0)
    earlier = datetime.now(timezone.utc) - timedelta(days=3)
    values = {
        "platform_listing_id": "123",
        "external_id": "123",
        "platform": "willhaben",
        "url": "https://willhaben.at/iad/immobilien/d/123",
        "title": "Wohnung",
        "price": 800.0,
    }
    await writer.apply("listings.upsert", [ingest.listing_upsert_intent(values, earlier)])
    with session_scope() as session:
        listing = session.execute(select(models.Listing)).scalar_one()
        listing.is_active = False
        listing.verification_status = "not_found"
        listing.deactivated_at = earlier

    now = datetime.now(timezone.utc)
    await writer.apply("listings.upsert", [ingest.listing_upsert_intent({**values, "price": 850.0}, now)])

    with session_scope() as session:
        listing = session.execute(select(models.Listing)).scalar_one()
        assert listing.price == 850.0
        assert listing.is_active is True
        assert listing.verification_status == "active"
        assert listing.deactivated_at is None
        assert ingest.ensure_utc(listing.first_seen_at) == earlier


@pytest.mark.asyncio
async def test_existing_listing_lookup_by_platform_id():
    writer = BatchWriter(attempts=1, base_delay=0)
    now = datetime.now(timezone.utc)
    values = {
        "platform_listing_id": "321",
        "platform": "willhaben",
        "url": "https://willhaben.at/iad/immobilien/d/321",
        "title": "Wohnung",
        "price": 700.0,
    }
    await writer.apply("listings.upsert", [ingest.listing_upsert_intent(values, now)])

    found = ingest.existing_listings_by_platform_id(["321", "999", "321", ""])

    assert list(found) == ["321"]
    assert found["321"].price == 700.0
    assert ingest.existing_listings_by_platform_id([]) == {}


def test_ensure_utc_normalizes_naive_and_offset_datetimes():
    naive = datetime(2024, 1, 1, 12, 0)
    offset = datetime(2024, 1, 1, 13, 0, tzinfo=timezone(timedelta(hours=1)))

    assert ingest.ensure_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert ingest.ensure_utc(offset).hour == 12
