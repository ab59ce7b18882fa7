import pytest
from sqlalchemy import func, select

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.discovery import DiscoveryOrchestrator
from backend.app.services.fetcher import TransportError
from backend.tests.pages import detail_html, empty_overview_html, missing_detail_html, overview_html, summary
from backend.tests.services.fakes import FakeTransport, make_fetcher


def _count(model):
    with session_scope() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def _seed_vienna_regions():
    with session_scope() as session:
        state = models.Region(name="Wien", slug="wien", type="state")
        session.add(state)
        session.flush()
        district = models.Region(name="Wien 3., Landstraße", slug="wien-landstrasse", type="district", parent_id=state.id)
        session.add(district)
        session.flush()
        return district.id


def _run(transport, **kwargs):
    return DiscoveryOrchestrator(make_fetcher(transport), **kwargs).run_job()


@pytest.mark.asyncio
async def test_discovery_end_to_end_single_listing():
    district_id = _seed_vienna_regions()
    transport = FakeTransport(
        overview_pages={1: overview_html([summary("123")])},
        details={"123": detail_html("123")},
        default_overview=empty_overview_html(),
    )

    result = await _run(transport)

    assert result["status"] == "success"
    assert result["listings_discovered"] == 1
    assert result["price_history_inserted"] == 1
    assert _count(models.Listing) == 1
    assert _count(models.PriceHistory) == 1
    assert _count(models.Seller) == 1
    assert _count(models.SellerHistory) == 1

    with session_scope() as session:
        listing = session.execute(select(models.Listing)).scalar_one()
        seller = session.execute(select(models.Seller)).scalar_one()
        run = session.get(models.ScrapeRun, result["run_id"])

        assert listing.platform_listing_id == "123"
        assert listing.price == 950.0
        assert listing.zip_code == "1030"
        assert listing.district == "Landstraße"
        assert listing.is_limited is True
        assert listing.duration_months == 36
        assert listing.is_commercial_seller is True
        assert listing.region_id == district_id
        assert listing.seller_id == seller.id
        assert listing.verification_status == "active"
        assert seller.platform_seller_id == "org-1"
        assert seller.active_ad_count == 12
        assert run.status == "success"
        assert run.listings_discovered == 1
        assert run.overview_pages_visited == 1
        assert run.finished_at is not None


@pytest.mark.asyncio
async def test_discovery_rerun_is_idempotent():
    transport = FakeTransport(
        overview_pages={1: overview_html([summary("123"), summary("456")])},
        details={"123": detail_html("123"), "456": detail_html("456")},
        default_overview=empty_overview_html(),
    )

    first = await _run(transport)
    second = await _run(transport)

    assert first["listings_discovered"] == 2
    assert second["listings_discovered"] == 0
    assert second["listings_updated"] == 2
    assert _count(models.Listing) == 2
    assert _count(models.Seller) == 1
    assert _count(models.PriceHistory) == 2


@pytest.mark.asyncio
async def test_discovery_skips_overpriced_and_unfetchable_details():
    transport = FakeTransport(
        overview_pages={
            1: overview_html(
                [
                    summary("111", **{"RENT/PER_MONTH_LETTINGS": "350.000"}),
                    summary("222"),
                    summary("333"),
                    summary("444"),
                ]
            )
        },
        details={
            "222": detail_html("222"),
            "333": 500,
            "444": missing_detail_html(),
        },
        default_overview=empty_overview_html(),
    )

    result = await _run(transport)

    assert result["status"] == "success"
    assert result["listings_discovered"] == 1
    assert result["detail_pages_fetched"] == 1
    with session_scope() as session:
        ids = session.execute(select(models.Listing.platform_listing_id)).scalars().all()
    assert ids == ["222"]
    assert not any(url.endswith("111/") for url in transport.calls)


@pytest.mark.asyncio
async def test_discovery_stops_after_consecutive_pages_without_new_items():
    transport = FakeTransport(
        overview_pages={1: overview_html([summary("123")])},
        details={"123": detail_html("123")},
        default_overview=empty_overview_html(),
    )
    await _run(transport)

    repeat = FakeTransport(default_overview=overview_html([summary("123")]))
    result = await _run(repeat, max_consecutive_no_new=3)

    assert result["status"] == "success"
    assert repeat.overview_calls() == [1, 2, 3]
    assert result["overview_pages_visited"] == 3


@pytest.mark.asyncio
async def test_discovery_respects_page_cap():
    summaries = {page: overview_html([summary(f"9{page:03d}")]) for page in range(1, 10)}
    details = {f"9{page:03d}": detail_html(f"9{page:03d}", seller_id=None) for page in range(1, 10)}
    transport = FakeTransport(overview_pages=summaries, details=details)

    result = await _run(transport, max_pages=4)

    assert transport.overview_calls() == [1, 2, 3, 4]
    assert result["listings_discovered"] == 4


@pytest.mark.asyncio
async def test_discovery_overview_failure_marks_run_error():
    transport = FakeTransport(
        overview_pages={1: overview_html([summary("123")]), 2: 503},
        details={"123": detail_html("123")},
    )

    result = await _run(transport)

    assert result["status"] == "error"
    assert result["error_message"].startswith("OverviewFetchError: overview fetch failed page=2 | cause:")
    # the committed first page survives
    assert _count(models.Listing) == 1
    with session_scope() as session:
        run = session.get(models.ScrapeRun, result["run_id"])
        assert run.status == "error"
        assert run.listings_discovered == 1


@pytest.mark.asyncio
async def test_discovery_detail_transport_exception_is_skipped():
    transport = FakeTransport(
        overview_pages={1: overview_html([summary("123"), summary("456")])},
        details={"123": TransportError("boom", url="x"), "456": detail_html("456")},
        default_overview=empty_overview_html(),
    )

    result = await _run(transport)

    assert result["status"] == "success"
    assert result["listings_discovered"] == 1


@pytest.mark.asyncio
async def test_discovery_malformed_detail_or_unexpected_error_skips_only_that_item():
    broken = detail_html("123").replace('"values": ["\\u20ac 950,00"]', '"values": 5')
    assert '"values": 5' in broken
    transport = FakeTransport(
        overview_pages={1: overview_html([summary("123"), summary("456"), summary("789")])},
        details={"123": broken, "456": detail_html("456"), "789": ValueError("unexpected")},
        default_overview=empty_overview_html(),
    )

    result = await _run(transport)

    assert result["status"] == "success"
    assert result["listings_discovered"] == 2
    with session_scope() as session:
        ids = sorted(session.execute(select(models.Listing.platform_listing_id)).scalars().all())
    assert ids == ["123", "456"]
