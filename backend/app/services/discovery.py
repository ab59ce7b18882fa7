"""Discovery job: walk overview pages and persist listings not yet known."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from backend.app.core.errors import format_error
from backend.app.core.settings import settings
from backend.app.db.session import session_scope
from backend.app.parsers.detail import DetailListing, SellerInfo, parse_detail
from backend.app.parsers.overview import OverviewItem, extract_overview_debug, parse_overview
from backend.app.services import ingest
from backend.app.services.fetcher import TransportError
from backend.app.services.region_matching import RegionIndices, load_region_indices, resolve_region_slug
from backend.app.services.scrape_orchestrator import ScrapeOrchestrator

logger = logging.getLogger(__name__)


class OverviewFetchError(RuntimeError):
    """Raised when an overview page cannot be fetched; aborts the run."""


@dataclass
class NewListing:
    item: OverviewItem
    detail: DetailListing


@dataclass
class PageOutcome:
    new_found: int
    stop: bool


class DiscoveryOrchestrator(ScrapeOrchestrator):
    run_type = "discovery"

    def __init__(
        self,
        *args,
        max_pages: Optional[int] = None,
        max_consecutive_no_new: Optional[int] = None,
        max_price: Optional[float] = None,
        rows_per_page: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.max_pages = max_pages or settings.discovery_max_pages
        self.max_consecutive_no_new = max_consecutive_no_new or settings.discovery_max_consecutive_no_new
        self.max_price = max_price if max_price is not None else settings.discovery_max_price
        self.rows_per_page = rows_per_page or settings.rows_per_page
        self.region_indices = RegionIndices()
        self.region_ids: Dict[str, int] = {}
        self.metrics.overview_pages_visited = 0
        self.metrics.detail_pages_fetched = 0
        self.metrics.listings_discovered = 0
        self.metrics.listings_updated = 0
        self.metrics.price_history_inserted = 0

    async def execute(self) -> None:
        with session_scope() as session:
            self.region_indices, self.region_ids = load_region_indices(session)

        page = 1
        consecutive_no_new = 0
        while page <= self.max_pages and consecutive_no_new < self.max_consecutive_no_new:
            outcome = await self.process_page(page)
            if outcome.stop:
                break
            await self.checkpoint()
            logger.info(
                "discovery progress pages=%d new=%d updated=%d details=%d",
                self.metrics.overview_pages_visited,
                self.metrics.listings_discovered,
                self.metrics.listings_updated,
                self.metrics.detail_pages_fetched,
                extra=self.log_extra,
            )
            consecutive_no_new = consecutive_no_new + 1 if outcome.new_found == 0 else 0
            page += 1

    async def process_page(self, page: int) -> PageOutcome:
        now = datetime.now(timezone.utc)
        try:
            html = await self.fetcher.fetch_overview(page, self.rows_per_page)
        except TransportError as exc:
            raise OverviewFetchError(f"overview fetch failed page={page}") from exc

        items = parse_overview(html)
        logger.info("discovery page=%d items=%d", page, len(items), extra=self.log_extra)
        if not items:
            logger.info(
                "discovery stop: empty page=%d %s", page, extract_overview_debug(html).describe(), extra=self.log_extra
            )
            return PageOutcome(new_found=0, stop=True)
        self.metrics.overview_pages_visited += 1

        kept = [item for item in items if item.price is None or item.price <= self.max_price]
        if len(kept) != len(items):
            logger.info(
                "discovery filtered overpriced items page=%d removed=%d kept=%d",
                page,
                len(items) - len(kept),
                len(kept),
                extra=self.log_extra,
            )

        existing = ingest.existing_listings_by_platform_id([item.id for item in kept])
        known = [item for item in kept if item.id in existing]
        unseen = [item for item in kept if item.id not in existing]

        self.metrics.listings_updated += len(known)
        await self.writer.apply(
            "listings.touch_last_seen.batch",
            ingest.touch_listing_intents([existing[item.id].id for item in known], now),
            page=page,
        )

        new_listings = await self.fetch_details(unseen)
        if new_listings:
            seller_ids = await self.upsert_sellers(new_listings, now)
            await self.upsert_listings(new_listings, seller_ids, now)
            await self.insert_price_history(new_listings, now)

        self.metrics.listings_discovered += len(new_listings)
        return PageOutcome(new_found=len(new_listings), stop=False)

    async def fetch_details(self, items: List[OverviewItem]) -> List[NewListing]:
        # Bounded by the fetcher's limiter; order follows the overview page.
        outcomes = await asyncio.gather(*(self.fetch_detail(item) for item in items))
        return [entry for entry in outcomes if entry is not None]

    async def fetch_detail(self, item: OverviewItem) -> Optional[NewListing]:
        # One bad item never fails the page.
        try:
            html = await self.fetcher.fetch_detail(item.url)
            detail = parse_detail(html)
        except Exception as exc:
            logger.warning(
                "discovery detail failed id=%s url=%s error=%s",
                item.id,
                item.url,
                format_error(exc),
                extra=self.log_extra,
            )
            return None
        if detail is None:
            logger.info("discovery detail missing id=%s url=%s", item.id, item.url, extra=self.log_extra)
            return None
        self.metrics.detail_pages_fetched += 1
        return NewListing(item=item, detail=detail)

    async def upsert_sellers(self, new_listings: List[NewListing], now: datetime) -> Dict[str, int]:
        by_platform_id: Dict[str, SellerInfo] = {}
        for entry in new_listings:
            seller = entry.detail.seller
            if seller.platform_seller_id:
                by_platform_id[seller.platform_seller_id] = seller
        if not by_platform_id:
            return {}

        platform_ids = list(by_platform_id)
        existing = ingest.existing_sellers(self.platform, platform_ids)
        updates, inserts = ingest.seller_intents(self.platform, by_platform_id.values(), existing, now)
        await self.writer.apply("sellers.update.batch", updates)
        await self.writer.apply("sellers.insert.batch", inserts)

        seller_ids = {psid: row["id"] for psid, row in ingest.existing_sellers(self.platform, platform_ids).items()}
        history = []
        for psid, seller in by_platform_id.items():
            seller_id = seller_ids.get(psid)
            intent = ingest.seller_history_intent(seller_id, seller, now) if seller_id else None
            if intent is not None:
                history.append(intent)
        await self.writer.apply("seller_history.insert.batch", history)
        return seller_ids

    def resolve_region_id(self, item: OverviewItem, detail: DetailListing) -> Optional[int]:
        location = detail.location
        slug = resolve_region_slug(
            self.region_indices,
            state=location.state or item.state,
            district=location.district or item.district,
            city=location.city or item.city,
        )
        region_id = self.region_ids.get(slug) if slug else None
        if region_id is None:
            logger.warning(
                "discovery region not resolved id=%s url=%s state=%s district=%s city=%s",
                item.id,
                item.url,
                location.state or item.state or "",
                location.district or item.district or "",
                location.city or item.city or "",
                extra=self.log_extra,
            )
        return region_id

    def listing_values(self, entry: NewListing, seller_id: Optional[int]) -> Dict[str, object]:
        item, detail = entry.item, entry.detail
        location = detail.location
        return {
            "platform_listing_id": item.id,
            "external_id": item.id,
            "platform": self.platform,
            "url": item.url,
            "title": item.title or detail.title,
            "price": item.price if item.price is not None else detail.price,
            "area": item.area if item.area is not None else detail.area,
            "rooms": item.rooms,
            "zip_code": location.zip_code or item.zip_code,
            "city": location.city or item.city,
            "district": location.district or item.district,
            "state": location.state or item.state,
            "latitude": item.latitude,
            "longitude": item.longitude,
            "is_limited": detail.is_limited,
            "duration_months": detail.duration_months,
            "is_commercial_seller": (
                detail.is_commercial_seller
                if detail.is_commercial_seller is not None
                else (None if item.is_private is None else not item.is_private)
            ),
            "region_id": self.resolve_region_id(item, detail),
            "seller_id": seller_id,
        }

    async def upsert_listings(self, new_listings: List[NewListing], seller_ids: Dict[str, int], now: datetime) -> None:
        intents = []
        for entry in new_listings:
            psid = entry.detail.seller.platform_seller_id
            seller_id = seller_ids.get(psid) if psid else None
            intents.append(ingest.listing_upsert_intent(self.listing_values(entry, seller_id), now))
        await self.writer.apply("listings.upsert.batch", intents)

    async def insert_price_history(self, new_listings: List[NewListing], now: datetime) -> None:
        stored = ingest.existing_listings_by_platform_id([entry.item.id for entry in new_listings])
        intents = []
        for entry in new_listings:
            row = stored.get(entry.item.id)
            if row is None:
                continue
            intents.append(ingest.price_history_intent(row.id, row.price, now))
        inserted = await self.writer.apply("price_history.insert.batch", intents)
        self.metrics.price_history_inserted += inserted


async def run_discovery(**kwargs) -> Dict[str, object]:
    return await DiscoveryOrchestrator(**kwargs).run_job()
