"""Sweep job: refresh price and activity of known listings from overview pages only."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from backend.app.core.settings import settings
from backend.app.db import models
from backend.app.parsers.overview import parse_overview
from backend.app.services import ingest
from backend.app.services.batch_writer import UpdateRows, WriteIntent
from backend.app.services.run_tracker import LastRun
from backend.app.services.scrape_orchestrator import ScrapeOrchestrator

logger = logging.getLogger(__name__)


def compute_sweep_start_page(
    last_run: Optional[LastRun],
    now: datetime,
    *,
    resume_window: timedelta = timedelta(hours=12),
    overlap_pages: int = 5,
) -> int:
    """Pick the first overview page for a sweep.

    A missing or stale previous run means a full resweep from page 1;
    otherwise back up ``overlap_pages`` from where the last run stopped.
    """
    if last_run is None or last_run.started_at is None:
        return 1
    if ingest.ensure_utc(now) - ingest.ensure_utc(last_run.started_at) > resume_window:
        return 1
    last_page = last_run.last_overview_page or 1
    return max(1, last_page - overlap_pages)


class SweepOrchestrator(ScrapeOrchestrator):
    run_type = "sweep"

    def __init__(
        self,
        *args,
        max_pages: Optional[int] = None,
        rows_per_page: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.max_pages = max_pages or settings.sweep_max_pages
        self.rows_per_page = rows_per_page or settings.rows_per_page
        self.start_page = 1
        self.last_run: Optional[LastRun] = None
        self.metrics.overview_pages_visited = 0
        self.metrics.detail_pages_fetched = 0
        self.metrics.listings_updated = 0
        self.metrics.price_history_inserted = 0
        self.metrics.price_changes_detected = 0

    async def prepare(self) -> None:
        # Resolved before this run's own row exists so it cannot shadow the previous sweep.
        self.last_run = await self.writer.run(
            "scrape_runs.last_run", lambda: self.tracker.get_last_run_of_type(self.run_type)
        )
        self.start_page = compute_sweep_start_page(
            self.last_run,
            datetime.now(timezone.utc),
            resume_window=timedelta(hours=settings.sweep_resume_window_hours),
            overlap_pages=settings.sweep_overlap_pages,
        )

    async def execute(self) -> None:
        logger.info(
            "sweep computed start page=%d lastRunPage=%s",
            self.start_page,
            self.last_run.last_overview_page if self.last_run else "n/a",
            extra=self.log_extra,
        )
        page = self.start_page
        while page <= self.max_pages:
            html = await self.fetcher.fetch_overview(page, self.rows_per_page)
            items = parse_overview(html)
            self.metrics.overview_pages_visited += 1
            logger.info("sweep page=%d items=%d", page, len(items), extra=self.log_extra)
            if not items:
                break

            await self.process_items(items, page)
            self.metrics.last_overview_page = page
            await self.checkpoint()
            logger.info(
                "sweep progress pages=%d priceRows=%d priceChanges=%d updated=%d",
                self.metrics.overview_pages_visited,
                self.metrics.price_history_inserted,
                self.metrics.price_changes_detected,
                self.metrics.listings_updated,
                extra=self.log_extra,
            )
            page += 1

    async def process_items(self, items, page: int) -> None:
        now = datetime.now(timezone.utc)
        existing = ingest.existing_listings_by_platform_id([item.id for item in items])

        intents: List[WriteIntent] = []
        changes = 0
        updated: Dict[int, float] = {}
        for item in items:
            row = existing.get(item.id)
            if row is None:
                # sweep never creates listings
                continue
            if item.price is None or not math.isfinite(item.price):
                continue
            if row.id in updated:
                continue
            if row.price is not None and row.price != item.price:
                changes += 1
            updated[row.id] = item.price
            intents.append(
                UpdateRows(
                    models.Listing,
                    {"id": row.id},
                    {"last_seen_at": now, "last_scraped_at": now, "price": item.price, "is_active": True},
                )
            )
            intents.append(ingest.price_history_intent(row.id, item.price, now))

        await self.writer.apply("sweep.page.batch", intents, page=page)
        self.metrics.listings_updated += len(updated)
        self.metrics.price_history_inserted += len(updated)
        self.metrics.price_changes_detected += changes


async def run_sweep(**kwargs) -> Dict[str, object]:
    return await SweepOrchestrator(**kwargs).run_job()
