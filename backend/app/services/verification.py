"""Verification job: re-fetch stale active listings and mark the vanished ones."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import func

from backend.app.core.settings import settings
from backend.app.db import models
from backend.app.parsers.detail import parse_detail
from backend.app.services import ingest
from backend.app.services.batch_writer import UpdateRows
from backend.app.services.scrape_orchestrator import ScrapeOrchestrator

logger = logging.getLogger(__name__)


class VerificationOrchestrator(ScrapeOrchestrator):
    run_type = "verification"

    def __init__(
        self,
        *args,
        batch_size: Optional[int] = None,
        stale_after: Optional[timedelta] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.batch_size = batch_size or settings.verification_batch_size
        self.stale_after = stale_after or timedelta(hours=settings.verification_stale_hours)
        self.metrics.detail_pages_fetched = 0
        self.metrics.listings_verified = 0
        self.metrics.listings_not_found = 0

    async def execute(self) -> None:
        cutoff = datetime.now(timezone.utc) - self.stale_after
        candidates = await self.writer.run(
            "listings.verification_candidates",
            lambda: ingest.verification_candidates(cutoff, self.batch_size),
        )
        logger.info("verification candidates=%d", len(candidates), extra=self.log_extra)

        for candidate in candidates:
            found = await self.check(candidate)
            now = datetime.now(timezone.utc)
            if found:
                await self.mark_active(candidate.id, now)
                self.metrics.listings_verified += 1
            else:
                await self.mark_not_found(candidate.id, now)
                self.metrics.listings_not_found += 1
            await self.checkpoint()

    async def check(self, candidate: ingest.VerificationCandidate) -> bool:
        # Transport and parse failures count as not found.
        try:
            html = await self.fetcher.fetch_detail(candidate.url)
            self.metrics.detail_pages_fetched += 1
            return parse_detail(html) is not None
        except Exception as exc:
            logger.warning(
                "verification fetch failed listing=%s url=%s error=%s",
                candidate.id,
                candidate.url,
                exc,
                extra=self.log_extra,
            )
            return False

    async def mark_active(self, listing_id: int, now: datetime) -> None:
        await self.writer.apply(
            "listings.verify_active",
            [
                UpdateRows(
                    models.Listing,
                    {"id": listing_id},
                    {"last_verified_at": now, "verification_status": "active", "last_seen_at": now},
                )
            ],
            listing=listing_id,
        )

    async def mark_not_found(self, listing_id: int, now: datetime) -> None:
        await self.writer.apply(
            "listings.verify_not_found",
            [
                UpdateRows(
                    models.Listing,
                    {"id": listing_id},
                    {
                        "not_found_count": func.coalesce(models.Listing.not_found_count, 0) + 1,
                        "verification_status": "not_found",
                        "is_active": False,
                        "deactivated_at": now,
                        "last_verified_at": now,
                    },
                )
            ],
            listing=listing_id,
        )
        logger.info("verification not found listing=%s", listing_id, extra=self.log_extra)


async def run_verification(**kwargs) -> Dict[str, object]:
    return await VerificationOrchestrator(**kwargs).run_job()
