from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.errors import format_error
from backend.app.core.settings import settings
from backend.app.services.batch_writer import BatchWriter
from backend.app.services.fetcher import Fetcher
from backend.app.services.run_tracker import RunTracker, StartedRun

logger = logging.getLogger(__name__)


@dataclass
class RunMetrics:
    overview_pages_visited: Optional[int] = None
    detail_pages_fetched: Optional[int] = None
    listings_discovered: Optional[int] = None
    listings_updated: Optional[int] = None
    listings_verified: Optional[int] = None
    listings_not_found: Optional[int] = None
    price_history_inserted: Optional[int] = None
    price_changes_detected: Optional[int] = None
    last_overview_page: Optional[int] = None

    def as_dict(self) -> Dict[str, int]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class ScrapeOrchestrator:
    """Shared run lifecycle for the crawl jobs.

    Subclasses implement :meth:`execute`; this class opens the ScrapeRun row,
    checkpoints metrics and finalizes the run exactly once.
    """

    run_type: str = ""

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        *,
        tracker: Optional[RunTracker] = None,
        writer: Optional[BatchWriter] = None,
        platform: Optional[str] = None,
    ):
        self.fetcher = fetcher or Fetcher()
        self._owns_fetcher = fetcher is None
        self.tracker = tracker or RunTracker()
        self.writer = writer or BatchWriter()
        self.platform = platform or settings.platform
        self.metrics = RunMetrics()
        self.run: Optional[StartedRun] = None

    @property
    def log_extra(self) -> Dict[str, Any]:
        return {"job": self.run_type, "run_id": self.run.id if self.run else None}

    async def run_job(self) -> Dict[str, Any]:
        await self.prepare()
        self.run = await self.writer.run(
            "scrape_runs.start_run", lambda: self.tracker.start_run(self.run_type), type=self.run_type
        )
        logger.info("%s start run_id=%s", self.run_type, self.run.id, extra=self.log_extra)

        status = "success"
        error_message: Optional[str] = None
        try:
            await self.execute()
        except Exception as exc:
            status = "error"
            error_message = format_error(exc)
            logger.error("%s error run_id=%s %s", self.run_type, self.run.id, error_message, extra=self.log_extra)
        finally:
            if self._owns_fetcher:
                await self.fetcher.aclose()

        await self.checkpoint()
        await self.writer.run(
            "scrape_runs.finish_run",
            lambda: self.tracker.finish_run(self.run.id, self.run.started_at, status, error_message),
            run_id=self.run.id,
            status=status,
        )
        logger.info(
            "%s done run_id=%s status=%s metrics=%s",
            self.run_type,
            self.run.id,
            status,
            self.metrics.as_dict(),
            extra=self.log_extra,
        )
        return {
            "run_id": self.run.id,
            "type": self.run_type,
            "status": status,
            "error_message": error_message,
            "started_at": self.run.started_at.isoformat(),
            "completed_at": datetime.now(timezone.utc).isoformat(),
            **self.metrics.as_dict(),
        }

    async def prepare(self) -> None:
        """Hook for work that must happen before the run row exists."""

    async def execute(self) -> None:
        raise NotImplementedError

    async def checkpoint(self) -> None:
        if not self.run:
            return
        metrics = self.metrics.as_dict()
        await self.writer.run(
            "scrape_runs.update_run",
            lambda: self.tracker.update_run(self.run.id, metrics),
            run_id=self.run.id,
        )
