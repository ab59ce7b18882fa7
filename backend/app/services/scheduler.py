"""Maps scheduler triggers to crawl jobs and runs them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from backend.app.core.settings import settings
from backend.app.services.discovery import run_discovery
from backend.app.services.fetcher import Fetcher
from backend.app.services.sweep import run_sweep
from backend.app.services.verification import run_verification

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[3]

JobRunner = Callable[..., Awaitable[Dict[str, Any]]]

JOBS: Dict[str, JobRunner] = {
    "discovery": run_discovery,
    "sweep": run_sweep,
    "verification": run_verification,
}


@dataclass(frozen=True)
class Schedule:
    job: str
    cron: str


def load_schedules(path: Optional[str] = None) -> List[Schedule]:
    schedule_path = Path(path or settings.schedules_path)
    if not schedule_path.is_absolute():
        schedule_path = REPO_ROOT / schedule_path
    with schedule_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    schedules: List[Schedule] = []
    seen_crons: Set[str] = set()
    for entry in raw.get("schedules", []):
        job = str(entry["job"]).strip()
        cron = " ".join(str(entry["cron"]).split())
        if job not in JOBS:
            raise ValueError(f"Unknown job {job!r} in {schedule_path}")
        if cron in seen_crons:
            raise ValueError(f"Cron expression {cron!r} is mapped to more than one job")
        seen_crons.add(cron)
        schedules.append(Schedule(job=job, cron=cron))
    return schedules


class JobDispatcher:
    """Resolves a trigger (job name or cron expression) to exactly one job.

    All jobs launched through one dispatcher share a single :class:`Fetcher`,
    so the fetch concurrency ceiling holds across overlapping runs.
    """

    def __init__(self, schedules: Optional[List[Schedule]] = None, fetcher: Optional[Fetcher] = None):
        self.schedules = schedules if schedules is not None else load_schedules()
        self.fetcher = fetcher or Fetcher()
        self._tasks: Set[asyncio.Task] = set()

    def resolve_trigger(self, trigger: str) -> Optional[str]:
        key = " ".join(trigger.split())
        if key in JOBS:
            return key
        for schedule in self.schedules:
            if schedule.cron == key:
                return schedule.job
        return None

    async def run(self, job: str) -> Dict[str, Any]:
        return await JOBS[job](fetcher=self.fetcher)

    def dispatch(self, trigger: str) -> Optional[asyncio.Task]:
        """Start the job for ``trigger`` in the background and return its task."""
        job = self.resolve_trigger(trigger)
        if job is None:
            logger.warning("unknown trigger %r", trigger)
            return None
        logger.info("dispatching job=%s trigger=%r", job, trigger, extra={"job": job})
        task = asyncio.create_task(self.run(job), name=f"scrape-{job}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def run_trigger(self, trigger: str) -> Optional[Dict[str, Any]]:
        job = self.resolve_trigger(trigger)
        if job is None:
            logger.warning("unknown trigger %r", trigger)
            return None
        return await self.run(job)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def build_scheduler(self) -> AsyncIOScheduler:
        # Jobs are awaited on the loop; max_instances=1 forbids overlapping runs of one job.
        scheduler = AsyncIOScheduler(timezone="UTC")
        for schedule in self.schedules:
            scheduler.add_job(
                self.run_trigger,
                CronTrigger.from_crontab(schedule.cron, timezone="UTC"),
                args=[schedule.cron],
                id=schedule.job,
                name=f"{schedule.job} ({schedule.cron})",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        logger.info("scheduler configured jobs=%s", ", ".join(f"{s.job}={s.cron}" for s in self.schedules))
        return scheduler

    async def aclose(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.fetcher.aclose()
