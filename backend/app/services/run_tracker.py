from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import select

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.ingest import ensure_utc


@dataclass(frozen=True)
class StartedRun:
    id: int
    started_at: datetime


@dataclass(frozen=True)
class LastRun:
    id: int
    started_at: Optional[datetime]
    last_overview_page: Optional[int]


class RunTracker:
    """Persists one ScrapeRun row per job execution."""

    def start_run(self, run_type: str) -> StartedRun:
        if run_type not in models.RUN_TYPES:
            raise ValueError(f"Unknown run type {run_type!r}")
        started_at = datetime.now(timezone.utc)
        with session_scope() as session:
            run = models.ScrapeRun(type=run_type, status="running", started_at=started_at)
            session.add(run)
            session.flush()
            return StartedRun(id=run.id, started_at=started_at)

    def update_run(self, run_id: int, metrics: Mapping[str, Any]) -> None:
        """Merge metric fields into the run row (progress checkpoint)."""
        unknown = set(metrics) - set(models.RUN_METRIC_FIELDS)
        if unknown:
            raise ValueError(f"Unknown run metrics: {sorted(unknown)}")
        if not run_id or not metrics:
            return
        with session_scope() as session:
            run = session.get(models.ScrapeRun, run_id)
            if not run:
                return
            for key, value in metrics.items():
                setattr(run, key, value)

    def finish_run(
        self,
        run_id: int,
        started_at: datetime,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        if status not in ("success", "error"):
            raise ValueError(f"Invalid terminal status {status!r}")
        finished_at = datetime.now(timezone.utc)
        with session_scope() as session:
            run = session.get(models.ScrapeRun, run_id)
            if not run:
                return
            run.status = status
            run.finished_at = finished_at
            run.duration_ms = int((finished_at - ensure_utc(started_at)).total_seconds() * 1000)
            run.error_message = error_message

    def get_last_run_of_type(self, run_type: str, *, exclude_id: Optional[int] = None) -> Optional[LastRun]:
        with session_scope() as session:
            stmt = select(models.ScrapeRun).where(models.ScrapeRun.type == run_type)
            if exclude_id is not None:
                stmt = stmt.where(models.ScrapeRun.id != exclude_id)
            stmt = stmt.order_by(models.ScrapeRun.started_at.desc(), models.ScrapeRun.id.desc()).limit(1)
            run = session.execute(stmt).scalars().first()
            if run is None:
                return None
            return LastRun(
                id=run.id,
                started_at=ensure_utc(run.started_at) if run.started_at else None,
                last_overview_page=run.last_overview_page,
            )
