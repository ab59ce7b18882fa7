from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db import models
from backend.app.db.session import get_session
from backend.app.services.scheduler import JobDispatcher

MAX_RUNS = 100

router = APIRouter()


@lru_cache(maxsize=1)
def get_dispatcher() -> JobDispatcher:
    return JobDispatcher()


def _run_payload(run: models.ScrapeRun) -> dict:
    payload = {
        "id": run.id,
        "type": run.type,
        "status": run.status,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "duration_ms": run.duration_ms,
        "error_message": run.error_message,
    }
    for field in models.RUN_METRIC_FIELDS:
        payload[field] = getattr(run, field)
    return payload


@router.post("/triggers/{trigger:path}", status_code=202)
async def fire_trigger(
    trigger: str,
    background_tasks: BackgroundTasks,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Run the job mapped to ``trigger`` (job name or cron expression) after responding."""
    job = dispatcher.resolve_trigger(trigger)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Unknown trigger '{trigger}'")
    background_tasks.add_task(dispatcher.run, job)
    return {"job": job, "status": "accepted"}


@router.get("/runs/{run_id}")
async def run_detail(run_id: int, db: Session = Depends(get_session)):
    run = db.get(models.ScrapeRun, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return _run_payload(run)


@router.get("/runs")
async def list_runs(
    run_type: Optional[str] = Query(default=None, alias="type"),
    limit: int = Query(default=20, ge=1, le=MAX_RUNS),
    db: Session = Depends(get_session),
):
    stmt = select(models.ScrapeRun)
    if run_type:
        if run_type not in models.RUN_TYPES:
            raise HTTPException(status_code=400, detail=f"Unsupported run type '{run_type}'")
        stmt = stmt.where(models.ScrapeRun.type == run_type)
    stmt = stmt.order_by(models.ScrapeRun.started_at.desc(), models.ScrapeRun.id.desc()).limit(limit)
    runs = db.execute(stmt).scalars().all()
    return {"items": [_run_payload(run) for run in runs]}
