import asyncio

import pytest

from backend.app.services import scheduler as scheduler_module
from backend.app.services.scheduler import JobDispatcher, Schedule, load_schedules
from backend.tests.services.fakes import FakeTransport, make_fetcher


def _dispatcher(fetcher=None):
    schedules = [
        Schedule(job="discovery", cron="*/30 * * * *"),
        Schedule(job="sweep", cron="0 */3 * * *"),
        Schedule(job="verification", cron="0 */6 * * *"),
    ]
    return JobDispatcher(schedules=schedules, fetcher=fetcher or make_fetcher(FakeTransport()))


def test_default_schedules_file_maps_each_cron_to_one_job():
    schedules = load_schedules()

    assert {s.job: s.cron for s in schedules} == {
        "discovery": "*/30 * * * *",
        "sweep": "0 */3 * * *",
        "verification": "0 */6 * * *",
    }


def test_load_schedules_rejects_unknown_job(tmp_path):
    path = tmp_path / "schedules.yaml"
    path.write_text("schedules:\n  - job: reindex\n    cron: '0 1 * * *'\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_schedules(str(path))


def test_load_schedules_rejects_shared_cron(tmp_path):
    path = tmp_path / "schedules.yaml"
    path.write_text(
        "schedules:\n"
        "  - job: sweep\n    cron: '0 */3 * * *'\n"
        "  - job: verification\n    cron: '0  */3 * * *'\n",
        encoding="utf-8",
    )

    with pytest.raises(ValueError):
        load_schedules(str(path))


def test_resolve_trigger_by_cron_or_name():
    dispatcher = _dispatcher()

    assert dispatcher.resolve_trigger("*/30 * * * *") == "discovery"
    assert dispatcher.resolve_trigger("0  */6 * * *") == "verification"
    assert dispatcher.resolve_trigger("sweep") == "sweep"
    assert dispatcher.resolve_trigger("5 4 * * *") is None


@pytest.mark.asyncio
async def test_dispatch_runs_job_detached_with_shared_fetcher(monkeypatch):
    seen = []
    started = asyncio.Event()

    async def fake_sweep(**kwargs):
        seen.append(kwargs["fetcher"])
        started.set()
        return {"status": "success"}

    monkeypatch.setitem(scheduler_module.JOBS, "sweep", fake_sweep)
    dispatcher = _dispatcher()

    task = dispatcher.dispatch("0 */3 * * *")

    assert task is not None
    assert not task.done()
    assert await task == {"status": "success"}
    assert started.is_set()
    assert seen == [dispatcher.fetcher]


@pytest.mark.asyncio
async def test_dispatch_unknown_trigger_returns_none(caplog):
    dispatcher = _dispatcher()

    assert dispatcher.dispatch("1 2 3 4 5") is None
    assert "unknown trigger" in caplog.text


@pytest.mark.asyncio
async def test_build_scheduler_registers_one_job_per_schedule():
    dispatcher = _dispatcher()

    scheduler = dispatcher.build_scheduler()

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {"discovery", "sweep", "verification"}
    assert jobs["sweep"].args == ("0 */3 * * *",)
    assert jobs["sweep"].max_instances == 1
    assert jobs["sweep"].coalesce is True


@pytest.mark.asyncio
async def test_aclose_waits_for_running_jobs(monkeypatch):
    finished = []

    async def slow_verification(**kwargs):
        await asyncio.sleep(0.01)
        finished.append(True)
        return {"status": "success"}

    monkeypatch.setitem(scheduler_module.JOBS, "verification", slow_verification)
    dispatcher = _dispatcher()

    dispatcher.dispatch("verification")
    await dispatcher.aclose()

    assert finished == [True]
