import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from types import SimpleNamespace

import pytest
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES

from core.config import SchedulerSettings
from infrastructure.tasks import LedgerScheduler, build_ledger_scheduler
from infrastructure.tasks.config import CELERY_BEAT_SCHEDULE


async def _noop(*args, **kwargs):
    return None


def test_ledger_sweeps_are_registered_as_single_instance_interval_jobs():
    services = SimpleNamespace(
        orders=SimpleNamespace(cancel_expired_orders=_noop),
        settlements=SimpleNamespace(auto_settle=_noop),
    )
    cfg = SchedulerSettings(order_expiry_interval_seconds=60, settlement_interval_seconds=3600)

    scheduler = build_ledger_scheduler(services, cfg)
    jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}

    assert set(jobs) == {"cancel_expired_orders", "auto_settle"}
    assert jobs["cancel_expired_orders"].trigger.interval == timedelta(seconds=60)
    assert jobs["auto_settle"].trigger.interval == timedelta(seconds=3600)
    for job in jobs.values():
        assert job.max_instances == 1
        assert job.coalesce is True
    assert not scheduler.running


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped_while_previous_is_active():
    release = asyncio.Event()
    calls = []
    skipped = []

    async def _sweep():
        calls.append(1)
        await release.wait()

    scheduler = LedgerScheduler()
    scheduler.add_interval_job("sweep", _sweep, seconds=0.05, run_immediately=True)
    scheduler.scheduler.add_listener(lambda event: skipped.append(event.job_id), EVENT_JOB_MAX_INSTANCES)
    scheduler.start()
    try:
        await asyncio.sleep(0.3)
        assert calls == [1]
        assert "sweep" in skipped
    finally:
        release.set()
        scheduler.shutdown(wait=True)
    assert not scheduler.running


@pytest.mark.asyncio
async def test_failing_job_keeps_being_scheduled():
    failures = []

    async def _boom():
        raise RuntimeError("db down")

    scheduler = LedgerScheduler()
    scheduler.add_interval_job("sweep", _boom, seconds=0.05, run_immediately=True)
    scheduler.scheduler.add_listener(lambda event: failures.append(event.exception), EVENT_JOB_ERROR)
    scheduler.start()
    try:
        await asyncio.sleep(0.3)
    finally:
        scheduler.shutdown(wait=True)

    assert len(failures) >= 2
    assert all(isinstance(exc, RuntimeError) for exc in failures)


@pytest.mark.asyncio
async def test_shutdown_stops_further_runs():
    runs = []

    async def _job():
        runs.append(1)

    scheduler = LedgerScheduler()
    scheduler.add_interval_job("sweep", _job, seconds=0.05, run_immediately=True)
    scheduler.start()
    await asyncio.sleep(0.2)
    scheduler.shutdown(wait=True)
    count = len(runs)
    assert count >= 2

    await asyncio.sleep(0.15)
    assert len(runs) == count
    # 重复关闭无副作用
    scheduler.shutdown()


def test_beat_schedule_covers_ledger_sweeps():
    assert CELERY_BEAT_SCHEDULE["cancel-expired-orders"]["task"] == "ledger.cancel_expired_orders"
    assert CELERY_BEAT_SCHEDULE["auto-settle"]["task"] == "ledger.auto_settle"


def test_celery_tasks_run_against_worker_services(monkeypatch):
    from infrastructure.tasks.tasks import ledger

    seen = {}

    async def _cancel_expired_orders(limit):
        seen["limit"] = limit
        return 3

    async def _auto_settle():
        return {"settled": 1, "retried": 0, "failed": 0}

    fake = SimpleNamespace(
        orders=SimpleNamespace(cancel_expired_orders=_cancel_expired_orders),
        settlements=SimpleNamespace(auto_settle=_auto_settle),
    )

    @asynccontextmanager
    async def _worker_services():
        yield fake

    monkeypatch.setattr("infrastructure.container.worker_services", _worker_services)

    assert ledger.cancel_expired_orders.run(limit=5) == {"cancelled": 3}
    assert seen["limit"] == 5
    assert ledger.auto_settle.run() == {"settled": 1, "retried": 0, "failed": 0}
