"""
进程内定时清扫（APScheduler AsyncIOScheduler）

FastAPI 生命周期内启动/停止。每个任务 max_instances=1：上一轮未结束时本轮跳过并记录日志；
coalesce=True：错过的多次触发只补跑一次。多实例部署时由分布式锁与条件更新保证结果正确，
这里只避免同进程内的重叠执行。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MAX_INSTANCES,
    JobEvent,
)
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import SchedulerSettings, settings
from core.logging_config import get_logger

logger = get_logger(__name__)

JOB_DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 30,
}


class LedgerScheduler:
    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults=dict(JOB_DEFAULTS),
            timezone="UTC",
        )
        self._scheduler.add_listener(
            self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES
        )

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def add_interval_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        seconds: float,
        *,
        run_immediately: bool = False,
    ) -> None:
        extra = {"next_run_time": datetime.now(timezone.utc)} if run_immediately else {}
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **extra,
        )

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info("ledger_scheduler_started", jobs=[job.id for job in self._scheduler.get_jobs()])

    def shutdown(self, wait: bool = True) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("ledger_scheduler_stopped")

    def _on_job_event(self, event: JobEvent) -> None:
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.info("scheduled_job_skipped", job=event.job_id, reason="previous_run_active")
        elif event.code == EVENT_JOB_ERROR:
            logger.error("scheduled_job_failed", job=event.job_id, error=str(event.exception))
        else:
            logger.debug("scheduled_job_finished", job=event.job_id, result=event.retval)


def build_ledger_scheduler(services: Any, cfg: Optional[SchedulerSettings] = None) -> LedgerScheduler:
    """注册超时关单与自动结算两项清扫"""
    cfg = cfg or settings.ledger.scheduler
    scheduler = LedgerScheduler()
    scheduler.add_interval_job(
        "cancel_expired_orders", services.orders.cancel_expired_orders, cfg.order_expiry_interval_seconds
    )
    scheduler.add_interval_job("auto_settle", services.settlements.auto_settle, cfg.settlement_interval_seconds)
    return scheduler
