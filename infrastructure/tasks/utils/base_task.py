"""Common base task for Celery jobs"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BaseTask(Task):
    """Unified success/failure logging for ledger jobs."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            args=args,
            kwargs=kwargs,
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            result=retval,
        )
        super().on_success(retval, task_id, args, kwargs)


def run_with_services(job: Callable[[Any], Awaitable[T]]) -> T:
    """在新的事件循环里装配服务并执行 job(services)"""
    from infrastructure.container import worker_services

    async def _run() -> T:
        async with worker_services() as services:
            return await job(services)

    return asyncio.run(_run())
