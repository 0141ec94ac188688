"""Celery application for the ledger sweeps and payment compensation.

Queues:
- ledger: order expiry and settlement sweeps (beat driven, single flight by lock)
- payments: gateway status compensation, may block on the provider
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)

celery_app = Celery("activity_ledger")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 完成后再 ack，worker 异常退出时任务可被重新投递；各任务自身幂等
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="ledger",
    task_default_retry_delay=5,
    # 清扫间隔内未完成即视为卡死
    task_soft_time_limit=settings.ledger.scheduler.settlement_interval_seconds,
    task_queues=(
        Queue("ledger"),
        Queue("payments"),
    ),
    task_routes={
        "ledger.*": {"queue": "ledger"},
        "payments.*": {"queue": "payments"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

environment = getattr(settings, "ENVIRONMENT", "production") or "production"
if environment.lower() in {"test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, beat_entries=sorted(CELERY_BEAT_SCHEDULE))
