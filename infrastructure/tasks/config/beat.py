"""Celery beat schedule for the ledger sweeps.

Intervals follow `settings.ledger.scheduler`; the in-process LedgerScheduler
(APScheduler) uses the same values.
"""
from __future__ import annotations

from core.config import settings

_scheduler = settings.ledger.scheduler

CELERY_BEAT_SCHEDULE = {
    "cancel-expired-orders": {
        "task": "ledger.cancel_expired_orders",
        "schedule": _scheduler.order_expiry_interval_seconds,
        "options": {"queue": "ledger"},
    },
    "auto-settle": {
        "task": "ledger.auto_settle",
        "schedule": _scheduler.settlement_interval_seconds,
    },
}
