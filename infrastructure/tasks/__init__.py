"""Background job infrastructure.

`LedgerScheduler` (APScheduler) drives the sweeps inside the API process; the
Celery app exposes the same jobs to deployments that run a dedicated worker + beat.
"""
from .config.celery import celery_app
from .scheduler import LedgerScheduler, build_ledger_scheduler

__all__ = ["celery_app", "LedgerScheduler", "build_ledger_scheduler"]
