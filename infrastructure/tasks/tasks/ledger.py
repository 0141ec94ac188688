"""Ledger sweeps and payment compensation as Celery tasks"""
from __future__ import annotations

from celery import shared_task

from core.logging_config import get_logger
from ..utils.base_task import BaseTask, run_with_services

logger = get_logger(__name__)


@shared_task(name="ledger.cancel_expired_orders", base=BaseTask, ignore_result=False)
def cancel_expired_orders(limit: int = 500) -> dict:
    cancelled = run_with_services(lambda services: services.orders.cancel_expired_orders(limit=limit))
    return {"cancelled": cancelled}


@shared_task(name="ledger.auto_settle", base=BaseTask)
def auto_settle() -> dict:
    return run_with_services(lambda services: services.settlements.auto_settle())


@shared_task(
    name="payments.sync_status",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=30,
)
def sync_payment_status(self, order_id: int) -> dict:
    """回调丢失时的补偿：主动查询网关并按结果推进订单"""
    try:
        result = run_with_services(lambda services: services.payments.sync_payment_status(order_id))
    except Exception as exc:
        logger.error("payment_status_sync_failed", order_id=order_id, error=str(exc))
        raise self.retry(exc=exc)
    logger.info("payment_status_synced", order_id=order_id, status=result.status, updated=result.updated)
    return result.model_dump()
