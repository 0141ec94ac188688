"""
组合根：装配资金链路的各应用服务

API 进程在 lifespan 中构建一次并挂到 app.state；Celery 任务每次运行构建一份
（独立的数据库引擎与 Redis 连接，随事件循环一起关闭）。
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional

from redis import asyncio as aioredis

from application.ports.events import EventPublisherPort
from application.ports.payment_gateway import PaymentGateway
from application.services.account_service import AccountService
from application.services.enrollment_service import EnrollmentService
from application.services.order_service import OrderService
from application.services.payment_service import PaymentService
from application.services.refund_service import RefundService
from application.services.settlement_service import SettlementService
from application.services.withdrawal_service import WithdrawalService
from core.config import settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import utcnow
from domain.order.verify_code import VerifyCodeSigner
from infrastructure.database import build_engine, build_session_factory
from infrastructure.events import InMemoryEventPublisher, RedisEventPublisher
from infrastructure.external.cache import RedisClient, RedisDistributedLock
from infrastructure.external.payments import get_payment_gateway
from infrastructure.security import BankAccountCipher
from infrastructure.unit_of_work import sqlalchemy_uow_factory

logger = get_logger(__name__)


@dataclass
class LedgerServices:
    enrollments: EnrollmentService
    orders: OrderService
    payments: PaymentService
    refunds: RefundService
    settlements: SettlementService
    accounts: AccountService
    withdrawals: WithdrawalService
    publisher: EventPublisherPort
    lock: RedisDistributedLock

    async def aclose(self) -> None:
        await self.payments.aclose()
        await self.publisher.aclose()


def build_publisher(redis_client: Optional[RedisClient] = None) -> EventPublisherPort:
    kind = (settings.EVENT_PUBLISHER or "memory").lower()
    if kind == "redis" and redis_client is not None:
        return RedisEventPublisher(redis_client)
    if kind == "redis":
        logger.warning("event_publisher_redis_unavailable", message="falling back to in-memory publisher")
    return InMemoryEventPublisher()


def build_services(
    *,
    redis: aioredis.Redis,
    namespace: Optional[str] = None,
    uow_factory: Optional[Callable[..., AbstractUnitOfWork]] = None,
    gateway: Optional[PaymentGateway] = None,
    publisher: Optional[EventPublisherPort] = None,
    clock: Callable[[], datetime] = utcnow,
) -> LedgerServices:
    ledger = settings.ledger
    uow_factory = uow_factory or sqlalchemy_uow_factory()
    namespace = settings.redis.namespace if namespace is None else namespace
    lock = RedisDistributedLock(redis, namespace=namespace, defaults=ledger.lock)
    publisher = publisher or build_publisher(RedisClient(redis, namespace))
    gateway = gateway or get_payment_gateway()
    signer = VerifyCodeSigner(ledger.verify_secret, max_age=timedelta(days=ledger.verify_code_max_age_days))

    services = LedgerServices(
        enrollments=EnrollmentService(uow_factory, lock, publisher, clock=clock),
        orders=OrderService(uow_factory, lock, publisher, signer, ledger=ledger, clock=clock),
        payments=PaymentService(uow_factory, lock, gateway, publisher, signer, clock=clock),
        refunds=RefundService(uow_factory, gateway, publisher, ledger=ledger, clock=clock),
        settlements=SettlementService(uow_factory, lock, publisher, ledger=ledger, clock=clock),
        accounts=AccountService(uow_factory, lock, BankAccountCipher(), ledger=ledger, clock=clock),
        withdrawals=WithdrawalService(uow_factory, lock, publisher, ledger=ledger, clock=clock),
        publisher=publisher,
        lock=lock,
    )
    logger.info("ledger_services_built", provider=gateway.provider, publisher=type(publisher).__name__)
    return services


@asynccontextmanager
async def worker_services() -> AsyncIterator[LedgerServices]:
    """Celery 任务专用：每次 asyncio.run 使用独立的连接池"""
    if not settings.redis.url:
        raise RuntimeError("REDIS__URL 未配置，后台任务需要分布式锁")
    engine = build_engine(settings.database.url, echo=settings.database.echo)
    redis = aioredis.from_url(settings.redis.url, encoding="utf-8", decode_responses=True)
    services = build_services(
        redis=redis,
        uow_factory=sqlalchemy_uow_factory(build_session_factory(engine)),
    )
    try:
        yield services
    finally:
        await services.aclose()
        await redis.aclose()
        await engine.dispose()
