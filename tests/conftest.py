"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PAYMENT__DEFAULT_PROVIDER", "mock")

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest
import pytest_asyncio

from application.dto import CurrentUser
from domain.activity.entity import ActivityStatus, ClubRole
from infrastructure.container import build_services
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.events import InMemoryEventPublisher
from infrastructure.external.payments.mock_client import MockPaymentClient
from infrastructure.models.activity import ActivityModel, ClubMemberModel, ClubModel
from infrastructure.unit_of_work import sqlalchemy_uow_factory

NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


class FrozenClock:
    """可手动推进的时钟，注入各服务的 clock 参数"""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRedis:
    """进程内 Redis 替身：覆盖分布式锁与事件发布用到的命令"""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.published: list[tuple[str, Any]] = []

    async def set(self, key, value, nx=False, px=None, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def get(self, key):
        return self.store.get(key)

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def eval(self, script, numkeys, key, token, *args):
        if self.store.get(key) != token:
            return 0
        if "pexpire" in script:
            return 1
        del self.store[key]
        return 1

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    async def ping(self):
        return True

    async def aclose(self):
        return None


@dataclass
class Seeder:
    session_factory: Any

    async def club(self, owner_id: int = 100, *, admins: tuple[int, ...] = (), default_refund_policy=None) -> int:
        async with self.session_factory() as session:
            club = ClubModel(name="山野俱乐部", owner_id=owner_id, default_refund_policy=default_refund_policy)
            session.add(club)
            await session.flush()
            session.add(ClubMemberModel(club_id=club.id, user_id=owner_id, role=ClubRole.OWNER.value))
            for user_id in admins:
                session.add(ClubMemberModel(club_id=club.id, user_id=user_id, role=ClubRole.ADMIN.value))
            await session.commit()
            return club.id

    async def activity(
        self,
        club_id: int,
        *,
        price: str = "200.00",
        capacity: int = 10,
        starts_in_hours: float = 200,
        duration_hours: float = 48,
        status: ActivityStatus = ActivityStatus.PUBLISHED,
        insurance_daily_fee: Optional[str] = None,
        refund_policy: Optional[dict] = None,
        leader_id: Optional[int] = None,
    ) -> int:
        start = NOW + timedelta(hours=starts_in_hours)
        async with self.session_factory() as session:
            activity = ActivityModel(
                club_id=club_id,
                leader_id=leader_id,
                title="周末徒步",
                price=Decimal(price),
                capacity=capacity,
                start_time=start,
                end_time=start + timedelta(hours=duration_hours),
                status=status.value,
                insurance_daily_fee=Decimal(insurance_daily_fee) if insurance_daily_fee else None,
                refund_policy=refund_policy,
            )
            session.add(activity)
            await session.commit()
            return activity.id

    async def finish_activity(self, activity_id: int, *, ended_at: datetime) -> None:
        async with self.session_factory() as session:
            activity = await session.get(ActivityModel, activity_id)
            activity.status = ActivityStatus.COMPLETED.value
            activity.start_time = ended_at - timedelta(hours=48)
            activity.end_time = ended_at
            await session.commit()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return sqlalchemy_uow_factory(session_factory)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def gateway() -> MockPaymentClient:
    return MockPaymentClient()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest_asyncio.fixture
async def services(fake_redis, uow_factory, gateway, publisher, clock):
    services = build_services(
        redis=fake_redis,
        namespace="test",
        uow_factory=uow_factory,
        gateway=gateway,
        publisher=publisher,
        clock=clock,
    )
    yield services
    await services.aclose()


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(id=1, is_admin=True)


@pytest.fixture
def owner() -> CurrentUser:
    return CurrentUser(id=100)


@pytest.fixture
def place_paid_order(services):
    """报名 → 下单 → 模拟支付成功，返回已支付订单"""

    async def _place(user_id: int, activity_id: int):
        enrollment = await services.enrollments.create_enrollment(user_id, activity_id)
        order = await services.orders.create_order(user_id, enrollment.id)
        return await services.payments.mock_payment_success(user_id, order.id)

    return _place
