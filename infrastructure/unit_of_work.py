"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

import inspect
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.account_repository import (
    SQLAlchemyClubAccountRepository,
    SQLAlchemyTransactionRepository,
)
from infrastructure.repositories.activity_repository import (
    SQLAlchemyActivityRepository,
    SQLAlchemyClubRepository,
)
from infrastructure.repositories.enrollment_repository import SQLAlchemyEnrollmentRepository
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payment_repository import (
    SQLAlchemyPaymentRepository,
    SQLAlchemyRefundRepository,
)
from infrastructure.repositories.settlement_repository import SQLAlchemySettlementRepository
from infrastructure.repositories.withdrawal_repository import SQLAlchemyWithdrawalRepository

_REPOSITORIES = {
    "activity_repository": SQLAlchemyActivityRepository,
    "club_repository": SQLAlchemyClubRepository,
    "enrollment_repository": SQLAlchemyEnrollmentRepository,
    "order_repository": SQLAlchemyOrderRepository,
    "payment_repository": SQLAlchemyPaymentRepository,
    "refund_repository": SQLAlchemyRefundRepository,
    "settlement_repository": SQLAlchemySettlementRepository,
    "account_repository": SQLAlchemyClubAccountRepository,
    "transaction_repository": SQLAlchemyTransactionRepository,
    "withdrawal_repository": SQLAlchemyWithdrawalRepository,
}


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work：一个 async with 块 = 一个会话 + 一个事务"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        for name, repo_cls in _REPOSITORIES.items():
            setattr(self, name, repo_cls(self.session))
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            for name in _REPOSITORIES:
                setattr(self, name, None)

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def sqlalchemy_uow_factory(
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
) -> Callable[..., SQLAlchemyUnitOfWork]:
    """构造 uow_factory：`factory()` 或 `factory(readonly=True)`"""

    def _factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return _factory
