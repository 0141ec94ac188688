"""Unit of Work 抽象定义

一个 `async with uow:` 块对应一个原子操作：块内的多行写入要么全部提交，要么全部回滚。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.account.repository import ClubAccountRepository, TransactionRepository
from domain.activity.repository import ActivityRepository, ClubRepository
from domain.enrollment.repository import EnrollmentRepository
from domain.order.repository import OrderRepository
from domain.payment.repository import PaymentRepository
from domain.refund.repository import RefundRepository
from domain.settlement.repository import SettlementRepository
from domain.withdrawal.repository import WithdrawalRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    activity_repository: ActivityRepository
    club_repository: ClubRepository
    enrollment_repository: EnrollmentRepository
    order_repository: OrderRepository
    payment_repository: PaymentRepository
    refund_repository: RefundRepository
    settlement_repository: SettlementRepository
    account_repository: ClubAccountRepository
    transaction_repository: TransactionRepository
    withdrawal_repository: WithdrawalRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
