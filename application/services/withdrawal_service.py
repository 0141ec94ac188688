"""
提现应用服务 - 申请冻结、审核、拒绝解冻与打款完成
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from application.dto import CurrentUser
from application.ports.events import EventPublisherPort
from application.ports.lock import DistributedLockPort
from application.services.access import require_admin, require_club_operator
from application.services.account_service import account_lock_key, ensure_account, load_account
from core.config import LedgerSettings, settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import generate_business_no, to_money, utcnow
from domain.payment.events import WithdrawalCompleted
from domain.withdrawal.entity import Withdrawal, WithdrawalStatus

logger = get_logger(__name__)


class WithdrawalService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        lock: DistributedLockPort,
        publisher: EventPublisherPort,
        *,
        ledger: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._lock = lock
        self._publisher = publisher
        self._ledger = ledger or settings.ledger
        self._clock = clock

    async def create_withdrawal(self, actor: CurrentUser, club_id: int, amount: Decimal) -> Withdrawal:
        """
        申请提现

        申请金额从可用余额冻结，审核拒绝时解冻；手续费按费率从申请金额中扣除。
        """
        amount = to_money(amount)
        if amount < self._ledger.min_withdrawal:
            raise DomainValidationException(
                f"提现金额不能低于 {self._ledger.min_withdrawal}",
                field="amount",
                details={"min_withdrawal": str(self._ledger.min_withdrawal)},
            )
        fee = to_money(amount * Decimal(self._ledger.withdrawal_fee_rate))
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
        await ensure_account(self._uow_factory, club_id)

        async def _create() -> Withdrawal:
            now = self._clock()
            async with self._uow_factory() as uow:
                account = await load_account(uow, club_id)
                if not account.has_bank_details:
                    raise DomainValidationException("请先设置提现银行账户", field="bank_account")
                if amount > account.available_balance:
                    raise DomainValidationException(
                        "可用余额不足",
                        field="amount",
                        details={"available": str(account.available_balance), "amount": str(amount)},
                    )

                account.freeze(amount)
                await uow.account_repository.update(account)
                return await uow.withdrawal_repository.create(
                    Withdrawal(
                        id=None,
                        withdrawal_no=generate_business_no("WD", now=now),
                        club_id=club_id,
                        account_id=account.id,
                        amount=amount,
                        fee=fee,
                        actual_amount=amount - fee,
                        applicant_id=actor.id,
                        bank_name=account.bank_name,
                        bank_account_encrypted=account.bank_account_encrypted,
                        account_name=account.account_name,
                    )
                )

        withdrawal = await self._lock.with_lock(account_lock_key(club_id), _create)
        logger.info(
            "withdrawal_created",
            withdrawal_no=withdrawal.withdrawal_no,
            club_id=club_id,
            amount=str(withdrawal.amount),
            fee=str(withdrawal.fee),
        )
        return withdrawal

    async def _get(self, uow: AbstractUnitOfWork, withdrawal_id: int) -> Withdrawal:
        withdrawal = await uow.withdrawal_repository.get_by_id(withdrawal_id)
        if not withdrawal:
            raise NotFoundException("Withdrawal", withdrawal_id)
        return withdrawal

    async def approve_withdrawal(self, actor: CurrentUser, withdrawal_id: int) -> Withdrawal:
        require_admin(actor)
        now = self._clock()
        async with self._uow_factory() as uow:
            withdrawal = await self._get(uow, withdrawal_id)
            withdrawal.require_status(WithdrawalStatus.PENDING, action="审核")
            if not await uow.withdrawal_repository.transition(
                withdrawal.id, [WithdrawalStatus.PENDING], WithdrawalStatus.APPROVED,
                reviewed_by=actor.id, reviewed_at=now,
            ):
                raise InvalidStateException("提现申请已被处理", current_status=withdrawal.status)
            withdrawal = await self._get(uow, withdrawal_id)

        logger.info("withdrawal_approved", withdrawal_no=withdrawal.withdrawal_no, reviewer_id=actor.id)
        return withdrawal

    async def reject_withdrawal(self, actor: CurrentUser, withdrawal_id: int, reason: str) -> Withdrawal:
        """拒绝提现并解冻申请金额（待审核或已审核未打款均可拒绝）"""
        require_admin(actor)
        async with self._uow_factory(readonly=True) as uow:
            club_id = (await self._get(uow, withdrawal_id)).club_id

        async def _reject() -> Withdrawal:
            now = self._clock()
            async with self._uow_factory() as uow:
                withdrawal = await self._get(uow, withdrawal_id)
                withdrawal.require_status(WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED, action="拒绝")
                account = await load_account(uow, club_id)
                account.unfreeze(withdrawal.amount)
                if not await uow.withdrawal_repository.transition(
                    withdrawal.id, [withdrawal.status], WithdrawalStatus.REJECTED,
                    reject_reason=reason, reviewed_by=actor.id, reviewed_at=now,
                ):
                    raise InvalidStateException("提现申请已被处理", current_status=withdrawal.status)
                await uow.account_repository.update(account)
                return await self._get(uow, withdrawal_id)

        withdrawal = await self._lock.with_lock(account_lock_key(club_id), _reject)
        logger.info("withdrawal_rejected", withdrawal_no=withdrawal.withdrawal_no, reviewer_id=actor.id)
        return withdrawal

    async def complete_withdrawal(self, actor: CurrentUser, withdrawal_id: int) -> Withdrawal:
        """线下打款完成：扣减余额与冻结金额并记 WITHDRAWAL 流水"""
        require_admin(actor)
        async with self._uow_factory(readonly=True) as uow:
            club_id = (await self._get(uow, withdrawal_id)).club_id

        async def _complete() -> Withdrawal:
            now = self._clock()
            async with self._uow_factory() as uow:
                withdrawal = await self._get(uow, withdrawal_id)
                withdrawal.require_status(WithdrawalStatus.APPROVED, action="确认打款")
                account = await load_account(uow, club_id)
                row = account.settle_withdrawal(withdrawal.amount, withdrawal_id=withdrawal.id)
                if not await uow.withdrawal_repository.transition(
                    withdrawal.id, [WithdrawalStatus.APPROVED], WithdrawalStatus.COMPLETED,
                    transferred_at=now,
                ):
                    raise InvalidStateException("提现申请已被处理", current_status=withdrawal.status)
                await uow.account_repository.update(account)
                await uow.transaction_repository.append(row)
                return await self._get(uow, withdrawal_id)

        withdrawal = await self._lock.with_lock(account_lock_key(club_id), _complete)
        logger.info(
            "withdrawal_completed",
            withdrawal_no=withdrawal.withdrawal_no,
            club_id=club_id,
            amount=str(withdrawal.amount),
        )
        await self._publisher.publish(
            WithdrawalCompleted(withdrawal_id=withdrawal.id, club_id=club_id, amount=str(withdrawal.amount))
        )
        return withdrawal

    async def get_withdrawal(self, actor: CurrentUser, club_id: int, withdrawal_id: int) -> Withdrawal:
        """提现详情；提现单必须属于路径中的俱乐部"""
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            withdrawal = await self._get(uow, withdrawal_id)
        if withdrawal.club_id != club_id:
            raise ForbiddenException("无权访问该提现记录", details={"withdrawal_id": withdrawal_id})
        return withdrawal

    async def list_withdrawals(
        self,
        actor: CurrentUser,
        club_id: int,
        status: Optional[WithdrawalStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Withdrawal]:
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            return await uow.withdrawal_repository.list_withdrawals(
                club_id=club_id, status=status, skip=skip, limit=limit
            )

    async def list_pending_withdrawals(self, actor: CurrentUser, skip: int = 0, limit: int = 20) -> List[Withdrawal]:
        require_admin(actor)
        async with self._uow_factory(readonly=True) as uow:
            return await uow.withdrawal_repository.list_withdrawals(
                status=WithdrawalStatus.PENDING, skip=skip, limit=limit
            )
