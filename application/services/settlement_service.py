"""
结算应用服务 - 活动结束后把收款净额结算入俱乐部账户

结算分两步：先在活动锁内生成 PENDING 结算单（每个活动至多一张），
再在账户锁内入账并将结算单置为 COMPLETED。入账失败时结算单保持 PENDING，
由定时任务重试。
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from application.dto import CurrentUser, SettlementStatsDTO
from application.ports.events import EventPublisherPort
from application.ports.lock import IN_PROGRESS, DistributedLockPort
from application.services.access import require_admin, require_club_operator
from application.services.account_service import account_lock_key, ensure_account, load_account
from core.config import LedgerSettings, settings
from core.logging_config import get_logger
from domain.activity.entity import ActivityStatus
from domain.common.exceptions import (
    InvalidStateException,
    InvariantViolationException,
    NotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import ZERO, generate_business_no, utcnow
from domain.order.entity import OrderStatus
from domain.payment.events import SettlementCompleted
from domain.settlement.entity import Settlement, SettlementStatus, compute_settlement

logger = get_logger(__name__)

# 计入收款总额的订单状态；退款以已完成退款单的金额扣减
SETTLEABLE_ORDER_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.REFUNDED)


class SettlementService:
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

    async def settle_activity(self, activity_id: int) -> Settlement:
        """
        结算单个活动

        已完成的结算原样返回；存在处理中的退款时拒绝结算，等待退款落定。
        """

        async def _create() -> Settlement:
            now = self._clock()
            async with self._uow_factory() as uow:
                activity = await uow.activity_repository.get_by_id(activity_id)
                if not activity:
                    raise NotFoundException("Activity", activity_id)
                if activity.status != ActivityStatus.COMPLETED:
                    raise InvalidStateException("活动尚未结束，无法结算", current_status=activity.status)

                existing = await uow.settlement_repository.get_by_activity(activity_id)
                if existing:
                    return existing

                refunding = await uow.order_repository.list_by_activity(activity_id, [OrderStatus.REFUNDING])
                if refunding:
                    raise InvalidStateException(
                        "活动存在处理中的退款，暂不能结算",
                        details={"activity_id": activity_id, "refunding_orders": len(refunding)},
                    )

                orders = await uow.order_repository.list_by_activity(activity_id, SETTLEABLE_ORDER_STATUSES)
                total = sum((o.total_amount for o in orders), ZERO)
                refund_total, refund_count = await uow.refund_repository.sum_completed_for_activity(activity_id)
                fee_rate = Decimal(self._ledger.platform_fee_rate)
                figures = compute_settlement(total, refund_total, fee_rate)

                settlement = await uow.settlement_repository.create(
                    Settlement(
                        id=None,
                        settlement_no=generate_business_no("ST", now=now),
                        activity_id=activity_id,
                        club_id=activity.club_id,
                        total_amount=figures.total_amount,
                        refund_amount=figures.refund_amount,
                        platform_fee=figures.platform_fee,
                        settle_amount=figures.settle_amount,
                        commission_detail={
                            "order_count": len(orders),
                            "refund_count": refund_count,
                            "fee_rate": str(fee_rate),
                            "net_amount": str(figures.net_amount),
                        },
                    )
                )
            logger.info(
                "settlement_created",
                settlement_no=settlement.settlement_no,
                activity_id=activity_id,
                total=str(settlement.total_amount),
                refund=str(settlement.refund_amount),
                fee=str(settlement.platform_fee),
                settle=str(settlement.settle_amount),
            )
            return settlement

        settlement = await self._lock.with_lock(
            f"settlement:activity:{activity_id}",
            _create,
            ttl_ms=self._ledger.lock.settlement_ttl_ms,
        )
        if settlement.is_completed:
            return settlement
        return await self.execute_settlement(settlement.id)

    async def execute_settlement(self, settlement_id: int) -> Settlement:
        """PENDING 结算单入账；并发执行时后来者直接返回当前状态"""
        outcome = await self._lock.try_with_lock(
            f"settlement:execute:{settlement_id}",
            lambda: self._execute(settlement_id),
            ttl_ms=self._ledger.lock.settlement_ttl_ms,
        )
        if outcome is IN_PROGRESS:
            logger.info("settlement_execution_in_progress", settlement_id=settlement_id)
            async with self._uow_factory(readonly=True) as uow:
                return await uow.settlement_repository.get_by_id(settlement_id)
        return outcome

    async def _execute(self, settlement_id: int) -> Settlement:
        async with self._uow_factory(readonly=True) as uow:
            settlement = await uow.settlement_repository.get_by_id(settlement_id)
        if not settlement:
            raise NotFoundException("Settlement", settlement_id)
        if settlement.is_completed:
            return settlement

        await ensure_account(self._uow_factory, settlement.club_id)

        async def _post() -> Settlement:
            now = self._clock()
            async with self._uow_factory() as uow:
                # 入账、结算单状态与订单完结同一事务
                account = await load_account(uow, settlement.club_id)
                rows = account.credit_settlement(
                    settlement.net_amount,
                    settlement.platform_fee,
                    settlement_id=settlement.id,
                    description=f"活动结算 {settlement.settlement_no}",
                )
                if not await uow.settlement_repository.mark_completed(settlement.id, now):
                    raise InvariantViolationException(
                        "结算单状态已变化，入账已回滚",
                        details={"settlement_no": settlement.settlement_no},
                    )
                await uow.account_repository.update(account)
                for row in rows:
                    await uow.transaction_repository.append(row)

                paid = await uow.order_repository.list_by_activity(settlement.activity_id, [OrderStatus.PAID])
                for order in paid:
                    await uow.order_repository.transition(order.id, [OrderStatus.PAID], OrderStatus.COMPLETED)
                return await uow.settlement_repository.get_by_id(settlement.id)

        completed = await self._lock.with_lock(account_lock_key(settlement.club_id), _post)
        logger.info(
            "settlement_completed",
            settlement_no=completed.settlement_no,
            club_id=completed.club_id,
            settle_amount=str(completed.settle_amount),
        )
        await self._publisher.publish(
            SettlementCompleted(
                settlement_id=completed.id,
                activity_id=completed.activity_id,
                club_id=completed.club_id,
                settle_amount=str(completed.settle_amount),
            )
        )
        return completed

    async def auto_settle(self) -> dict[str, int]:
        """定时任务入口：结算结束超过延迟期的活动，并重试卡在 PENDING 的结算单"""
        now = self._clock()
        cutoff = now - timedelta(hours=self._ledger.settlement_delay_hours)
        batch = self._ledger.settlement_batch_size
        async with self._uow_factory(readonly=True) as uow:
            activities = await uow.activity_repository.list_unsettled_completed(cutoff, batch)
            stuck = await uow.settlement_repository.list_by_status(SettlementStatus.PENDING, limit=batch)

        summary = {"settled": 0, "retried": 0, "failed": 0}
        for activity in activities:
            try:
                await self.settle_activity(activity.id)
                summary["settled"] += 1
            except Exception as exc:
                summary["failed"] += 1
                logger.error("auto_settle_failed", activity_id=activity.id, error=str(exc))

        for settlement in stuck:
            try:
                result = await self.execute_settlement(settlement.id)
                if result.is_completed:
                    summary["retried"] += 1
            except Exception as exc:
                summary["failed"] += 1
                logger.error("settlement_retry_failed", settlement_no=settlement.settlement_no, error=str(exc))

        if activities or stuck:
            logger.info("auto_settle_finished", **summary)
        return summary

    async def get_settlement(self, actor: CurrentUser, settlement_id: int) -> Settlement:
        async with self._uow_factory(readonly=True) as uow:
            settlement = await uow.settlement_repository.get_by_id(settlement_id)
            if not settlement:
                raise NotFoundException("Settlement", settlement_id)
            await require_club_operator(uow, settlement.club_id, actor)
        return settlement

    async def list_club_settlements(
        self, actor: CurrentUser, club_id: int, skip: int = 0, limit: int = 20
    ) -> List[Settlement]:
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            return await uow.settlement_repository.list_by_club(club_id, skip=skip, limit=limit)

    async def get_pending_settlement_stats(self, actor: CurrentUser) -> SettlementStatsDTO:
        require_admin(actor)
        cutoff = self._clock() - timedelta(hours=self._ledger.settlement_delay_hours)
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.settlement_repository.count_by_status(SettlementStatus.PENDING)
            completed = await uow.settlement_repository.count_by_status(SettlementStatus.COMPLETED)
            awaiting = await uow.activity_repository.count_unsettled_completed(cutoff)
        return SettlementStatsDTO(
            pending_settlements=pending,
            completed_settlements=completed,
            awaiting_activities=awaiting,
        )
