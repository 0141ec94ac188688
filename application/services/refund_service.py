"""
退款应用服务 - 预览、申请、审批执行与拒绝

退款金额总是由服务端按策略重新计算，从不信任客户端传入的金额。
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Tuple

from application.dto import CurrentUser, RefundPreviewDTO
from application.dtos.payments import RefundRequest
from application.ports.events import EventPublisherPort
from application.ports.payment_gateway import PaymentGateway
from application.services.access import require_club_operator
from core.config import LedgerSettings, settings
from core.logging_config import get_logger
from domain.activity.entity import Activity
from domain.common.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import generate_business_no, to_minor_units, utcnow
from domain.enrollment.entity import EnrollmentStatus
from domain.order.entity import Order, OrderStatus
from domain.payment.events import RefundCompleted, RefundRejected
from domain.refund.entity import Refund, RefundStatus
from domain.refund.policy import RefundPolicy, RefundQuote, RefundTier

logger = get_logger(__name__)


def default_refund_policy(ledger: LedgerSettings) -> RefundPolicy:
    return RefundPolicy(
        [RefundTier(t.hours_before_start, t.refund_percent) for t in ledger.default_refund_tiers],
        ledger.default_no_refund_hours,
    )


class RefundService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        publisher: EventPublisherPort,
        *,
        ledger: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._publisher = publisher
        self._ledger = ledger or settings.ledger
        self._clock = clock

    async def _resolve_policy(self, uow: AbstractUnitOfWork, activity: Activity) -> RefundPolicy:
        """活动策略 → 俱乐部默认策略 → 平台默认策略"""
        if activity.refund_policy:
            return RefundPolicy.from_dict(activity.refund_policy)
        club = await uow.club_repository.get_by_id(activity.club_id)
        if club and club.default_refund_policy:
            return RefundPolicy.from_dict(club.default_refund_policy)
        return default_refund_policy(self._ledger)

    async def _quote(
        self, uow: AbstractUnitOfWork, user_id: int, order_id: int, now: datetime
    ) -> Tuple[Order, RefundQuote]:
        order = await uow.order_repository.get_by_id(order_id)
        if not order:
            raise NotFoundException("Order", order_id)
        if not order.belongs_to(user_id):
            raise ForbiddenException("无权操作此订单")
        order.require_status(OrderStatus.PAID, action="申请退款")
        if await uow.refund_repository.get_by_order_id(order.id):
            raise ConflictException("该订单已有退款申请", details={"order_no": order.order_no})

        activity = await uow.activity_repository.get_by_id(order.activity_id)
        if not activity:
            raise NotFoundException("Activity", order.activity_id)
        policy = await self._resolve_policy(uow, activity)
        return order, policy.quote(order.total_amount, activity.hours_until_start(now))

    async def preview_refund(self, user_id: int, order_id: int) -> RefundPreviewDTO:
        async with self._uow_factory(readonly=True) as uow:
            order, quote = await self._quote(uow, user_id, order_id, self._clock())
        return RefundPreviewDTO(
            order_id=order.id,
            refundable=quote.refundable,
            refund_percent=quote.refund_percent,
            refund_amount=quote.refund_amount,
            order_amount=order.total_amount,
            hours_until_start=round(quote.hours_until_start, 2),
            reason=quote.reason or f"可退款 {quote.refund_percent}%",
        )

    async def create_refund(self, user_id: int, order_id: int, reason: Optional[str] = None) -> Refund:
        """创建退款申请（PENDING）并将订单置为 REFUNDING，同一事务"""
        now = self._clock()
        async with self._uow_factory() as uow:
            order, quote = await self._quote(uow, user_id, order_id, now)
            if not quote.refundable:
                raise InvalidStateException(
                    quote.reason or "当前不可退款",
                    current_status=order.status,
                    details={"hours_until_start": round(quote.hours_until_start, 2)},
                )
            refund = await uow.refund_repository.create(
                Refund(
                    id=None,
                    refund_no=generate_business_no("RF", now=now),
                    order_id=order.id,
                    user_id=user_id,
                    activity_id=order.activity_id,
                    amount=quote.refund_amount,
                    refund_percent=quote.refund_percent,
                    reason=reason,
                )
            )
            if not await uow.order_repository.transition(order.id, [OrderStatus.PAID], OrderStatus.REFUNDING):
                current = await uow.order_repository.get_by_id(order.id)
                raise InvalidStateException("订单状态已变化", current_status=current.status)

        logger.info(
            "refund_created",
            refund_no=refund.refund_no,
            order_no=order.order_no,
            amount=str(refund.amount),
            percent=refund.refund_percent,
        )
        return refund

    async def _load_for_review(self, uow: AbstractUnitOfWork, refund_id: int, actor: CurrentUser) -> Refund:
        refund = await uow.refund_repository.get_by_id(refund_id)
        if not refund:
            raise NotFoundException("Refund", refund_id)
        activity = await uow.activity_repository.get_by_id(refund.activity_id)
        if not activity:
            raise NotFoundException("Activity", refund.activity_id)
        await require_club_operator(uow, activity.club_id, actor)
        return refund

    async def approve_refund(self, actor: CurrentUser, refund_id: int) -> Refund:
        """审批通过后立即调用网关退款"""
        now = self._clock()
        async with self._uow_factory() as uow:
            refund = await self._load_for_review(uow, refund_id, actor)
            refund.require_status(RefundStatus.PENDING, action="审批")
            if not await uow.refund_repository.transition(
                refund.id, [RefundStatus.PENDING], RefundStatus.APPROVED,
                reviewed_by=actor.id, reviewed_at=now,
            ):
                raise InvalidStateException("退款申请已被处理", current_status=refund.status)

        logger.info("refund_approved", refund_no=refund.refund_no, reviewer_id=actor.id)
        return await self._execute(refund.id)

    async def retry_refund(self, actor: CurrentUser, refund_id: int) -> Refund:
        """重新执行上次网关失败（回到 APPROVED）的退款"""
        async with self._uow_factory(readonly=True) as uow:
            refund = await self._load_for_review(uow, refund_id, actor)
        refund.require_status(RefundStatus.APPROVED, action="重试")
        return await self._execute(refund.id)

    async def _execute(self, refund_id: int) -> Refund:
        async with self._uow_factory() as uow:
            refund = await uow.refund_repository.get_by_id(refund_id)
            refund.require_status(RefundStatus.APPROVED, action="执行")
            if not await uow.refund_repository.transition(
                refund.id, [RefundStatus.APPROVED], RefundStatus.PROCESSING
            ):
                raise InvalidStateException("退款正在处理中", current_status=refund.status)
            order = await uow.order_repository.get_by_id(refund.order_id)

        try:
            result = await self._gateway.refund(
                RefundRequest(
                    order_no=order.order_no,
                    refund_no=refund.refund_no,
                    amount_minor=to_minor_units(refund.amount),
                    total_minor=to_minor_units(order.total_amount),
                    reason=refund.reason or "用户申请退款",
                )
            )
        except Exception as exc:
            # 回到 APPROVED 以便重试，错误继续向上抛出
            async with self._uow_factory() as uow:
                await uow.refund_repository.transition(
                    refund.id, [RefundStatus.PROCESSING], RefundStatus.APPROVED,
                    failure_reason=str(exc)[:255],
                )
            logger.error("refund_gateway_failed", refund_no=refund.refund_no, error=str(exc))
            raise

        now = self._clock()
        async with self._uow_factory() as uow:
            await uow.refund_repository.transition(
                refund.id, [RefundStatus.PROCESSING], RefundStatus.COMPLETED,
                gateway_refund_id=result.gateway_refund_id, completed_at=now, failure_reason=None,
            )
            await uow.order_repository.transition(
                order.id, [OrderStatus.REFUNDING], OrderStatus.REFUNDED, refunded_at=now
            )
            await uow.enrollment_repository.transition(
                order.enrollment_id, [EnrollmentStatus.PAID], EnrollmentStatus.REFUNDED
            )
            refund = await uow.refund_repository.get_by_id(refund.id)

        logger.info(
            "refund_completed",
            refund_no=refund.refund_no,
            gateway_refund_id=result.gateway_refund_id,
            amount=str(refund.amount),
        )
        await self._publisher.publish(
            RefundCompleted(
                refund_id=refund.id,
                refund_no=refund.refund_no,
                order_id=refund.order_id,
                user_id=refund.user_id,
                amount=str(refund.amount),
            )
        )
        return refund

    async def reject_refund(self, actor: CurrentUser, refund_id: int, reason: str) -> Refund:
        """拒绝退款：退款 REJECTED，订单恢复 PAID，同一事务"""
        now = self._clock()
        async with self._uow_factory() as uow:
            refund = await self._load_for_review(uow, refund_id, actor)
            refund.require_status(RefundStatus.PENDING, action="拒绝")
            if not await uow.refund_repository.transition(
                refund.id, [RefundStatus.PENDING], RefundStatus.REJECTED,
                reject_reason=reason, reviewed_by=actor.id, reviewed_at=now,
            ):
                raise InvalidStateException("退款申请已被处理", current_status=refund.status)
            await uow.order_repository.transition(refund.order_id, [OrderStatus.REFUNDING], OrderStatus.PAID)
            refund = await uow.refund_repository.get_by_id(refund.id)

        logger.info("refund_rejected", refund_no=refund.refund_no, reviewer_id=actor.id)
        await self._publisher.publish(
            RefundRejected(refund_id=refund.id, order_id=refund.order_id, user_id=refund.user_id, reason=reason)
        )
        return refund

    async def get_refund(self, actor: CurrentUser, refund_id: int) -> Refund:
        """申请人本人或俱乐部经营者可查看"""
        async with self._uow_factory(readonly=True) as uow:
            refund = await uow.refund_repository.get_by_id(refund_id)
            if not refund:
                raise NotFoundException("Refund", refund_id)
            if refund.user_id != actor.id:
                activity = await uow.activity_repository.get_by_id(refund.activity_id)
                await require_club_operator(uow, activity.club_id, actor)
        return refund

    async def list_pending_refunds(
        self, actor: CurrentUser, club_id: int, skip: int = 0, limit: int = 20
    ) -> List[Refund]:
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            return await uow.refund_repository.list_by_club(
                club_id, status=RefundStatus.PENDING, skip=skip, limit=limit
            )
