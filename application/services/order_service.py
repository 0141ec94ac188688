"""
订单应用服务 - 下单、取消、超时关单、核销码与现场核销
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from application.dto import CurrentUser
from application.ports.events import EventPublisherPort
from application.ports.lock import DistributedLockPort
from application.services.access import require_activity_operator
from core.config import LedgerSettings, settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    ConflictException,
    DomainValidationException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import ZERO, generate_business_no, utcnow
from domain.enrollment.entity import EnrollmentStatus
from domain.order.entity import AddOnType, Order, OrderAddOn, OrderStatus, prorate_daily_fee
from domain.order.verify_code import VerifyCodeSigner
from domain.payment.events import EnrollmentCheckedIn, OrderCancelled

logger = get_logger(__name__)


class OrderService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        lock: DistributedLockPort,
        publisher: EventPublisherPort,
        signer: VerifyCodeSigner,
        *,
        ledger: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._lock = lock
        self._publisher = publisher
        self._signer = signer
        self._ledger = ledger or settings.ledger
        self._clock = clock

    async def create_order(self, user_id: int, enrollment_id: int) -> Order:
        """
        为待支付报名创建订单

        同一报名的下单串行执行（锁 order:enrollment:<id>），已有未过期的待支付订单时原样返回（幂等重入）；
        订单与附加险记录在同一事务中写入。
        """
        return await self._lock.with_lock(
            f"order:enrollment:{enrollment_id}", lambda: self._create_order(user_id, enrollment_id)
        )

    async def _create_order(self, user_id: int, enrollment_id: int) -> Order:
        now = self._clock()
        async with self._uow_factory() as uow:
            enrollment = await uow.enrollment_repository.get_by_id(enrollment_id)
            if not enrollment:
                raise NotFoundException("Enrollment", enrollment_id)
            if not enrollment.belongs_to(user_id):
                raise ForbiddenException("无权操作此报名记录")
            if enrollment.status != EnrollmentStatus.PENDING:
                raise InvalidStateException("报名状态不正确，无法创建订单", current_status=enrollment.status)

            existing = await uow.order_repository.get_latest_for_enrollment(enrollment_id)
            if existing:
                if existing.is_live(now):
                    logger.info("order_reused", order_no=existing.order_no, enrollment_id=enrollment_id)
                    return existing
                if existing.status == OrderStatus.PENDING:
                    # 已过期但扫描尚未处理：先关单，再由新订单取代
                    await uow.order_repository.transition(
                        existing.id, [OrderStatus.PENDING], OrderStatus.CANCELLED, cancelled_at=now
                    )
                elif existing.status != OrderStatus.CANCELLED:
                    raise ConflictException(
                        "该报名已有进行中的订单",
                        details={"order_no": existing.order_no, "status": existing.status.value},
                    )

            activity = await uow.activity_repository.get_by_id(enrollment.activity_id)
            if not activity:
                raise NotFoundException("Activity", enrollment.activity_id)

            days, insurance_fee = 0, ZERO
            if activity.insurance_daily_fee:
                days, insurance_fee = prorate_daily_fee(
                    activity.insurance_daily_fee, activity.start_time, activity.end_time
                )

            order = await uow.order_repository.create(
                Order.place(
                    order_no=generate_business_no(now=now),
                    enrollment_id=enrollment.id,
                    user_id=user_id,
                    activity_id=activity.id,
                    amount=enrollment.amount,
                    add_on_fee=insurance_fee,
                    timeout_minutes=self._ledger.order_timeout_minutes,
                    now=now,
                )
            )
            if insurance_fee > ZERO:
                await uow.order_repository.add_add_on(
                    OrderAddOn(
                        id=None,
                        order_id=order.id,
                        type=AddOnType.INSURANCE,
                        unit_price=activity.insurance_daily_fee,
                        days=days,
                        fee=insurance_fee,
                    )
                )

        logger.info(
            "order_created",
            order_no=order.order_no,
            enrollment_id=enrollment_id,
            total=str(order.total_amount),
            add_on_fee=str(order.add_on_fee),
        )
        return order

    async def cancel_order(self, user_id: int, order_id: int) -> Order:
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if not order:
                raise NotFoundException("Order", order_id)
            if not order.belongs_to(user_id):
                raise ForbiddenException("无权操作此订单")
            if order.status == OrderStatus.CANCELLED:
                return order
            order.require_status(OrderStatus.PENDING, action="取消")

            if not await self._cancel_pending(uow, order, now):
                current = await uow.order_repository.get_by_id(order_id)
                if current.status == OrderStatus.CANCELLED:
                    return current
                raise InvalidStateException("订单状态已变化", current_status=current.status)
            order = await uow.order_repository.get_by_id(order_id)

        logger.info("order_cancelled", order_no=order.order_no, reason="user_cancel")
        await self._publisher.publish(
            OrderCancelled(order_id=order.id, order_no=order.order_no, reason="user_cancel")
        )
        return order

    async def _cancel_pending(self, uow: AbstractUnitOfWork, order: Order, now: datetime) -> bool:
        """PENDING -> CANCELLED 并恢复报名为待处理；未命中（已被并发处理）返回 False"""
        changed = await uow.order_repository.transition(
            order.id, [OrderStatus.PENDING], OrderStatus.CANCELLED, cancelled_at=now
        )
        if changed:
            # 报名恢复为待处理，用户可重新下单
            await uow.enrollment_repository.transition(
                order.enrollment_id, [EnrollmentStatus.PENDING], EnrollmentStatus.PENDING
            )
        return changed

    async def cancel_expired_orders(self, limit: int = 500) -> int:
        """关闭超时未支付订单，返回本轮关闭数量；单笔失败只记录日志"""
        now = self._clock()
        async with self._uow_factory(readonly=True) as uow:
            expired = await uow.order_repository.list_expired_pending(now, limit=limit)

        cancelled = 0
        for order in expired:
            try:
                async with self._uow_factory() as uow:
                    changed = await self._cancel_pending(uow, order, now)
            except Exception as exc:
                logger.error("order_expire_failed", order_no=order.order_no, error=str(exc))
                continue
            if changed:
                cancelled += 1
                await self._publisher.publish(
                    OrderCancelled(order_id=order.id, order_no=order.order_no, reason="timeout")
                )

        if expired:
            logger.info("expired_orders_swept", found=len(expired), cancelled=cancelled)
        return cancelled

    async def get_order(self, user_id: int, order_id: int) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if not order:
            raise NotFoundException("Order", order_id)
        if not order.belongs_to(user_id):
            raise ForbiddenException("无权访问此订单")
        return order

    async def list_my_orders(
        self, user_id: int, status: Optional[OrderStatus] = None, skip: int = 0, limit: int = 20
    ) -> List[Order]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.order_repository.list_by_user(user_id, status=status, skip=skip, limit=limit)

    async def get_verify_code(self, user_id: int, order_id: int) -> str:
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if not order:
                raise NotFoundException("Order", order_id)
            if not order.belongs_to(user_id):
                raise ForbiddenException("无权访问此订单")
            order.require_status(OrderStatus.PAID, action="获取核销码")
            if order.verify_code:
                return order.verify_code

            code = self._signer.generate(order.id, now=self._clock())
            if await uow.order_repository.set_verify_code(order.id, code):
                return code
            # 并发生成：以先写入者为准
            current = await uow.order_repository.get_by_id(order.id)
            return current.verify_code

    async def verify_order(self, actor: CurrentUser, code: str) -> Order:
        """现场核销：订单 PAID -> COMPLETED，报名 PAID -> CHECKED_IN（同一事务）"""
        now = self._clock()
        claims = self._signer.parse(code, now=now)
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(claims.order_id)
            if not order:
                raise NotFoundException("Order", claims.order_id)
            activity = await uow.activity_repository.get_by_id(order.activity_id)
            if not activity:
                raise NotFoundException("Activity", order.activity_id)
            await require_activity_operator(uow, activity, actor)

            if order.verified_at:
                raise InvalidStateException("订单已核销", current_status=order.status)
            order.require_status(OrderStatus.PAID, action="核销")
            if order.verify_code != code:
                raise DomainValidationException("核销码不匹配", field="code")

            changed = await uow.order_repository.transition(
                order.id, [OrderStatus.PAID], OrderStatus.COMPLETED,
                verified_at=now, verified_by=actor.id,
            )
            if not changed:
                raise InvalidStateException("订单状态已变化", current_status=order.status)
            await uow.enrollment_repository.transition(
                order.enrollment_id, [EnrollmentStatus.PAID], EnrollmentStatus.CHECKED_IN,
                checked_in_at=now,
            )
            order = await uow.order_repository.get_by_id(order.id)

        logger.info("order_verified", order_no=order.order_no, verifier_id=actor.id)
        await self._publisher.publish(
            EnrollmentCheckedIn(
                enrollment_id=order.enrollment_id,
                order_id=order.id,
                user_id=order.user_id,
                activity_id=order.activity_id,
            )
        )
        return order

    async def verify_by_order_no(self, actor: CurrentUser, order_no: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_order_no(order_no)
        if not order:
            raise NotFoundException("Order", order_no)
        if not order.verify_code:
            raise InvalidStateException("订单没有核销码", current_status=order.status)
        return await self.verify_order(actor, order.verify_code)
