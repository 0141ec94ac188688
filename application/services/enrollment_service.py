"""
报名应用服务 - 名额占用与取消
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from application.ports.events import EventPublisherPort
from application.ports.lock import DistributedLockPort
from core.logging_config import get_logger
from domain.common.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import utcnow
from domain.enrollment.entity import Enrollment, EnrollmentStatus
from domain.order.entity import OrderStatus
from domain.payment.events import LedgerEvent, OrderCancelled

logger = get_logger(__name__)


class EnrollmentService:
    """报名服务：容量检查在活动级分布式锁内完成，避免并发超卖"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        lock: DistributedLockPort,
        publisher: EventPublisherPort,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._lock = lock
        self._publisher = publisher
        self._clock = clock

    async def create_enrollment(
        self,
        user_id: int,
        activity_id: int,
        contact_name: Optional[str] = None,
        contact_phone: Optional[str] = None,
    ) -> Enrollment:
        async def _create() -> Enrollment:
            now = self._clock()
            async with self._uow_factory() as uow:
                activity = await uow.activity_repository.get_by_id(activity_id)
                if not activity:
                    raise NotFoundException("Activity", activity_id)
                if not activity.is_enrollable:
                    raise InvalidStateException("活动当前不可报名", current_status=activity.status)
                if activity.has_started(now):
                    raise InvalidStateException("活动已开始，无法报名", current_status=activity.status)

                if await uow.enrollment_repository.find_active(activity_id, user_id):
                    raise ConflictException("您已报名该活动", details={"activity_id": activity_id})

                taken = await uow.enrollment_repository.count_active(activity_id)
                if taken >= activity.capacity:
                    raise ConflictException(
                        "活动名额已满",
                        details={"activity_id": activity_id, "capacity": activity.capacity},
                    )

                return await uow.enrollment_repository.create(
                    Enrollment(
                        id=None,
                        activity_id=activity_id,
                        user_id=user_id,
                        amount=activity.price,
                        contact_name=contact_name,
                        contact_phone=contact_phone,
                    )
                )

        enrollment = await self._lock.with_lock(f"enrollment:activity:{activity_id}", _create)
        logger.info(
            "enrollment_created",
            enrollment_id=enrollment.id,
            activity_id=activity_id,
            user_id=user_id,
            amount=str(enrollment.amount),
        )
        return enrollment

    async def cancel_enrollment(self, user_id: int, enrollment_id: int) -> Enrollment:
        """取消报名：仅本人、仅活动开始前；待支付订单在同一事务中一并取消"""
        now = self._clock()
        events: List[LedgerEvent] = []
        async with self._uow_factory() as uow:
            enrollment = await uow.enrollment_repository.get_by_id(enrollment_id)
            if not enrollment:
                raise NotFoundException("Enrollment", enrollment_id)
            if not enrollment.belongs_to(user_id):
                raise ForbiddenException("无权操作此报名记录")

            activity = await uow.activity_repository.get_by_id(enrollment.activity_id)
            if activity and activity.has_started(now):
                raise InvalidStateException("活动已开始，无法取消报名", current_status=activity.status)

            expected = enrollment.status
            enrollment.cancel(now)

            order = await uow.order_repository.get_latest_for_enrollment(enrollment_id)
            if order and order.status == OrderStatus.PAYING:
                raise InvalidStateException("订单支付中，请稍后再试", current_status=order.status)
            if order and order.status == OrderStatus.PENDING:
                if await uow.order_repository.transition(
                    order.id, [OrderStatus.PENDING], OrderStatus.CANCELLED, cancelled_at=now
                ):
                    events.append(
                        OrderCancelled(order_id=order.id, order_no=order.order_no, reason="enrollment_cancelled")
                    )

            changed = await uow.enrollment_repository.transition(
                enrollment_id, [expected], EnrollmentStatus.CANCELLED, cancelled_at=now
            )
            if not changed:
                raise InvalidStateException("报名状态已变化，请刷新后重试", current_status=expected)

        logger.info("enrollment_cancelled", enrollment_id=enrollment_id, user_id=user_id, previous=expected.value)
        await self._publisher.publish_all(events)
        return enrollment

    async def get_enrollment(self, user_id: int, enrollment_id: int) -> Enrollment:
        async with self._uow_factory(readonly=True) as uow:
            enrollment = await uow.enrollment_repository.get_by_id(enrollment_id)
        if not enrollment:
            raise NotFoundException("Enrollment", enrollment_id)
        if not enrollment.belongs_to(user_id):
            raise ForbiddenException("无权访问此报名记录")
        return enrollment

    async def list_my_enrollments(self, user_id: int, skip: int = 0, limit: int = 20) -> List[Enrollment]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.enrollment_repository.list_by_user(user_id, skip=skip, limit=limit)
