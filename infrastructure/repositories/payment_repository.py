"""
支付/退款仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConflictException
from domain.common.values import to_money
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.repository import PaymentRepository
from domain.refund.entity import Refund, RefundStatus
from domain.refund.repository import RefundRepository
from infrastructure.models.activity import ActivityModel
from infrastructure.models.payment import PaymentModel, RefundModel
from infrastructure.repositories.guarded_update import guarded_update


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            order_id=model.order_id,
            order_no=model.order_no,
            user_id=model.user_id,
            amount=model.amount,
            provider=model.provider,
            status=PaymentStatus(model.status),
            prepay_id=model.prepay_id,
            transaction_id=model.transaction_id,
            failure_reason=model.failure_reason,
            paid_at=model.paid_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        model = PaymentModel(
            order_id=payment.order_id,
            order_no=payment.order_no,
            user_id=payment.user_id,
            amount=payment.amount,
            provider=payment.provider,
            status=payment.status.value,
            prepay_id=payment.prepay_id,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.warning("payment_create_conflict", order_no=payment.order_no)
            raise ConflictException("订单已存在支付记录", details={"order_no": payment.order_no}) from exc
        await self.session.refresh(model)
        logger.info("payment_created", payment_id=model.id, order_no=model.order_no, provider=model.provider)
        return self._to_entity(model)

    async def get_by_order_id(self, order_id: int) -> Optional[Payment]:
        """根据订单ID获取支付"""
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.id == payment.id)
        )
        model = result.scalar_one_or_none()
        if not model:
            raise ValueError(f"Payment with id {payment.id} not found")

        model.status = payment.status.value
        model.prepay_id = payment.prepay_id
        model.transaction_id = payment.transaction_id
        model.amount = payment.amount
        model.failure_reason = payment.failure_reason
        model.paid_at = payment.paid_at

        await self.session.flush()
        await self.session.refresh(model)
        logger.info("payment_updated", payment_id=model.id, order_no=model.order_no, status=model.status)
        return self._to_entity(model)


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            refund_no=model.refund_no,
            order_id=model.order_id,
            user_id=model.user_id,
            activity_id=model.activity_id,
            amount=model.amount,
            refund_percent=model.refund_percent,
            status=RefundStatus(model.status),
            reason=model.reason,
            reject_reason=model.reject_reason,
            reviewed_by=model.reviewed_by,
            reviewed_at=model.reviewed_at,
            gateway_refund_id=model.gateway_refund_id,
            failure_reason=model.failure_reason,
            completed_at=model.completed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, refund: Refund) -> Refund:
        model = RefundModel(
            refund_no=refund.refund_no,
            order_id=refund.order_id,
            user_id=refund.user_id,
            activity_id=refund.activity_id,
            amount=refund.amount,
            refund_percent=refund.refund_percent,
            status=refund.status.value,
            reason=refund.reason,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException("订单已存在退款申请", details={"order_id": refund.order_id}) from exc
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, refund_id: int) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.id == refund_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_order_id(self, order_id: int) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_by_club(
        self, club_id: int, status: Optional[RefundStatus] = None, skip: int = 0, limit: int = 20
    ) -> List[Refund]:
        query = (
            select(RefundModel)
            .join(ActivityModel, ActivityModel.id == RefundModel.activity_id)
            .where(ActivityModel.club_id == club_id)
        )
        if status:
            query = query.where(RefundModel.status == status.value)
        query = query.order_by(RefundModel.created_at.asc(), RefundModel.id.asc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def transition(
        self,
        refund_id: int,
        expected: Iterable[RefundStatus],
        new_status: RefundStatus,
        **values,
    ) -> bool:
        return await guarded_update(self.session, RefundModel, refund_id, expected, new_status, values)

    async def sum_completed_for_activity(self, activity_id: int) -> tuple[Decimal, int]:
        result = await self.session.execute(
            select(func.sum(RefundModel.amount), func.count(RefundModel.id)).where(
                RefundModel.activity_id == activity_id,
                RefundModel.status == RefundStatus.COMPLETED.value,
            )
        )
        total, count = result.one()
        return to_money(Decimal(str(total)) if total is not None else None), int(count or 0)

    async def sum_completed_for_club(
        self, club_id: int, completed_from: datetime, completed_to: datetime
    ) -> tuple[Decimal, int]:
        result = await self.session.execute(
            select(func.sum(RefundModel.amount), func.count(RefundModel.id))
            .join(ActivityModel, ActivityModel.id == RefundModel.activity_id)
            .where(
                ActivityModel.club_id == club_id,
                RefundModel.status == RefundStatus.COMPLETED.value,
                RefundModel.completed_at >= completed_from,
                RefundModel.completed_at < completed_to,
            )
        )
        total, count = result.one()
        return to_money(Decimal(str(total)) if total is not None else None), int(count or 0)
