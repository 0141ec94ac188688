"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConflictException
from domain.common.values import to_money
from domain.order.entity import AddOnType, Order, OrderAddOn, OrderStatus, assert_order_edge
from domain.order.repository import OrderRepository
from infrastructure.models.activity import ActivityModel
from infrastructure.models.order import OrderAddOnModel, OrderModel
from infrastructure.repositories.guarded_update import guarded_update


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            order_no=model.order_no,
            enrollment_id=model.enrollment_id,
            user_id=model.user_id,
            activity_id=model.activity_id,
            amount=model.amount,
            add_on_fee=model.add_on_fee,
            total_amount=model.total_amount,
            expires_at=model.expires_at,
            status=OrderStatus(model.status),
            verify_code=model.verify_code,
            paid_at=model.paid_at,
            cancelled_at=model.cancelled_at,
            refunded_at=model.refunded_at,
            verified_at=model.verified_at,
            verified_by=model.verified_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        return OrderModel(
            order_no=entity.order_no,
            enrollment_id=entity.enrollment_id,
            user_id=entity.user_id,
            activity_id=entity.activity_id,
            amount=entity.amount,
            add_on_fee=entity.add_on_fee,
            total_amount=entity.total_amount,
            status=entity.status.value,
            expires_at=entity.expires_at,
        )

    async def create(self, order: Order) -> Order:
        model = self._to_model(order)
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.warning("order_create_conflict", enrollment_id=order.enrollment_id)
            raise ConflictException("该报名已有进行中的订单", details={"enrollment_id": order.enrollment_id}) from exc
        await self.session.refresh(model)
        return self._to_entity(model)

    async def add_add_on(self, add_on: OrderAddOn) -> OrderAddOn:
        model = OrderAddOnModel(
            order_id=add_on.order_id,
            type=add_on.type.value,
            unit_price=add_on.unit_price,
            days=add_on.days,
            fee=add_on.fee,
        )
        self.session.add(model)
        await self.session.flush()
        add_on.id = model.id
        return add_on

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_order_no(self, order_no: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.order_no == order_no)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_latest_for_enrollment(self, enrollment_id: int) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.enrollment_id == enrollment_id)
            .order_by(OrderModel.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_add_ons(self, order_id: int) -> List[OrderAddOn]:
        result = await self.session.execute(
            select(OrderAddOnModel).where(OrderAddOnModel.order_id == order_id)
        )
        return [
            OrderAddOn(
                id=m.id,
                order_id=m.order_id,
                type=AddOnType(m.type),
                unit_price=m.unit_price,
                days=m.days,
                fee=m.fee,
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]

    async def list_by_user(
        self,
        user_id: int,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Order]:
        query = select(OrderModel).where(OrderModel.user_id == user_id)
        if status:
            query = query.where(OrderModel.status == status.value)
        query = query.order_by(OrderModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_expired_pending(self, now: datetime, limit: int = 500) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.status == OrderStatus.PENDING.value,
                OrderModel.expires_at < now,
            )
            .order_by(OrderModel.expires_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_activity(self, activity_id: int, statuses: Iterable[OrderStatus]) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.activity_id == activity_id,
                OrderModel.status.in_([s.value for s in statuses]),
            )
            .order_by(OrderModel.id.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    def _club_orders(self, query, club_id: int, statuses: Iterable[OrderStatus]):
        return query.join(ActivityModel, ActivityModel.id == OrderModel.activity_id).where(
            ActivityModel.club_id == club_id,
            OrderModel.status.in_([s.value for s in statuses]),
        )

    async def list_by_club(
        self,
        club_id: int,
        statuses: Iterable[OrderStatus],
        paid_from: Optional[datetime] = None,
        paid_to: Optional[datetime] = None,
    ) -> List[Order]:
        query = self._club_orders(select(OrderModel), club_id, statuses)
        if paid_from is not None:
            query = query.where(OrderModel.paid_at >= paid_from)
        if paid_to is not None:
            query = query.where(OrderModel.paid_at < paid_to)
        result = await self.session.execute(query.order_by(OrderModel.id.asc()))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_club(self, club_id: int, statuses: Iterable[OrderStatus]) -> int:
        query = self._club_orders(select(func.count(OrderModel.id)), club_id, statuses)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def totals_by_activity(
        self, activity_ids: Iterable[int], statuses: Iterable[OrderStatus]
    ) -> Dict[int, Tuple[int, Decimal]]:
        ids = list(activity_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(OrderModel.activity_id, func.count(OrderModel.id), func.sum(OrderModel.total_amount))
            .where(
                OrderModel.activity_id.in_(ids),
                OrderModel.status.in_([s.value for s in statuses]),
            )
            .group_by(OrderModel.activity_id)
        )
        return {
            activity_id: (int(count), to_money(Decimal(str(total)) if total is not None else None))
            for activity_id, count, total in result.all()
        }

    async def transition(
        self,
        order_id: int,
        expected: Iterable[OrderStatus],
        new_status: OrderStatus,
        **values,
    ) -> bool:
        expected = tuple(expected)
        for source in expected:
            assert_order_edge(source, new_status)
        changed = await guarded_update(self.session, OrderModel, order_id, expected, new_status, values)
        if changed:
            logger.debug("order_status_changed", order_id=order_id, status=new_status.value)
        return changed

    async def set_verify_code(self, order_id: int, code: str) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.verify_code.is_(None))
            .values(verify_code=code)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
