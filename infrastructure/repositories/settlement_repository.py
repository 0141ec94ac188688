"""
结算仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConflictException
from domain.settlement.entity import Settlement, SettlementStatus
from domain.settlement.repository import SettlementRepository
from infrastructure.models.base import utc_now
from infrastructure.models.settlement import SettlementModel


class SQLAlchemySettlementRepository(SettlementRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SettlementModel) -> Settlement:
        return Settlement(
            id=model.id,
            settlement_no=model.settlement_no,
            activity_id=model.activity_id,
            club_id=model.club_id,
            total_amount=model.total_amount,
            refund_amount=model.refund_amount,
            platform_fee=model.platform_fee,
            settle_amount=model.settle_amount,
            status=SettlementStatus(model.status),
            commission_detail=model.commission_detail or {},
            settled_at=model.settled_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, settlement: Settlement) -> Settlement:
        model = SettlementModel(
            settlement_no=settlement.settlement_no,
            activity_id=settlement.activity_id,
            club_id=settlement.club_id,
            total_amount=settlement.total_amount,
            refund_amount=settlement.refund_amount,
            platform_fee=settlement.platform_fee,
            settle_amount=settlement.settle_amount,
            status=settlement.status.value,
            commission_detail=settlement.commission_detail,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException(
                "活动已存在结算单", details={"activity_id": settlement.activity_id}
            ) from exc
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, settlement_id: int) -> Optional[Settlement]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.id == settlement_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_activity(self, activity_id: int) -> Optional[Settlement]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.activity_id == activity_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_by_club(self, club_id: int, skip: int = 0, limit: int = 20) -> List[Settlement]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.club_id == club_id)
            .order_by(SettlementModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def mark_completed(self, settlement_id: int, settled_at: datetime) -> bool:
        result = await self.session.execute(
            update(SettlementModel)
            .where(
                SettlementModel.id == settlement_id,
                SettlementModel.status == SettlementStatus.PENDING.value,
            )
            .values(status=SettlementStatus.COMPLETED.value, settled_at=settled_at, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def count_by_status(self, status: SettlementStatus) -> int:
        result = await self.session.execute(
            select(func.count(SettlementModel.id)).where(SettlementModel.status == status.value)
        )
        return result.scalar_one()

    async def list_by_status(self, status: SettlementStatus, limit: int = 50) -> List[Settlement]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(SettlementModel.status == status.value)
            .order_by(SettlementModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
