"""
活动/俱乐部只读仓储实现
"""
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.activity.entity import Activity, ActivityStatus, Club, ClubRole
from domain.activity.repository import ActivityRepository, ClubRepository
from infrastructure.models.activity import ActivityModel, ClubMemberModel, ClubModel
from infrastructure.models.settlement import SettlementModel


class SQLAlchemyActivityRepository(ActivityRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ActivityModel) -> Activity:
        return Activity(
            id=model.id,
            club_id=model.club_id,
            title=model.title,
            price=model.price,
            capacity=model.capacity,
            start_time=model.start_time,
            end_time=model.end_time,
            status=ActivityStatus(model.status),
            leader_id=model.leader_id,
            insurance_daily_fee=model.insurance_daily_fee,
            refund_policy=model.refund_policy,
        )

    async def get_by_id(self, activity_id: int) -> Optional[Activity]:
        result = await self.session.execute(
            select(ActivityModel).where(ActivityModel.id == activity_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    def _unsettled_completed(self, query, ended_before: datetime):
        has_settlement = exists().where(SettlementModel.activity_id == ActivityModel.id)
        return query.where(
            ActivityModel.status == ActivityStatus.COMPLETED.value,
            ActivityModel.end_time < ended_before,
            ~has_settlement,
        )

    async def list_unsettled_completed(self, ended_before: datetime, limit: int) -> List[Activity]:
        query = self._unsettled_completed(select(ActivityModel), ended_before)
        result = await self.session.execute(
            query.order_by(ActivityModel.end_time.asc()).limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_unsettled_completed(self, ended_before: datetime) -> int:
        query = self._unsettled_completed(select(func.count(ActivityModel.id)), ended_before)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_unsettled_for_club(self, club_id: int) -> List[Activity]:
        has_settlement = exists().where(SettlementModel.activity_id == ActivityModel.id)
        result = await self.session.execute(
            select(ActivityModel)
            .where(
                ActivityModel.club_id == club_id,
                ActivityModel.status == ActivityStatus.COMPLETED.value,
                ~has_settlement,
            )
            .order_by(ActivityModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    def _by_club(self, query, club_id: int, statuses: Optional[Iterable[ActivityStatus]]):
        query = query.where(ActivityModel.club_id == club_id)
        if statuses is not None:
            query = query.where(ActivityModel.status.in_([s.value for s in statuses]))
        return query

    async def list_by_club(
        self, club_id: int, statuses: Optional[Iterable[ActivityStatus]] = None, limit: int = 50
    ) -> List[Activity]:
        query = self._by_club(select(ActivityModel), club_id, statuses)
        result = await self.session.execute(query.order_by(ActivityModel.id.desc()).limit(limit))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_club(self, club_id: int, statuses: Optional[Iterable[ActivityStatus]] = None) -> int:
        query = self._by_club(select(func.count(ActivityModel.id)), club_id, statuses)
        result = await self.session.execute(query)
        return result.scalar_one()


class SQLAlchemyClubRepository(ClubRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, club_id: int) -> Optional[Club]:
        result = await self.session.execute(select(ClubModel).where(ClubModel.id == club_id))
        model = result.scalar_one_or_none()
        if model is None:
            return None
        members = await self.session.execute(
            select(ClubMemberModel.user_id, ClubMemberModel.role).where(ClubMemberModel.club_id == club_id)
        )
        return Club(
            id=model.id,
            name=model.name,
            owner_id=model.owner_id,
            default_refund_policy=model.default_refund_policy,
            members={user_id: ClubRole(role) for user_id, role in members.all()},
        )
