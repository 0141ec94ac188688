"""
报名仓储实现
"""
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.enrollment.entity import TERMINAL_ENROLLMENT_STATUSES, Enrollment, EnrollmentStatus
from domain.enrollment.repository import EnrollmentRepository
from infrastructure.models.enrollment import EnrollmentModel
from infrastructure.repositories.guarded_update import guarded_update

_TERMINAL = [s.value for s in TERMINAL_ENROLLMENT_STATUSES]


class SQLAlchemyEnrollmentRepository(EnrollmentRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: EnrollmentModel) -> Enrollment:
        return Enrollment(
            id=model.id,
            activity_id=model.activity_id,
            user_id=model.user_id,
            amount=model.amount,
            status=EnrollmentStatus(model.status),
            contact_name=model.contact_name,
            contact_phone=model.contact_phone,
            created_at=model.created_at,
            updated_at=model.updated_at,
            cancelled_at=model.cancelled_at,
            checked_in_at=model.checked_in_at,
        )

    async def create(self, enrollment: Enrollment) -> Enrollment:
        model = EnrollmentModel(
            activity_id=enrollment.activity_id,
            user_id=enrollment.user_id,
            amount=enrollment.amount,
            status=enrollment.status.value,
            contact_name=enrollment.contact_name,
            contact_phone=enrollment.contact_phone,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, enrollment_id: int) -> Optional[Enrollment]:
        result = await self.session.execute(
            select(EnrollmentModel)
            .where(EnrollmentModel.id == enrollment_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def find_active(self, activity_id: int, user_id: int) -> Optional[Enrollment]:
        result = await self.session.execute(
            select(EnrollmentModel)
            .where(
                EnrollmentModel.activity_id == activity_id,
                EnrollmentModel.user_id == user_id,
                EnrollmentModel.status.not_in(_TERMINAL),
            )
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def count_active(self, activity_id: int) -> int:
        result = await self.session.execute(
            select(func.count(EnrollmentModel.id)).where(
                EnrollmentModel.activity_id == activity_id,
                EnrollmentModel.status.not_in(_TERMINAL),
            )
        )
        return result.scalar_one()

    async def list_by_user(self, user_id: int, skip: int = 0, limit: int = 20) -> List[Enrollment]:
        result = await self.session.execute(
            select(EnrollmentModel)
            .where(EnrollmentModel.user_id == user_id)
            .order_by(EnrollmentModel.created_at.desc(), EnrollmentModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def transition(
        self,
        enrollment_id: int,
        expected: Iterable[EnrollmentStatus],
        new_status: EnrollmentStatus,
        **values,
    ) -> bool:
        return await guarded_update(self.session, EnrollmentModel, enrollment_id, expected, new_status, values)
