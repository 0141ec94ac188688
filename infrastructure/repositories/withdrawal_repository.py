"""
提现仓储实现
"""
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.withdrawal.entity import Withdrawal, WithdrawalStatus
from domain.withdrawal.repository import WithdrawalRepository
from infrastructure.models.withdrawal import WithdrawalModel
from infrastructure.repositories.guarded_update import guarded_update


class SQLAlchemyWithdrawalRepository(WithdrawalRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WithdrawalModel) -> Withdrawal:
        return Withdrawal(
            id=model.id,
            withdrawal_no=model.withdrawal_no,
            club_id=model.club_id,
            account_id=model.account_id,
            amount=model.amount,
            fee=model.fee,
            actual_amount=model.actual_amount,
            applicant_id=model.applicant_id,
            bank_name=model.bank_name,
            bank_account_encrypted=model.bank_account_encrypted,
            account_name=model.account_name,
            status=WithdrawalStatus(model.status),
            reviewed_by=model.reviewed_by,
            reviewed_at=model.reviewed_at,
            reject_reason=model.reject_reason,
            transferred_at=model.transferred_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, withdrawal: Withdrawal) -> Withdrawal:
        model = WithdrawalModel(
            withdrawal_no=withdrawal.withdrawal_no,
            club_id=withdrawal.club_id,
            account_id=withdrawal.account_id,
            applicant_id=withdrawal.applicant_id,
            amount=withdrawal.amount,
            fee=withdrawal.fee,
            actual_amount=withdrawal.actual_amount,
            bank_name=withdrawal.bank_name,
            bank_account_encrypted=withdrawal.bank_account_encrypted,
            account_name=withdrawal.account_name,
            status=withdrawal.status.value,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, withdrawal_id: int) -> Optional[Withdrawal]:
        result = await self.session.execute(
            select(WithdrawalModel)
            .where(WithdrawalModel.id == withdrawal_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_withdrawals(
        self,
        club_id: Optional[int] = None,
        status: Optional[WithdrawalStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Withdrawal]:
        query = select(WithdrawalModel)
        if club_id is not None:
            query = query.where(WithdrawalModel.club_id == club_id)
        if status:
            query = query.where(WithdrawalModel.status == status.value)
        query = query.order_by(WithdrawalModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def transition(
        self,
        withdrawal_id: int,
        expected: Iterable[WithdrawalStatus],
        new_status: WithdrawalStatus,
        **values,
    ) -> bool:
        return await guarded_update(self.session, WithdrawalModel, withdrawal_id, expected, new_status, values)
