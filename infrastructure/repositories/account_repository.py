"""
俱乐部账户与账本流水仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.account.entity import AccountTransaction, ClubAccount, TransactionType
from domain.account.repository import ClubAccountRepository, TransactionRepository
from domain.common.exceptions import ConflictException
from infrastructure.models.account import ClubAccountModel, TransactionModel


logger = get_logger(__name__)


class SQLAlchemyClubAccountRepository(ClubAccountRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ClubAccountModel) -> ClubAccount:
        return ClubAccount(
            id=model.id,
            club_id=model.club_id,
            balance=model.balance,
            frozen_balance=model.frozen_balance,
            total_income=model.total_income,
            total_withdraw=model.total_withdraw,
            bank_name=model.bank_name,
            bank_account_encrypted=model.bank_account_encrypted,
            bank_account_last4=model.bank_account_last4,
            account_name=model.account_name,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_club(self, club_id: int, *, for_update: bool = False) -> Optional[ClubAccount]:
        query = (
            select(ClubAccountModel)
            .where(ClubAccountModel.club_id == club_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, account: ClubAccount) -> ClubAccount:
        model = ClubAccountModel(
            club_id=account.club_id,
            balance=account.balance,
            frozen_balance=account.frozen_balance,
            total_income=account.total_income,
            total_withdraw=account.total_withdraw,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # club_id 唯一：并发首次建户只有一方成功
            logger.warning("club_account_create_conflict", club_id=account.club_id)
            raise ConflictException("俱乐部账户已存在", details={"club_id": account.club_id}) from exc
        await self.session.refresh(model)
        return self._to_entity(model)

    async def update(self, account: ClubAccount) -> ClubAccount:
        result = await self.session.execute(
            select(ClubAccountModel).where(ClubAccountModel.id == account.id)
        )
        model = result.scalar_one_or_none()
        if not model:
            raise ValueError(f"ClubAccount with id {account.id} not found")

        model.balance = account.balance
        model.frozen_balance = account.frozen_balance
        model.total_income = account.total_income
        model.total_withdraw = account.total_withdraw
        model.bank_name = account.bank_name
        model.bank_account_encrypted = account.bank_account_encrypted
        model.bank_account_last4 = account.bank_account_last4
        model.account_name = account.account_name

        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)


class SQLAlchemyTransactionRepository(TransactionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> AccountTransaction:
        return AccountTransaction(
            id=model.id,
            account_id=model.account_id,
            club_id=model.club_id,
            type=TransactionType(model.type),
            amount=model.amount,
            balance_before=model.balance_before,
            balance_after=model.balance_after,
            related_type=model.related_type,
            related_id=model.related_id,
            description=model.description,
            created_at=model.created_at,
        )

    async def append(self, row: AccountTransaction) -> AccountTransaction:
        model = TransactionModel(
            account_id=row.account_id,
            club_id=row.club_id,
            type=row.type.value,
            amount=row.amount,
            balance_before=row.balance_before,
            balance_after=row.balance_after,
            related_type=row.related_type,
            related_id=row.related_id,
            description=row.description,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    def _filtered(self, query, club_id: int, tx_type: Optional[TransactionType]):
        query = query.where(TransactionModel.club_id == club_id)
        if tx_type:
            query = query.where(TransactionModel.type == tx_type.value)
        return query

    async def list_by_club(
        self,
        club_id: int,
        tx_type: Optional[TransactionType] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[AccountTransaction]:
        query = self._filtered(select(TransactionModel), club_id, tx_type)
        query = query.order_by(TransactionModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_club(self, club_id: int, tx_type: Optional[TransactionType] = None) -> int:
        query = self._filtered(select(func.count(TransactionModel.id)), club_id, tx_type)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_between(self, club_id: int, start: datetime, end: datetime) -> List[AccountTransaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(
                TransactionModel.club_id == club_id,
                TransactionModel.created_at >= start,
                TransactionModel.created_at < end,
            )
            .order_by(TransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
