"""
账户/流水仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import AccountTransaction, ClubAccount, TransactionType


class ClubAccountRepository(ABC):

    @abstractmethod
    async def get_by_club(self, club_id: int, *, for_update: bool = False) -> Optional[ClubAccount]:
        """for_update=True 时对账户行加写锁，须在事务内调用"""
        ...

    @abstractmethod
    async def create(self, account: ClubAccount) -> ClubAccount:
        ...

    @abstractmethod
    async def update(self, account: ClubAccount) -> ClubAccount:
        ...


class TransactionRepository(ABC):

    @abstractmethod
    async def append(self, row: AccountTransaction) -> AccountTransaction:
        ...

    @abstractmethod
    async def list_by_club(
        self,
        club_id: int,
        tx_type: Optional[TransactionType] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[AccountTransaction]:
        """按时间倒序"""
        ...

    @abstractmethod
    async def count_by_club(self, club_id: int, tx_type: Optional[TransactionType] = None) -> int:
        ...

    @abstractmethod
    async def list_between(self, club_id: int, start: datetime, end: datetime) -> List[AccountTransaction]:
        """created_at 落在 [start, end) 的流水，按写入顺序"""
        ...
