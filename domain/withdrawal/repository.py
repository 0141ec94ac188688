"""
提现仓储接口
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .entity import Withdrawal, WithdrawalStatus


class WithdrawalRepository(ABC):

    @abstractmethod
    async def create(self, withdrawal: Withdrawal) -> Withdrawal:
        ...

    @abstractmethod
    async def get_by_id(self, withdrawal_id: int) -> Optional[Withdrawal]:
        ...

    @abstractmethod
    async def list_withdrawals(
        self,
        club_id: Optional[int] = None,
        status: Optional[WithdrawalStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Withdrawal]:
        ...

    @abstractmethod
    async def transition(
        self,
        withdrawal_id: int,
        expected: Iterable[WithdrawalStatus],
        new_status: WithdrawalStatus,
        **values,
    ) -> bool:
        ...
