"""
结算仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Settlement, SettlementStatus


class SettlementRepository(ABC):

    @abstractmethod
    async def create(self, settlement: Settlement) -> Settlement:
        """创建结算单；同一活动已存在时抛出 ConflictException"""
        ...

    @abstractmethod
    async def get_by_id(self, settlement_id: int) -> Optional[Settlement]:
        ...

    @abstractmethod
    async def get_by_activity(self, activity_id: int) -> Optional[Settlement]:
        ...

    @abstractmethod
    async def list_by_club(self, club_id: int, skip: int = 0, limit: int = 20) -> List[Settlement]:
        ...

    @abstractmethod
    async def mark_completed(self, settlement_id: int, settled_at: datetime) -> bool:
        """PENDING -> COMPLETED，返回是否命中"""
        ...

    @abstractmethod
    async def count_by_status(self, status: SettlementStatus) -> int:
        ...

    @abstractmethod
    async def list_by_status(self, status: SettlementStatus, limit: int = 50) -> List[Settlement]:
        ...
