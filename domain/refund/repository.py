"""
退款仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from .entity import Refund, RefundStatus


class RefundRepository(ABC):

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        ...

    @abstractmethod
    async def get_by_id(self, refund_id: int) -> Optional[Refund]:
        ...

    @abstractmethod
    async def get_by_order_id(self, order_id: int) -> Optional[Refund]:
        ...

    @abstractmethod
    async def list_by_club(
        self, club_id: int, status: Optional[RefundStatus] = None, skip: int = 0, limit: int = 20
    ) -> List[Refund]:
        ...

    @abstractmethod
    async def transition(
        self,
        refund_id: int,
        expected: Iterable[RefundStatus],
        new_status: RefundStatus,
        **values,
    ) -> bool:
        ...

    @abstractmethod
    async def sum_completed_for_activity(self, activity_id: int) -> tuple[Decimal, int]:
        """活动已完成退款的总额与笔数"""
        ...

    @abstractmethod
    async def sum_completed_for_club(
        self, club_id: int, completed_from: datetime, completed_to: datetime
    ) -> tuple[Decimal, int]:
        """俱乐部在 [completed_from, completed_to) 内完成的退款总额与笔数"""
        ...
