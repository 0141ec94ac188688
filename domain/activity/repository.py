"""
活动/俱乐部只读仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .entity import Activity, ActivityStatus, Club


class ActivityRepository(ABC):

    @abstractmethod
    async def get_by_id(self, activity_id: int) -> Optional[Activity]:
        ...

    @abstractmethod
    async def list_unsettled_completed(self, ended_before: datetime, limit: int) -> List[Activity]:
        """已完成、结束时间早于 ended_before 且尚无结算单的活动"""
        ...

    @abstractmethod
    async def count_unsettled_completed(self, ended_before: datetime) -> int:
        ...

    @abstractmethod
    async def list_unsettled_for_club(self, club_id: int) -> List[Activity]:
        """俱乐部已完成但尚无结算单的活动（不看结算延迟期）"""
        ...

    @abstractmethod
    async def list_by_club(
        self, club_id: int, statuses: Optional[Iterable[ActivityStatus]] = None, limit: int = 50
    ) -> List[Activity]:
        """按创建顺序倒序"""
        ...

    @abstractmethod
    async def count_by_club(self, club_id: int, statuses: Optional[Iterable[ActivityStatus]] = None) -> int:
        ...


class ClubRepository(ABC):

    @abstractmethod
    async def get_by_id(self, club_id: int) -> Optional[Club]:
        """获取俱乐部（含成员角色）"""
        ...
