"""
报名仓储接口
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .entity import Enrollment, EnrollmentStatus


class EnrollmentRepository(ABC):

    @abstractmethod
    async def create(self, enrollment: Enrollment) -> Enrollment:
        ...

    @abstractmethod
    async def get_by_id(self, enrollment_id: int) -> Optional[Enrollment]:
        ...

    @abstractmethod
    async def find_active(self, activity_id: int, user_id: int) -> Optional[Enrollment]:
        """同一用户在同一活动上的非终态报名"""
        ...

    @abstractmethod
    async def count_active(self, activity_id: int) -> int:
        """活动已占用名额数（非终态报名）"""
        ...

    @abstractmethod
    async def list_by_user(self, user_id: int, skip: int = 0, limit: int = 20) -> List[Enrollment]:
        ...

    @abstractmethod
    async def transition(
        self,
        enrollment_id: int,
        expected: Iterable[EnrollmentStatus],
        new_status: EnrollmentStatus,
        **values,
    ) -> bool:
        """条件更新状态：仅当当前状态属于 expected 时生效，返回是否更新成功"""
        ...
