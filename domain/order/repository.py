"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .entity import Order, OrderAddOn, OrderStatus


class OrderRepository(ABC):

    @abstractmethod
    async def create(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def add_add_on(self, add_on: OrderAddOn) -> OrderAddOn:
        ...

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        ...

    @abstractmethod
    async def get_by_order_no(self, order_no: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def get_latest_for_enrollment(self, enrollment_id: int) -> Optional[Order]:
        """报名最近一笔订单（被取消的订单可被新订单取代）"""
        ...

    @abstractmethod
    async def list_add_ons(self, order_id: int) -> List[OrderAddOn]:
        ...

    @abstractmethod
    async def list_by_user(
        self,
        user_id: int,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Order]:
        ...

    @abstractmethod
    async def list_expired_pending(self, now: datetime, limit: int = 500) -> List[Order]:
        """待支付且 expires_at < now 的订单"""
        ...

    @abstractmethod
    async def list_by_activity(
        self, activity_id: int, statuses: Iterable[OrderStatus]
    ) -> List[Order]:
        ...

    @abstractmethod
    async def list_by_club(
        self,
        club_id: int,
        statuses: Iterable[OrderStatus],
        paid_from: Optional[datetime] = None,
        paid_to: Optional[datetime] = None,
    ) -> List[Order]:
        """俱乐部下各活动的订单，可按 paid_at 落在 [paid_from, paid_to) 过滤"""
        ...

    @abstractmethod
    async def count_by_club(self, club_id: int, statuses: Iterable[OrderStatus]) -> int:
        ...

    @abstractmethod
    async def totals_by_activity(
        self, activity_ids: Iterable[int], statuses: Iterable[OrderStatus]
    ) -> Dict[int, Tuple[int, Decimal]]:
        """activity_id -> (订单数, 订单总额)；没有订单的活动不出现在结果中"""
        ...

    @abstractmethod
    async def transition(
        self,
        order_id: int,
        expected: Iterable[OrderStatus],
        new_status: OrderStatus,
        **values,
    ) -> bool:
        """条件更新：当前状态属于 expected 才更新为 new_status，返回是否命中"""
        ...

    @abstractmethod
    async def set_verify_code(self, order_id: int, code: str) -> bool:
        """仅在尚未生成核销码时写入，返回是否写入成功"""
        ...
