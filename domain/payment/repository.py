"""
支付记录仓储接口

一个订单至多一条支付记录（order_id 唯一），重新发起支付时复用并改写该记录。
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Payment


class PaymentRepository(ABC):

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """写入支付记录；同一订单重复写入抛 ConflictException"""
        ...

    @abstractmethod
    async def get_by_order_id(self, order_id: int) -> Optional[Payment]:
        ...

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """按 id 覆盖状态、网关流水号、失败原因与支付时间"""
        ...
