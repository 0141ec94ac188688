"""
订单领域实体 - 包含订单状态机与定价规则
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from domain.common.exceptions import InvalidStateException, InvariantViolationException
from domain.common.values import ZERO, ensure_utc, to_money, utcnow


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAYING = "PAYING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDING = "REFUNDING"
    REFUNDED = "REFUNDED"
    COMPLETED = "COMPLETED"


# 订单状态机允许的边；任何状态更新都必须落在这些边上
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAYING, OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAYING: frozenset({OrderStatus.PAID, OrderStatus.PENDING}),
    OrderStatus.PAID: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUNDING}),
    OrderStatus.REFUNDING: frozenset({OrderStatus.REFUNDED, OrderStatus.PAID}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
}

# 已确认收款的订单（回调幂等判定）
SETTLED_PAYMENT_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.COMPLETED})


def assert_order_edge(source: OrderStatus, target: OrderStatus) -> None:
    if target not in ORDER_TRANSITIONS[source]:
        raise InvariantViolationException(
            f"非法的订单状态迁移 {source.value} -> {target.value}",
            details={"from": source.value, "to": target.value},
        )


class AddOnType(str, Enum):
    INSURANCE = "INSURANCE"


def prorate_daily_fee(daily_fee: Decimal, start: datetime, end: datetime) -> Tuple[int, Decimal]:
    """按活动跨度的自然日向上取整计费：不足一天按一天计"""
    span = end - start
    if span <= timedelta(0):
        return 0, ZERO
    days = math.ceil(span / timedelta(days=1))
    return days, to_money(daily_fee * days)


@dataclass
class OrderAddOn:
    id: Optional[int]
    order_id: Optional[int]
    type: AddOnType
    unit_price: Decimal
    days: int
    fee: Decimal
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.unit_price = to_money(self.unit_price)
        self.fee = to_money(self.fee)
        self.created_at = ensure_utc(self.created_at)


@dataclass
class Order:
    """订单实体：订单号即网关幂等键"""

    id: Optional[int]
    order_no: str
    enrollment_id: int
    user_id: int
    activity_id: int
    amount: Decimal
    add_on_fee: Decimal
    total_amount: Decimal
    expires_at: datetime
    status: OrderStatus = OrderStatus.PENDING
    verify_code: Optional[str] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        self.add_on_fee = to_money(self.add_on_fee)
        self.total_amount = to_money(self.total_amount)
        for attr in (
            "expires_at", "paid_at", "cancelled_at", "refunded_at",
            "verified_at", "created_at", "updated_at",
        ):
            setattr(self, attr, ensure_utc(getattr(self, attr)))
        if self.total_amount != self.amount + self.add_on_fee:
            raise InvariantViolationException(
                "订单总额必须等于基础金额与附加费之和",
                details={"order_no": self.order_no},
            )

    @classmethod
    def place(
        cls,
        *,
        order_no: str,
        enrollment_id: int,
        user_id: int,
        activity_id: int,
        amount: Decimal,
        add_on_fee: Decimal,
        timeout_minutes: int,
        now: Optional[datetime] = None,
    ) -> "Order":
        now = now or utcnow()
        amount = to_money(amount)
        add_on_fee = to_money(add_on_fee)
        return cls(
            id=None,
            order_no=order_no,
            enrollment_id=enrollment_id,
            user_id=user_id,
            activity_id=activity_id,
            amount=amount,
            add_on_fee=add_on_fee,
            total_amount=amount + add_on_fee,
            expires_at=now + timedelta(minutes=timeout_minutes),
        )

    def belongs_to(self, user_id: int) -> bool:
        return self.user_id == user_id

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """待支付且未过期"""
        return self.status == OrderStatus.PENDING and not self.is_expired(now)

    def require_status(self, *allowed: OrderStatus, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateException(
                f"订单当前状态不允许{action}",
                current_status=self.status,
                details={"order_no": self.order_no},
            )
