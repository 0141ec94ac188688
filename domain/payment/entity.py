"""
支付领域实体 - 包含支付核心业务规则

一笔订单对应一条支付记录；SUCCESS 为单向终态，不允许回退。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidStateException
from domain.common.values import ensure_utc, to_money, utcnow


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class Payment:
    id: Optional[int]
    order_id: int
    order_no: str
    user_id: int
    amount: Decimal
    provider: str
    status: PaymentStatus = PaymentStatus.PENDING
    prepay_id: Optional[str] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        self.paid_at = ensure_utc(self.paid_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def is_success(self) -> bool:
        return self.status == PaymentStatus.SUCCESS

    def restart(self, prepay_id: str, amount: Decimal) -> None:
        """重新下单（上一次失败或未完成）"""
        if self.is_success:
            raise InvalidStateException("订单已支付成功", current_status=self.status)
        self.status = PaymentStatus.PENDING
        self.prepay_id = prepay_id
        self.amount = to_money(amount)
        self.failure_reason = None

    def mark_success(self, transaction_id: Optional[str], now: Optional[datetime] = None) -> None:
        if self.is_success:
            return
        self.status = PaymentStatus.SUCCESS
        self.transaction_id = transaction_id
        self.failure_reason = None
        self.paid_at = now or utcnow()

    def mark_failed(self, reason: Optional[str] = None) -> None:
        if self.is_success:
            raise InvalidStateException("支付成功后不可标记为失败", current_status=self.status)
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
