"""
退款领域实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidStateException, InvariantViolationException
from domain.common.values import ZERO, ensure_utc, to_money


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


@dataclass
class Refund:
    """退款申请：一笔已支付订单至多一条"""

    id: Optional[int]
    refund_no: str
    order_id: int
    user_id: int
    activity_id: int
    amount: Decimal
    refund_percent: int
    status: RefundStatus = RefundStatus.PENDING
    reason: Optional[str] = None
    reject_reason: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    gateway_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        if self.amount < ZERO:
            raise InvariantViolationException("退款金额不能为负", details={"refund_no": self.refund_no})
        self.reviewed_at = ensure_utc(self.reviewed_at)
        self.completed_at = ensure_utc(self.completed_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def require_status(self, *allowed: RefundStatus, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateException(
                f"退款当前状态不允许{action}",
                current_status=self.status,
                details={"refund_no": self.refund_no},
            )
