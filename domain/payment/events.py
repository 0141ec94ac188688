"""
Ledger domain events.

Dataclass events record money-pipeline facts for downstream consumers
(notifications, achievements, projections). They are published after the
owning unit of work commits; the domain stays free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import uuid


@dataclass
class LedgerEvent:
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()), kw_only=True)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.name
        return data


@dataclass
class PaymentSucceeded(LedgerEvent):
    order_id: int
    order_no: str
    user_id: int
    amount: str
    transaction_id: Optional[str] = None


@dataclass
class PaymentFailed(LedgerEvent):
    order_id: int
    order_no: str
    trade_state: str


@dataclass
class OrderCancelled(LedgerEvent):
    order_id: int
    order_no: str
    reason: str


@dataclass
class EnrollmentCheckedIn(LedgerEvent):
    enrollment_id: int
    order_id: int
    user_id: int
    activity_id: int


@dataclass
class RefundCompleted(LedgerEvent):
    refund_id: int
    refund_no: str
    order_id: int
    user_id: int
    amount: str


@dataclass
class RefundRejected(LedgerEvent):
    refund_id: int
    order_id: int
    user_id: int
    reason: Optional[str] = None


@dataclass
class SettlementCompleted(LedgerEvent):
    settlement_id: int
    activity_id: int
    club_id: int
    settle_amount: str


@dataclass
class WithdrawalCompleted(LedgerEvent):
    withdrawal_id: int
    club_id: int
    amount: str
