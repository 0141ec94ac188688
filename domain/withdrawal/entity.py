"""
提现申请实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidStateException, InvariantViolationException
from domain.common.values import ZERO, ensure_utc, to_money


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


@dataclass
class Withdrawal:
    id: Optional[int]
    withdrawal_no: str
    club_id: int
    account_id: int
    amount: Decimal
    fee: Decimal
    actual_amount: Decimal
    applicant_id: int
    bank_name: str
    bank_account_encrypted: str
    account_name: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    transferred_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        self.fee = to_money(self.fee)
        self.actual_amount = to_money(self.actual_amount)
        self.reviewed_at = ensure_utc(self.reviewed_at)
        self.transferred_at = ensure_utc(self.transferred_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        if self.fee < ZERO or self.actual_amount != self.amount - self.fee:
            raise InvariantViolationException(
                "提现到账金额与手续费不一致",
                details={"withdrawal_no": self.withdrawal_no},
            )

    def require_status(self, *allowed: WithdrawalStatus, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateException(
                f"提现当前状态不允许{action}",
                current_status=self.status,
                details={"withdrawal_no": self.withdrawal_no},
            )
