"""
报名领域实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidStateException
from domain.common.values import ensure_utc, to_money, utcnow


class EnrollmentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    CHECKED_IN = "CHECKED_IN"
    REFUNDED = "REFUNDED"


# 终态报名不占用名额，也不阻止同一用户重新报名
TERMINAL_ENROLLMENT_STATUSES = frozenset({EnrollmentStatus.CANCELLED, EnrollmentStatus.REFUNDED})


@dataclass
class Enrollment:
    """报名实体：一个用户在一个活动上的名额占用"""

    id: Optional[int]
    activity_id: int
    user_id: int
    amount: Decimal
    status: EnrollmentStatus = EnrollmentStatus.PENDING
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        self.cancelled_at = ensure_utc(self.cancelled_at)
        self.checked_in_at = ensure_utc(self.checked_in_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ENROLLMENT_STATUSES

    def belongs_to(self, user_id: int) -> bool:
        return self.user_id == user_id

    def cancel(self, now: Optional[datetime] = None) -> None:
        if self.status not in (EnrollmentStatus.PENDING, EnrollmentStatus.PAID):
            raise InvalidStateException("报名当前状态不可取消", current_status=self.status)
        self.status = EnrollmentStatus.CANCELLED
        self.cancelled_at = now or utcnow()
