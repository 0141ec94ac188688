"""
活动与俱乐部的只读投影

活动、俱乐部由外部模块维护，资金链路只读取定价、容量、时间与归属等字段。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.values import ensure_utc, to_money, utcnow


class ActivityStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    FULL = "FULL"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ClubRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


@dataclass
class Activity:
    id: int
    club_id: int
    title: str
    price: Decimal
    capacity: int
    start_time: datetime
    end_time: datetime
    status: ActivityStatus
    leader_id: Optional[int] = None
    insurance_daily_fee: Optional[Decimal] = None
    refund_policy: Optional[dict] = None

    def __post_init__(self) -> None:
        self.price = to_money(self.price)
        if self.insurance_daily_fee is not None:
            self.insurance_daily_fee = to_money(self.insurance_daily_fee)
        self.start_time = ensure_utc(self.start_time)
        self.end_time = ensure_utc(self.end_time)

    def has_started(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.start_time

    def hours_until_start(self, now: Optional[datetime] = None) -> float:
        return (self.start_time - (now or utcnow())).total_seconds() / 3600

    @property
    def is_enrollable(self) -> bool:
        return self.status == ActivityStatus.PUBLISHED


@dataclass
class Club:
    id: int
    name: str
    owner_id: int
    default_refund_policy: Optional[dict] = None
    # user_id -> role
    members: dict[int, ClubRole] = field(default_factory=dict)

    def is_operator(self, user_id: int) -> bool:
        """俱乐部经营者：创建者或管理员"""
        if user_id == self.owner_id:
            return True
        return self.members.get(user_id) in (ClubRole.OWNER, ClubRole.ADMIN)
