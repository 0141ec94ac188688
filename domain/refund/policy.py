"""
退款策略引擎：按距活动开始的小时数分档计算可退比例
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from domain.common.exceptions import DomainValidationException
from domain.common.values import ZERO, money_floor


@dataclass(frozen=True)
class RefundTier:
    hours_before_start: int
    refund_percent: int


@dataclass(frozen=True)
class RefundQuote:
    refundable: bool
    refund_percent: int
    refund_amount: Decimal
    hours_until_start: float
    reason: Optional[str] = None


class RefundPolicy:
    """分档规则 + 不可退窗口 (no_refund_hours)"""

    def __init__(self, tiers: Iterable[RefundTier], no_refund_hours: int) -> None:
        ordered = sorted(tiers, key=lambda t: t.hours_before_start, reverse=True)
        if not ordered:
            raise DomainValidationException("退款策略至少需要一个档位", field="tiers")
        for tier in ordered:
            if not 0 <= tier.refund_percent <= 100:
                raise DomainValidationException("退款比例需在 0-100 之间", field="refund_percent")
        self.tiers: Sequence[RefundTier] = tuple(ordered)
        self.no_refund_hours = no_refund_hours

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundPolicy":
        """从活动/俱乐部存储的 JSON 规则构建"""
        tiers = [
            RefundTier(int(rule["hours_before_start"]), int(rule["refund_percent"]))
            for rule in data.get("tiers") or []
        ]
        return cls(tiers, int(data.get("no_refund_hours", 0)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "tiers": [
                {"hours_before_start": t.hours_before_start, "refund_percent": t.refund_percent}
                for t in self.tiers
            ],
            "no_refund_hours": self.no_refund_hours,
        }

    def percent_for(self, hours_until_start: float) -> Optional[int]:
        """返回适用比例；落入不可退窗口返回 None"""
        if hours_until_start < self.no_refund_hours:
            return None
        for tier in self.tiers:
            if hours_until_start >= tier.hours_before_start:
                return tier.refund_percent
        # 未命中任何档位时按最低档兜底
        return self.tiers[-1].refund_percent

    def quote(self, amount: Decimal, hours_until_start: float) -> RefundQuote:
        if hours_until_start <= 0:
            return RefundQuote(False, 0, ZERO, hours_until_start, reason="活动已开始")
        percent = self.percent_for(hours_until_start)
        if percent is None:
            return RefundQuote(
                False, 0, ZERO, hours_until_start,
                reason=f"活动开始前 {self.no_refund_hours} 小时内不可退款",
            )
        refund_amount = money_floor(amount * percent / 100)
        return RefundQuote(refund_amount > ZERO, percent, refund_amount, hours_until_start)
