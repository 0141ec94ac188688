"""
结算单实体与结算金额计算
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import InvariantViolationException
from domain.common.values import ZERO, ensure_utc, to_money


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class SettlementFigures:
    total_amount: Decimal
    refund_amount: Decimal
    net_amount: Decimal
    platform_fee: Decimal
    settle_amount: Decimal


def compute_settlement(total_amount: Decimal, refund_amount: Decimal, fee_rate: Decimal) -> SettlementFigures:
    """net = total - refund；fee = net * rate（四舍五入到分）；settle = net - fee"""
    total_amount = to_money(total_amount)
    refund_amount = to_money(refund_amount)
    net = total_amount - refund_amount
    if net < ZERO:
        raise InvariantViolationException(
            "退款总额超过收款总额",
            details={"total_amount": str(total_amount), "refund_amount": str(refund_amount)},
        )
    fee = to_money(net * Decimal(fee_rate))
    return SettlementFigures(
        total_amount=total_amount,
        refund_amount=refund_amount,
        net_amount=net,
        platform_fee=fee,
        settle_amount=net - fee,
    )


@dataclass
class Settlement:
    id: Optional[int]
    settlement_no: str
    activity_id: int
    club_id: int
    total_amount: Decimal
    refund_amount: Decimal
    platform_fee: Decimal
    settle_amount: Decimal
    status: SettlementStatus = SettlementStatus.PENDING
    commission_detail: dict[str, Any] = field(default_factory=dict)
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.total_amount = to_money(self.total_amount)
        self.refund_amount = to_money(self.refund_amount)
        self.platform_fee = to_money(self.platform_fee)
        self.settle_amount = to_money(self.settle_amount)
        self.settled_at = ensure_utc(self.settled_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        if self.settle_amount != self.total_amount - self.refund_amount - self.platform_fee:
            raise InvariantViolationException(
                "结算金额不一致",
                details={"settlement_no": self.settlement_no},
            )

    @property
    def net_amount(self) -> Decimal:
        return self.total_amount - self.refund_amount

    @property
    def is_completed(self) -> bool:
        return self.status == SettlementStatus.COMPLETED
