"""
俱乐部资金账户与账本流水

不变量：0 <= frozen_balance <= balance；可用余额 = balance - frozen_balance >= 0。
每次余额变化都生成一条流水，流水的 balance_after 与下一条的 balance_before 首尾相接。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvariantViolationException
from domain.common.values import ZERO, ensure_utc, to_money


class TransactionType(str, Enum):
    INCOME = "INCOME"
    SETTLEMENT = "SETTLEMENT"
    FEE = "FEE"
    REFUND = "REFUND"
    WITHDRAWAL = "WITHDRAWAL"


@dataclass
class AccountTransaction:
    """追加写入的账本流水（金额带符号）"""

    id: Optional[int]
    account_id: int
    club_id: int
    type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    related_type: Optional[str] = None
    related_id: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        self.balance_before = to_money(self.balance_before)
        self.balance_after = to_money(self.balance_after)
        self.created_at = ensure_utc(self.created_at)


@dataclass
class ClubAccount:
    id: Optional[int]
    club_id: int
    balance: Decimal = ZERO
    frozen_balance: Decimal = ZERO
    total_income: Decimal = ZERO
    total_withdraw: Decimal = ZERO
    bank_name: Optional[str] = None
    bank_account_encrypted: Optional[str] = None
    bank_account_last4: Optional[str] = None
    account_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.balance = to_money(self.balance)
        self.frozen_balance = to_money(self.frozen_balance)
        self.total_income = to_money(self.total_income)
        self.total_withdraw = to_money(self.total_withdraw)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def available_balance(self) -> Decimal:
        return self.balance - self.frozen_balance

    @property
    def has_bank_details(self) -> bool:
        return bool(self.bank_name and self.bank_account_encrypted and self.account_name)

    def _check_invariants(self) -> None:
        if self.frozen_balance < ZERO or self.frozen_balance > self.balance:
            raise InvariantViolationException(
                "账户冻结金额越界",
                details={
                    "club_id": self.club_id,
                    "balance": str(self.balance),
                    "frozen_balance": str(self.frozen_balance),
                },
            )

    def _post(
        self,
        tx_type: TransactionType,
        amount: Decimal,
        *,
        related_type: Optional[str],
        related_id: Optional[int],
        description: Optional[str],
    ) -> AccountTransaction:
        before = self.balance
        self.balance = before + amount
        self._check_invariants()
        return AccountTransaction(
            id=None,
            account_id=self.id,
            club_id=self.club_id,
            type=tx_type,
            amount=amount,
            balance_before=before,
            balance_after=self.balance,
            related_type=related_type,
            related_id=related_id,
            description=description,
        )

    def credit_settlement(
        self,
        net_amount: Decimal,
        platform_fee: Decimal,
        *,
        settlement_id: int,
        description: Optional[str] = None,
    ) -> list[AccountTransaction]:
        """入账结算：INCOME(+净额) 与 FEE(-平台费)，余额与累计收入净增 settle_amount"""
        net_amount = to_money(net_amount)
        platform_fee = to_money(platform_fee)
        if net_amount < ZERO or platform_fee < ZERO or platform_fee > net_amount:
            raise InvariantViolationException(
                "结算金额无效",
                details={"net_amount": str(net_amount), "platform_fee": str(platform_fee)},
            )
        rows = [
            self._post(
                TransactionType.INCOME, net_amount,
                related_type="settlement", related_id=settlement_id,
                description=description or "活动结算收入",
            )
        ]
        if platform_fee > ZERO:
            rows.append(
                self._post(
                    TransactionType.FEE, -platform_fee,
                    related_type="settlement", related_id=settlement_id,
                    description="平台服务费",
                )
            )
        self.total_income += net_amount - platform_fee
        return rows

    def freeze(self, amount: Decimal) -> None:
        amount = to_money(amount)
        if amount <= ZERO or amount > self.available_balance:
            raise InvariantViolationException(
                "冻结金额超出可用余额",
                details={"amount": str(amount), "available": str(self.available_balance)},
            )
        self.frozen_balance += amount
        self._check_invariants()

    def unfreeze(self, amount: Decimal) -> None:
        self.frozen_balance -= to_money(amount)
        self._check_invariants()

    def settle_withdrawal(self, amount: Decimal, *, withdrawal_id: int) -> AccountTransaction:
        """提现打款完成：余额与冻结同时扣减，累计提现增加"""
        amount = to_money(amount)
        if amount > self.frozen_balance:
            raise InvariantViolationException(
                "提现金额超过冻结金额",
                details={"amount": str(amount), "frozen_balance": str(self.frozen_balance)},
            )
        self.frozen_balance -= amount
        row = self._post(
            TransactionType.WITHDRAWAL, -amount,
            related_type="withdrawal", related_id=withdrawal_id,
            description="提现",
        )
        self.total_withdraw += amount
        return row


def mask_account_number(account_no: Optional[str]) -> Optional[str]:
    """脱敏：保留前 4 位与后 4 位"""
    if not account_no:
        return None
    digits = account_no.replace(" ", "")
    if len(digits) <= 8:
        return "*" * len(digits)
    return f"{digits[:4]}{'*' * (len(digits) - 8)}{digits[-4:]}"
