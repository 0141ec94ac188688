"""
账本报表：按流水类型汇总金额，按自然日/自然月分桶

金额口径：收入取正值，退款、提现、平台费取绝对值；净收入 = 收入 - 退款 - 平台费。
时间一律按 UTC 切分。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, Tuple

from domain.common.exceptions import DomainValidationException
from domain.common.values import ZERO, ensure_utc, to_money

from .entity import AccountTransaction, TransactionType


@dataclass
class LedgerTotals:
    income: Decimal = ZERO
    refund: Decimal = ZERO
    withdrawal: Decimal = ZERO
    platform_fee: Decimal = ZERO
    settlement: Decimal = ZERO

    @property
    def net_income(self) -> Decimal:
        return to_money(self.income - self.refund - self.platform_fee)

    def add(self, row: AccountTransaction) -> None:
        if row.type == TransactionType.INCOME:
            self.income = to_money(self.income + row.amount)
        elif row.type == TransactionType.REFUND:
            self.refund = to_money(self.refund + abs(row.amount))
        elif row.type == TransactionType.WITHDRAWAL:
            self.withdrawal = to_money(self.withdrawal + abs(row.amount))
        elif row.type == TransactionType.FEE:
            self.platform_fee = to_money(self.platform_fee + abs(row.amount))
        elif row.type == TransactionType.SETTLEMENT:
            self.settlement = to_money(self.settlement + row.amount)


@dataclass
class DailyBucket:
    day: date
    totals: LedgerTotals = field(default_factory=LedgerTotals)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def month_window(year: int, month: int) -> Tuple[datetime, datetime]:
    """[当月 1 日 00:00, 次月 1 日 00:00)"""
    if not 1 <= month <= 12:
        raise DomainValidationException("月份必须在 1-12 之间", field="month")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 else datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def day_range_window(start_day: date, end_day: date, *, max_days: int = 366) -> Tuple[datetime, datetime]:
    """[start_day 00:00, end_day 次日 00:00)"""
    if end_day < start_day:
        raise DomainValidationException("结束日期不能早于开始日期", field="end_date")
    if (end_day - start_day).days + 1 > max_days:
        raise DomainValidationException(f"报表区间不能超过 {max_days} 天", field="end_date")
    return start_of_day(start_day), start_of_day(end_day + timedelta(days=1))


def summarize(rows: Iterable[AccountTransaction]) -> LedgerTotals:
    totals = LedgerTotals()
    for row in rows:
        totals.add(row)
    return totals


def daily_report(rows: Iterable[AccountTransaction]) -> list[DailyBucket]:
    """按流水日期分桶，只返回有流水的日期，日期升序"""
    buckets: Dict[date, DailyBucket] = {}
    for row in rows:
        day = ensure_utc(row.created_at).date()
        bucket = buckets.setdefault(day, DailyBucket(day=day))
        bucket.totals.add(row)
    return [buckets[day] for day in sorted(buckets)]


def daily_amounts(points: Iterable[Tuple[datetime, Decimal]], last_day: date, days: int) -> list[Tuple[date, Decimal]]:
    """截至 last_day 的连续 days 天金额（无数据的日期补 0），日期升序"""
    series: Dict[date, Decimal] = {last_day - timedelta(days=offset): ZERO for offset in range(days)}
    for ts, amount in points:
        day = ensure_utc(ts).date()
        if day in series:
            series[day] = to_money(series[day] + amount)
    return sorted(series.items())
