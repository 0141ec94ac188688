"""
通用值对象与辅助函数：时间、金额、业务单号
"""
from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_NO_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """数据库（如 SQLite）可能返回 naive datetime，统一视为 UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_money(value: Union[Decimal, int, str, float, None], *, rounding: str = ROUND_HALF_UP) -> Decimal:
    """统一金额精度为分；float 先转 str 避免二进制误差"""
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=rounding)


def money_floor(value: Decimal) -> Decimal:
    return to_money(value, rounding=ROUND_DOWN)


def to_minor_units(amount: Decimal) -> int:
    """元 → 分（网关以最小货币单位计价）"""
    return int((to_money(amount) * 100).to_integral_value())


def generate_business_no(prefix: str = "", *, now: Optional[datetime] = None) -> str:
    """业务单号：[前缀] + 14 位 UTC 时间戳 + 6 位随机大写字母数字"""
    ts = (now or utcnow()).strftime("%Y%m%d%H%M%S")
    suffix = "".join(secrets.choice(_NO_ALPHABET) for _ in range(6))
    return f"{prefix}{ts}{suffix}"
