"""
核销码：HMAC 签名、带时间窗口的离线可校验凭证

格式：base64("{order_id}:{issued_at_ms}:{hmac_sha256(secret, "{order_id}:{issued_at_ms}")[:8]}")
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.values import utcnow

_SIGNATURE_LENGTH = 8


@dataclass(frozen=True)
class VerifyCodeClaims:
    order_id: int
    issued_at_ms: int


class VerifyCodeSigner:
    def __init__(self, secret: str, *, max_age: timedelta = timedelta(days=7)) -> None:
        if not secret:
            raise ValueError("verify secret must not be empty")
        self._secret = secret.encode("utf-8")
        self._max_age = max_age

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()
        return digest[:_SIGNATURE_LENGTH]

    def generate(self, order_id: int, *, now: Optional[datetime] = None) -> str:
        issued_at_ms = int((now or utcnow()).timestamp() * 1000)
        payload = f"{order_id}:{issued_at_ms}"
        raw = f"{payload}:{self._sign(payload)}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def parse(self, code: str, *, now: Optional[datetime] = None) -> VerifyCodeClaims:
        """校验签名与时效，返回核销码中的订单信息；失败抛出 DomainValidationException"""
        try:
            decoded = base64.b64decode(code.encode("ascii"), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError):
            raise DomainValidationException("核销码格式无效", field="code")

        parts = decoded.split(":")
        if len(parts) != 3:
            raise DomainValidationException("核销码格式无效", field="code")
        order_part, ts_part, signature = parts
        if not (order_part.isdigit() and ts_part.isdigit()):
            raise DomainValidationException("核销码格式无效", field="code")

        expected = self._sign(f"{order_part}:{ts_part}")
        if not hmac.compare_digest(expected, signature):
            raise DomainValidationException("核销码签名无效", field="code")

        issued_at_ms = int(ts_part)
        now_ms = int((now or utcnow()).timestamp() * 1000)
        if now_ms - issued_at_ms > self._max_age.total_seconds() * 1000:
            raise DomainValidationException("核销码已过期", field="code")

        return VerifyCodeClaims(order_id=int(order_part), issued_at_ms=issued_at_ms)
