"""
Local mock gateway for development and tests.

Prepay/query/refund never leave the process; notifications are JSON bodies
authenticated by `X-Mock-Signature` = hex(HMAC-SHA256(secret, raw body)).
"""
from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from typing import Any, Mapping, Optional

from application.dtos.payments import (
    NotifyResult,
    PrepayRequest,
    PrepayResult,
    RefundRequest,
    RefundResult,
    TradeQueryResult,
)
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import SignatureInvalidException
from infrastructure.external.payments.base import BasePaymentClient

SIGNATURE_HEADER = "X-Mock-Signature"


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class MockPaymentClient(BasePaymentClient):
    provider = "mock"

    def __init__(self, cfg: Optional[PaymentSettings] = None) -> None:
        cfg = cfg or payment_settings
        super().__init__(cfg)
        self._secret = cfg.mock.webhook_secret
        # order_no -> trade state reported by query_by_order_no
        self.trades: dict[str, TradeQueryResult] = {}

    def mark_paid(self, order_no: str, transaction_id: Optional[str] = None) -> None:
        self.trades[order_no] = TradeQueryResult(
            order_no=order_no,
            trade_state="SUCCESS",
            transaction_id=transaction_id or f"MOCK{secrets.token_hex(8).upper()}",
        )

    async def create_prepay(self, req: PrepayRequest) -> PrepayResult:  # type: ignore[override]
        prepay_id = f"mock_prepay_{secrets.token_hex(8)}"
        self._log("mock_prepay_created", order_no=req.order_no, amount_minor=req.amount_minor)
        return PrepayResult(prepay_id=prepay_id, client_params={"prepay_id": prepay_id, "provider": self.provider})

    async def query_by_order_no(self, order_no: str) -> TradeQueryResult:  # type: ignore[override]
        return self.trades.get(order_no) or TradeQueryResult(order_no=order_no, trade_state="NOTPAY")

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        self._log("mock_refund_applied", refund_no=req.refund_no, amount_minor=req.amount_minor)
        return RefundResult(gateway_refund_id=f"MOCKRF{secrets.token_hex(6).upper()}", status="SUCCESS")

    def parse_notify(self, headers: Mapping[str, Any], body: bytes) -> NotifyResult:  # type: ignore[override]
        signature = headers.get(SIGNATURE_HEADER) or headers.get(SIGNATURE_HEADER.lower())
        expected = sign_payload(body, self._secret)
        if not signature or not hmac.compare_digest(str(signature), expected):
            raise SignatureInvalidException(provider=self.provider)
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise SignatureInvalidException("Notify body is not valid JSON", provider=self.provider) from exc
        if not isinstance(data, dict) or not data.get("out_trade_no"):
            raise SignatureInvalidException("Notify body missing out_trade_no", provider=self.provider)
        return NotifyResult(
            order_no=str(data["out_trade_no"]),
            trade_state=str(data.get("trade_state", "")),
            transaction_id=data.get("transaction_id"),
            amount_minor=data.get("amount"),
            raw=data,
        )
