"""
WeChat Pay v3 adapter using the community `wechatpayv3` SDK.

Features used:
- Request signing with merchant private key (v3)
- Platform certificate verification and webhook resource decryption (AES-256-GCM)
- JSAPI flow (mini program / official account); client paySign built locally
"""
from __future__ import annotations

import json
import secrets
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from wechatpayv3 import WeChatPay, WeChatPayType

from application.dtos.payments import (
    NotifyResult,
    PrepayRequest,
    PrepayResult,
    RefundRequest,
    RefundResult,
    TradeQueryResult,
)
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import ExternalGatewayException, SignatureInvalidException
from infrastructure.external.payments.base import BasePaymentClient


def _decode(message: Any) -> dict:
    if isinstance(message, dict):
        return message
    if not message:
        return {}
    try:
        return json.loads(message)
    except (TypeError, ValueError):
        return {"raw": str(message)}


class WechatPayClient(BasePaymentClient):
    provider = "wechat"

    def __init__(self, cfg: Optional[PaymentSettings] = None, *, sdk: Optional[WeChatPay] = None):
        cfg = cfg or payment_settings
        super().__init__(cfg)
        wx = cfg.wechat
        self._appid = wx.appid
        self._currency = cfg.currency
        if sdk is not None:
            self._wx = sdk
            return
        if not wx.complete:
            raise RuntimeError("WECHAT configuration incomplete")
        key_path = Path(wx.private_key_path)
        private_key = key_path.read_text(encoding="utf-8") if key_path.exists() else wx.private_key_path
        self._wx = WeChatPay(
            wechatpay_type=WeChatPayType.JSAPI,
            mchid=wx.mch_id,
            private_key=private_key,
            cert_serial_no=wx.mch_cert_serial_no,
            appid=wx.appid,
            apiv3_key=wx.api_v3_key,
            notify_url=wx.notify_url,
            cert_dir=wx.platform_cert_dir,
        )

    async def _call(self, op: str, fn, **kwargs) -> dict:
        async def _once() -> dict:
            code, message = await self._in_thread(op, fn, **kwargs)
            data = _decode(message)
            if not 200 <= int(code) < 300:
                self._log("wechat_call_rejected", level="warning", op=op, http_status=code, provider_code=data.get("code"))
                raise ExternalGatewayException(
                    str(data.get("message") or data),
                    provider=self.provider,
                    provider_code=str(data.get("code") or code),
                    recoverable=int(code) >= 500,
                )
            return data

        return await self._with_retry(op, _once)

    def _jsapi_params(self, prepay_id: str) -> dict[str, Any]:
        timestamp = str(int(time.time()))
        nonce = secrets.token_hex(16)
        package = f"prepay_id={prepay_id}"
        return {
            "appId": self._appid,
            "timeStamp": timestamp,
            "nonceStr": nonce,
            "package": package,
            "signType": "RSA",
            "paySign": self._wx.sign([self._appid, timestamp, nonce, package]),
        }

    async def create_prepay(self, req: PrepayRequest) -> PrepayResult:  # type: ignore[override]
        data = await self._call(
            "pay",
            self._wx.pay,
            description=req.description,
            out_trade_no=req.order_no,
            amount={"total": req.amount_minor, "currency": req.currency},
            payer={"openid": req.payer_id},
            pay_type=WeChatPayType.JSAPI,
        )
        prepay_id = data.get("prepay_id")
        if not prepay_id:
            raise ExternalGatewayException("prepay_id missing in response", provider=self.provider)
        self._log("wechat_prepay_created", order_no=req.order_no)
        return PrepayResult(prepay_id=prepay_id, client_params=self._jsapi_params(prepay_id))

    async def query_by_order_no(self, order_no: str) -> TradeQueryResult:  # type: ignore[override]
        data = await self._call("query", self._wx.query, out_trade_no=order_no)
        amount = data.get("amount") or {}
        return TradeQueryResult(
            order_no=order_no,
            trade_state=str(data.get("trade_state", "")),
            transaction_id=data.get("transaction_id"),
            amount_minor=amount.get("total"),
        )

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        data = await self._call(
            "refund",
            self._wx.refund,
            out_refund_no=req.refund_no,
            amount={"refund": req.amount_minor, "total": req.total_minor, "currency": req.currency},
            out_trade_no=req.order_no,
            reason=req.reason,
        )
        self._log("wechat_refund_applied", refund_no=req.refund_no, status=data.get("status"))
        return RefundResult(
            gateway_refund_id=str(data.get("refund_id") or req.refund_no),
            status=str(data.get("status", "PROCESSING")),
        )

    def parse_notify(self, headers: Mapping[str, Any], body: bytes) -> NotifyResult:  # type: ignore[override]
        payload = body.decode("utf-8") if isinstance(body, bytes) else body
        # SDK verifies the platform signature first and returns None on failure
        data = self._wx.callback(headers, payload)
        if not data:
            raise SignatureInvalidException(provider=self.provider)
        resource = data.get("resource") or {}
        if not isinstance(resource, dict) or not resource.get("out_trade_no"):
            raise SignatureInvalidException("Notify resource could not be decrypted", provider=self.provider)
        amount = resource.get("amount") or {}
        return NotifyResult(
            order_no=resource["out_trade_no"],
            trade_state=str(resource.get("trade_state", "")),
            transaction_id=resource.get("transaction_id"),
            amount_minor=amount.get("total"),
            raw=resource,
        )
