"""
支付网关端口：应用层只依赖该协议，具体网关由 infrastructure 注入
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from application.dtos.payments import (
    NotifyResult,
    PrepayRequest,
    PrepayResult,
    RefundRequest,
    RefundResult,
    TradeQueryResult,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Third-party payment channel.

    Amounts cross this boundary in minor units (fen). Calls raise
    ExternalGatewayException on failure; recoverable=True marks timeouts and
    5xx responses that are safe to resubmit with the same order/refund number.
    parse_notify authenticates the delivery before decoding it and raises
    SignatureInvalidException otherwise.
    """

    provider: str

    async def create_prepay(self, req: PrepayRequest) -> PrepayResult: ...

    async def query_by_order_no(self, order_no: str) -> TradeQueryResult: ...

    async def refund(self, req: RefundRequest) -> RefundResult: ...

    def parse_notify(self, headers: Mapping[str, Any], body: bytes) -> NotifyResult: ...

    async def aclose(self) -> None: ...
