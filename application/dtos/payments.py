"""
Payment gateway DTOs (Pydantic v2) exchanged across the PaymentGateway port.

Amounts cross this boundary in minor units (fen) as the gateways expect them;
conversion from Decimal happens in the application service.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class PrepayRequest(BaseModel):
    order_no: str
    amount_minor: int = Field(gt=0)
    payer_id: str
    description: str
    currency: str = "CNY"


class PrepayResult(BaseModel):
    prepay_id: str
    # Parameters the client SDK needs to open the payment sheet
    client_params: dict[str, Any] = Field(default_factory=dict)


class TradeQueryResult(BaseModel):
    order_no: str
    trade_state: str
    transaction_id: Optional[str] = None
    amount_minor: Optional[int] = None


class RefundRequest(BaseModel):
    order_no: str
    refund_no: str
    amount_minor: int = Field(gt=0)
    total_minor: int = Field(gt=0)
    reason: Optional[str] = None
    currency: str = "CNY"


class RefundResult(BaseModel):
    gateway_refund_id: str
    status: str


class NotifyResult(BaseModel):
    """Verified and decrypted payment notification"""

    order_no: str
    trade_state: str
    transaction_id: Optional[str] = None
    amount_minor: Optional[int] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def is_success(self) -> bool:
        return self.trade_state == "SUCCESS"
