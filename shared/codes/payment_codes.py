"""
Payment specific codes and gateway trade-state mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002


# Gateway trade_state → internal payment outcome.
# Only SUCCESS is terminal-good; failure states release the order for retry.
WECHAT_TRADE_STATE = {
    "SUCCESS": "success",
    "NOTPAY": "pending",
    "USERPAYING": "pending",
    "ACCEPT": "pending",
    "REFUND": "success",
    "CLOSED": "failed",
    "REVOKED": "failed",
    "PAYERROR": "failed",
}

FAILED_TRADE_STATES = frozenset(k for k, v in WECHAT_TRADE_STATE.items() if v == "failed")


__all__ = ["PaymentCode", "WECHAT_TRADE_STATE", "FAILED_TRADE_STATES"]
