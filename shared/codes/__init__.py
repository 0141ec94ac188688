"""
跨层共享的业务码（Domain/Core/API 共用）

通用码在 `shared.codes`，支付网关相关码在 `shared.codes.payment_codes`。
HTTP 状态码映射见 core.exceptions。
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003  # Withdrawal amount / bank details / refund policy shape

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006
    INVALID_STATE = 20007  # Operation not allowed from current status
    CONFLICT = 20008  # Duplicate enrollment / live order / refund, capacity exhausted
    LOCK_BUSY = 20010  # Resource is being processed by another worker

    # Authorization errors (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003
    INVARIANT_VIOLATION = 40010  # Ledger mutation would break balance invariants


__all__ = ["BusinessCode"]
