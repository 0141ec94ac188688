"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Any, Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class NotFoundException(BusinessException):
    """资源不存在（报名/订单/退款/提现/结算等）"""

    def __init__(self, resource: str, identifier: Any = None):
        details = {"resource": resource}
        if identifier is not None:
            details["id"] = identifier
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{resource} not found",
            error_type="NotFound",
            details=details,
        )


class InvalidStateException(BusinessException):
    """当前状态不允许该操作，details 中携带当前状态"""

    def __init__(
        self,
        message: str,
        *,
        current_status: Any = None,
        details: Optional[dict] = None,
    ):
        full_details = dict(details or {})
        if current_status is not None:
            full_details["current_status"] = getattr(current_status, "value", current_status)
        super().__init__(
            code=BusinessCode.INVALID_STATE,
            message=message,
            error_type="InvalidState",
            details=full_details or None,
            field="status",
        )


class ForbiddenException(BusinessException):
    def __init__(self, message: str = "Operation not permitted", *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="Forbidden",
            details=details,
        )


class ConflictException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=message,
            error_type="Conflict",
            details=details,
        )


class LockBusyException(BusinessException):
    """分布式锁在重试后仍未获取到"""

    def __init__(self, key: str):
        super().__init__(
            code=BusinessCode.LOCK_BUSY,
            message="Resource is busy, please retry later",
            error_type="LockBusy",
            details={"key": key},
        )


class InvariantViolationException(BusinessException):
    """账本不变量被破坏（冻结金额大于余额或可用余额为负），属致命错误，禁止静默修正"""

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.INVARIANT_VIOLATION,
            message=message,
            error_type="InvariantViolation",
            details=details,
        )


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class ExternalGatewayException(BusinessException):
    """支付/退款网关调用失败或超时"""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        recoverable: bool = False,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        self.recoverable = recoverable
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE if recoverable else PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="ExternalGatewayFailure",
            details=full_details,
        )


class SignatureInvalidException(BusinessException):
    """回调签名校验失败，拒绝处理且不改变任何状态"""

    def __init__(self, message: str = "Invalid notify signature", *, provider: str):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="SignatureInvalid",
            details={"provider": provider},
        )
