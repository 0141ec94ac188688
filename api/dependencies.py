"""
API依赖项 - 认证与服务获取

认证由外部服务完成：这里只校验 Bearer JWT（SECRET_KEY/ALGORITHM）并解析出
CurrentUser{id, is_admin}。
"""
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from application.dto import CurrentUser
from application.services.account_service import AccountService
from application.services.enrollment_service import EnrollmentService
from application.services.order_service import OrderService
from application.services.payment_service import PaymentService
from application.services.refund_service import RefundService
from application.services.settlement_service import SettlementService
from application.services.withdrawal_service import WithdrawalService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from infrastructure.container import LedgerServices

http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def decode_access_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.InvalidTokenError:
        raise UnauthorizedException("无效的认证凭据")

    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise UnauthorizedException("认证凭据缺少用户标识")
    return CurrentUser(id=user_id, is_admin=bool(payload.get("is_admin", False)))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> CurrentUser:
    if not credentials or not credentials.credentials:
        raise UnauthorizedException("未提供认证凭据")
    user = decode_access_token(credentials.credentials)
    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def get_services(request: Request) -> LedgerServices:
    return request.app.state.services


def get_enrollment_service(services: LedgerServices = Depends(get_services)) -> EnrollmentService:
    return services.enrollments


def get_order_service(services: LedgerServices = Depends(get_services)) -> OrderService:
    return services.orders


def get_payment_service(services: LedgerServices = Depends(get_services)) -> PaymentService:
    return services.payments


def get_refund_service(services: LedgerServices = Depends(get_services)) -> RefundService:
    return services.refunds


def get_settlement_service(services: LedgerServices = Depends(get_services)) -> SettlementService:
    return services.settlements


def get_account_service(services: LedgerServices = Depends(get_services)) -> AccountService:
    return services.accounts


def get_withdrawal_service(services: LedgerServices = Depends(get_services)) -> WithdrawalService:
    return services.withdrawals
