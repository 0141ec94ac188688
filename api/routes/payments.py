"""
Payments API routes.

Prepay, compensation sync, the development-only mock success shortcut and
the gateway notify endpoint. Keep this thin: no SDK details here.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_current_user, get_payment_service
from application.dto import (
    CurrentUser,
    OrderResponseDTO,
    PaymentResponseDTO,
    PaymentSyncDTO,
    PrepayDTO,
    PrepayResponseDTO,
)
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, gateway_ack, success_response
from domain.common.exceptions import NotFoundException, SignatureInvalidException
from infrastructure.external.payments import provider_alias

router = APIRouter(prefix="/payments", tags=["支付"])
logger = get_logger(__name__)


@router.post("/notify/{provider}", summary="支付结果回调")
async def payment_notify(
    provider: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    网关异步通知

    验签失败返回 400；其余情况（含重复通知、并发处理中）一律应答 SUCCESS。
    """
    if provider_alias(provider) != service.provider:
        raise NotFoundException("PaymentProvider", provider)
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    try:
        return await service.handle_notify(headers, raw_body)
    except SignatureInvalidException as exc:
        logger.warning("payment_notify_signature_invalid", provider=provider, error=exc.message)
        return JSONResponse(status_code=400, content=gateway_ack(False, exc.message))


@router.post("/prepay", summary="发起支付", response_model=ApiResponse[PrepayResponseDTO])
async def prepay(
    payload: PrepayDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.prepay(current_user.id, payload.order_id, payer_id=payload.open_id)
    return success_response(data=result, message="预支付单已创建")


@router.post("/{order_id}/sync", summary="主动查询支付结果", response_model=ApiResponse[PaymentSyncDTO])
async def sync_payment(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.sync_payment_status(order_id, user_id=current_user.id)
    return success_response(data=result)


@router.post("/{order_id}/mock-success", summary="模拟支付成功（仅开发环境）", response_model=ApiResponse[OrderResponseDTO])
async def mock_payment_success(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    order = await service.mock_payment_success(current_user.id, order_id)
    return success_response(data=OrderResponseDTO.model_validate(order), message="模拟支付成功")


@router.get("/{order_id}", summary="支付记录", response_model=ApiResponse[PaymentResponseDTO])
async def get_payment(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.get_payment(current_user.id, order_id)
    return success_response(data=PaymentResponseDTO.model_validate(payment))
