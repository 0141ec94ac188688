"""
退款API路由
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_current_user, get_refund_service
from application.dto import (
    CurrentUser,
    PaginationParams,
    RefundCreateDTO,
    RefundPreviewDTO,
    RefundRejectDTO,
    RefundResponseDTO,
)
from application.services.refund_service import RefundService
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/refunds", tags=["退款"])


@router.get("/preview", summary="退款预览", response_model=ApiResponse[RefundPreviewDTO])
async def preview_refund(
    order_id: int = Query(..., description="订单ID"),
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    """按退款策略计算当前可退比例与金额，不产生任何记录"""
    preview = await service.preview_refund(current_user.id, order_id)
    return success_response(data=preview)


@router.post("", summary="申请退款", response_model=ApiResponse[RefundResponseDTO])
async def create_refund(
    payload: RefundCreateDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    refund = await service.create_refund(current_user.id, payload.order_id, payload.reason)
    return success_response(data=RefundResponseDTO.model_validate(refund), message="退款申请已提交")


@router.get("/pending", summary="俱乐部待审核退款", response_model=ApiResponse[List[RefundResponseDTO]])
async def list_pending_refunds(
    club_id: int = Query(..., description="俱乐部ID"),
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    refunds = await service.list_pending_refunds(
        current_user, club_id, skip=pagination.skip, limit=pagination.limit
    )
    return success_response(data=[RefundResponseDTO.model_validate(r) for r in refunds])


@router.get("/{refund_id}", summary="退款详情", response_model=ApiResponse[RefundResponseDTO])
async def get_refund(
    refund_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    refund = await service.get_refund(current_user, refund_id)
    return success_response(data=RefundResponseDTO.model_validate(refund))


@router.post("/{refund_id}/approve", summary="审批通过并退款", response_model=ApiResponse[RefundResponseDTO])
async def approve_refund(
    refund_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    """网关失败时退款回到 APPROVED，可通过 retry 接口重试"""
    refund = await service.approve_refund(current_user, refund_id)
    return success_response(data=RefundResponseDTO.model_validate(refund), message="退款已完成")


@router.post("/{refund_id}/retry", summary="重试退款", response_model=ApiResponse[RefundResponseDTO])
async def retry_refund(
    refund_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    refund = await service.retry_refund(current_user, refund_id)
    return success_response(data=RefundResponseDTO.model_validate(refund), message="退款已完成")


@router.post("/{refund_id}/reject", summary="拒绝退款", response_model=ApiResponse[RefundResponseDTO])
async def reject_refund(
    refund_id: int,
    payload: RefundRejectDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    refund = await service.reject_refund(current_user, refund_id, payload.reason)
    return success_response(data=RefundResponseDTO.model_validate(refund), message="退款已拒绝")
