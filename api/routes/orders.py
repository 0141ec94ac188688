"""
订单API路由 - 下单、取消、核销码与现场核销
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_current_user, get_order_service
from application.dto import (
    CurrentUser,
    OrderCreateDTO,
    OrderResponseDTO,
    PaginationParams,
    VerifyByOrderNoDTO,
    VerifyCodeDTO,
    VerifyOrderDTO,
)
from application.services.order_service import OrderService
from core.response import Response as ApiResponse, success_response
from domain.order.entity import OrderStatus

router = APIRouter(prefix="/orders", tags=["订单"])


@router.post("", summary="创建订单", response_model=ApiResponse[OrderResponseDTO])
async def create_order(
    payload: OrderCreateDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """为待支付报名创建订单；已有未过期待支付订单时原样返回"""
    order = await service.create_order(current_user.id, payload.enrollment_id)
    return success_response(data=OrderResponseDTO.model_validate(order), message="订单已创建")


@router.get("", summary="我的订单", response_model=ApiResponse[List[OrderResponseDTO]])
async def list_my_orders(
    status: Optional[OrderStatus] = Query(None, description="按状态过滤"),
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    orders = await service.list_my_orders(
        current_user.id, status=status, skip=pagination.skip, limit=pagination.limit
    )
    return success_response(data=[OrderResponseDTO.model_validate(o) for o in orders])


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderResponseDTO])
async def get_order(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(current_user.id, order_id)
    return success_response(data=OrderResponseDTO.model_validate(order))


@router.post("/{order_id}/cancel", summary="取消订单", response_model=ApiResponse[OrderResponseDTO])
async def cancel_order(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.cancel_order(current_user.id, order_id)
    return success_response(data=OrderResponseDTO.model_validate(order), message="订单已取消")


@router.get("/{order_id}/verify-code", summary="获取核销码", response_model=ApiResponse[VerifyCodeDTO])
async def get_verify_code(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    code = await service.get_verify_code(current_user.id, order_id)
    return success_response(data=VerifyCodeDTO(order_id=order_id, verify_code=code))


@router.post("/verify", summary="扫码核销", response_model=ApiResponse[OrderResponseDTO])
async def verify_order(
    payload: VerifyOrderDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """俱乐部经营者或活动领队现场核销，订单完成、报名签到"""
    order = await service.verify_order(current_user, payload.code)
    return success_response(data=OrderResponseDTO.model_validate(order), message="核销成功")


@router.post("/verify-by-order-no", summary="按订单号核销", response_model=ApiResponse[OrderResponseDTO])
async def verify_by_order_no(
    payload: VerifyByOrderNoDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = await service.verify_by_order_no(current_user, payload.order_no)
    return success_response(data=OrderResponseDTO.model_validate(order), message="核销成功")
