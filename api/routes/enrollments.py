"""
报名API路由
"""
from typing import List

from fastapi import APIRouter, Depends

from api.dependencies import get_current_user, get_enrollment_service
from application.dto import CurrentUser, EnrollmentCreateDTO, EnrollmentResponseDTO, PaginationParams
from application.services.enrollment_service import EnrollmentService
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/enrollments", tags=["报名"])


@router.post("", summary="报名活动", response_model=ApiResponse[EnrollmentResponseDTO])
async def create_enrollment(
    payload: EnrollmentCreateDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    """
    占用一个活动名额，报名状态为 PENDING，随后创建订单并支付

    - 名额已满或重复报名返回 409
    """
    enrollment = await service.create_enrollment(
        current_user.id, payload.activity_id, payload.contact_name, payload.contact_phone
    )
    return success_response(data=EnrollmentResponseDTO.model_validate(enrollment), message="报名成功")


@router.get("", summary="我的报名", response_model=ApiResponse[List[EnrollmentResponseDTO]])
async def list_my_enrollments(
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    items = await service.list_my_enrollments(current_user.id, skip=pagination.skip, limit=pagination.limit)
    return success_response(data=[EnrollmentResponseDTO.model_validate(e) for e in items])


@router.get("/{enrollment_id}", summary="报名详情", response_model=ApiResponse[EnrollmentResponseDTO])
async def get_enrollment(
    enrollment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    enrollment = await service.get_enrollment(current_user.id, enrollment_id)
    return success_response(data=EnrollmentResponseDTO.model_validate(enrollment))


@router.post("/{enrollment_id}/cancel", summary="取消报名", response_model=ApiResponse[EnrollmentResponseDTO])
async def cancel_enrollment(
    enrollment_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: EnrollmentService = Depends(get_enrollment_service),
):
    enrollment = await service.cancel_enrollment(current_user.id, enrollment_id)
    return success_response(data=EnrollmentResponseDTO.model_validate(enrollment), message="报名已取消")
