"""
结算API路由
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_current_user, get_settlement_service
from application.dto import CurrentUser, PaginationParams, SettlementResponseDTO, SettlementStatsDTO
from application.services.access import require_admin
from application.services.settlement_service import SettlementService
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/settlements", tags=["结算"])


@router.post("/activities/{activity_id}", summary="触发活动结算（管理员）", response_model=ApiResponse[SettlementResponseDTO])
async def settle_activity(
    activity_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    """活动须已结束；已完成的结算原样返回"""
    require_admin(current_user)
    settlement = await service.settle_activity(activity_id)
    return success_response(data=SettlementResponseDTO.model_validate(settlement), message="结算完成")


@router.get("/stats", summary="结算统计（管理员）", response_model=ApiResponse[SettlementStatsDTO])
async def settlement_stats(
    current_user: CurrentUser = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    stats = await service.get_pending_settlement_stats(current_user)
    return success_response(data=stats)


@router.get("", summary="俱乐部结算记录", response_model=ApiResponse[List[SettlementResponseDTO]])
async def list_club_settlements(
    club_id: int = Query(..., description="俱乐部ID"),
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    items = await service.list_club_settlements(current_user, club_id, skip=pagination.skip, limit=pagination.limit)
    return success_response(data=[SettlementResponseDTO.model_validate(s) for s in items])


@router.get("/{settlement_id}", summary="结算详情", response_model=ApiResponse[SettlementResponseDTO])
async def get_settlement(
    settlement_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    settlement = await service.get_settlement(current_user, settlement_id)
    return success_response(data=SettlementResponseDTO.model_validate(settlement))
