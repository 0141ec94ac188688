"""
资金API路由 - 俱乐部账户、银行信息、流水、报表看板与提现
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_account_service, get_current_user, get_withdrawal_service
from application.dto import (
    AccountDetailDTO,
    ActivityRankingDTO,
    BankAccountUpdateDTO,
    CurrentUser,
    DailyAmountDTO,
    DailyLedgerReportDTO,
    FinanceDashboardDTO,
    MonthlyLedgerStatsDTO,
    PaginationParams,
    TransactionResponseDTO,
    WithdrawalCreateDTO,
    WithdrawalRejectDTO,
    WithdrawalResponseDTO,
)
from application.services.account_service import AccountService
from application.services.withdrawal_service import WithdrawalService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.account.entity import TransactionType
from domain.withdrawal.entity import WithdrawalStatus

router = APIRouter(prefix="/finance", tags=["资金"])


@router.get("/clubs/{club_id}/account", summary="账户详情", response_model=ApiResponse[AccountDetailDTO])
async def get_account(
    club_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.get_account_detail(current_user, club_id))


@router.put("/clubs/{club_id}/bank-account", summary="设置提现银行账户", response_model=ApiResponse[AccountDetailDTO])
async def update_bank_account(
    club_id: int,
    payload: BankAccountUpdateDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    detail = await service.update_bank_account(
        current_user,
        club_id,
        bank_name=payload.bank_name,
        account_no=payload.account_no,
        account_name=payload.account_name,
    )
    return success_response(data=detail, message="银行账户已更新")


@router.get(
    "/clubs/{club_id}/transactions",
    summary="账户流水",
    response_model=ApiResponse[PaginatedData[TransactionResponseDTO]],
)
async def list_transactions(
    club_id: int,
    tx_type: Optional[TransactionType] = Query(None, alias="type", description="流水类型"),
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    items, total = await service.list_transactions(
        current_user, club_id, tx_type=tx_type, skip=pagination.skip, limit=pagination.limit
    )
    return paginated_response(
        items=[TransactionResponseDTO.model_validate(t) for t in items],
        total=total,
        page=pagination.page,
        size=pagination.size,
    )


@router.get(
    "/clubs/{club_id}/transactions/monthly",
    summary="月度流水统计",
    response_model=ApiResponse[MonthlyLedgerStatsDTO],
)
async def get_monthly_stats(
    club_id: int,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    """缺省为当前月份（UTC）"""
    return success_response(data=await service.get_monthly_stats(current_user, club_id, year=year, month=month))


@router.get(
    "/clubs/{club_id}/transactions/report",
    summary="财务日报",
    response_model=ApiResponse[List[DailyLedgerReportDTO]],
)
async def get_finance_report(
    club_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.get_finance_report(current_user, club_id, start_date, end_date))


@router.get("/clubs/{club_id}/dashboard", summary="资金看板", response_model=ApiResponse[FinanceDashboardDTO])
async def get_dashboard(
    club_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.get_dashboard_stats(current_user, club_id))


@router.get(
    "/clubs/{club_id}/dashboard/income-trend",
    summary="收入趋势",
    response_model=ApiResponse[List[DailyAmountDTO]],
)
async def get_income_trend(
    club_id: int,
    days: int = Query(7, ge=1, le=90),
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.get_income_trend(current_user, club_id, days=days))


@router.get(
    "/clubs/{club_id}/dashboard/activity-ranking",
    summary="活动收入排行",
    response_model=ApiResponse[List[ActivityRankingDTO]],
)
async def get_activity_ranking(
    club_id: int,
    limit: int = Query(10, ge=1, le=50),
    current_user: CurrentUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.get_activity_ranking(current_user, club_id, limit=limit))



@router.post("/clubs/{club_id}/withdrawals", summary="申请提现", response_model=ApiResponse[WithdrawalResponseDTO])
async def create_withdrawal(
    club_id: int,
    payload: WithdrawalCreateDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    """申请金额从可用余额冻结，审核拒绝后解冻"""
    withdrawal = await service.create_withdrawal(current_user, club_id, payload.amount)
    return success_response(data=WithdrawalResponseDTO.model_validate(withdrawal), message="提现申请已提交")


@router.get("/clubs/{club_id}/withdrawals", summary="俱乐部提现记录", response_model=ApiResponse[List[WithdrawalResponseDTO]])
async def list_withdrawals(
    club_id: int,
    status: Optional[WithdrawalStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    items = await service.list_withdrawals(
        current_user, club_id, status=status, skip=pagination.skip, limit=pagination.limit
    )
    return success_response(data=[WithdrawalResponseDTO.model_validate(w) for w in items])


@router.get(
    "/clubs/{club_id}/withdrawals/{withdrawal_id}",
    summary="提现详情",
    response_model=ApiResponse[WithdrawalResponseDTO],
)
async def get_withdrawal(
    club_id: int,
    withdrawal_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    withdrawal = await service.get_withdrawal(current_user, club_id, withdrawal_id)
    return success_response(data=WithdrawalResponseDTO.model_validate(withdrawal))



@router.get("/withdrawals/pending", summary="待审核提现（管理员）", response_model=ApiResponse[List[WithdrawalResponseDTO]])
async def list_pending_withdrawals(
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    items = await service.list_pending_withdrawals(current_user, skip=pagination.skip, limit=pagination.limit)
    return success_response(data=[WithdrawalResponseDTO.model_validate(w) for w in items])


@router.post("/withdrawals/{withdrawal_id}/approve", summary="审核通过（管理员）", response_model=ApiResponse[WithdrawalResponseDTO])
async def approve_withdrawal(
    withdrawal_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    withdrawal = await service.approve_withdrawal(current_user, withdrawal_id)
    return success_response(data=WithdrawalResponseDTO.model_validate(withdrawal), message="提现已审核通过")


@router.post("/withdrawals/{withdrawal_id}/reject", summary="拒绝提现（管理员）", response_model=ApiResponse[WithdrawalResponseDTO])
async def reject_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalRejectDTO,
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    withdrawal = await service.reject_withdrawal(current_user, withdrawal_id, payload.reason)
    return success_response(data=WithdrawalResponseDTO.model_validate(withdrawal), message="提现已拒绝")


@router.post("/withdrawals/{withdrawal_id}/complete", summary="确认打款（管理员）", response_model=ApiResponse[WithdrawalResponseDTO])
async def complete_withdrawal(
    withdrawal_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: WithdrawalService = Depends(get_withdrawal_service),
):
    withdrawal = await service.complete_withdrawal(current_user, withdrawal_id)
    return success_response(data=WithdrawalResponseDTO.model_validate(withdrawal), message="打款已完成")
