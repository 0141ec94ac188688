"""
俱乐部资金账户服务 - 账户详情、银行信息、流水查询与资金看板

账户余额的每一次写入都在 `finance:account:<club_id>` 锁内完成，
结算入账与提现共享同一把锁。账户行在进入锁之前由 `ensure_account` 单独建好，
锁内只做读取与更新。
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from application.dto import (
    AccountDetailDTO,
    ActivityRankingDTO,
    ActivityStatsDTO,
    ActivitySummaryDTO,
    CurrentUser,
    DailyAmountDTO,
    DailyLedgerReportDTO,
    DashboardOverviewDTO,
    FinanceDashboardDTO,
    MonthlyIncomeDTO,
    MonthlyLedgerStatsDTO,
    TransactionResponseDTO,
)
from application.ports.crypto import SecretCipherPort
from application.ports.lock import DistributedLockPort
from application.services.access import require_club_operator
from core.config import LedgerSettings, settings
from core.logging_config import get_logger
from domain.account.entity import (
    AccountTransaction,
    ClubAccount,
    TransactionType,
    mask_account_number,
)
from domain.account.reports import (
    LedgerTotals,
    daily_amounts,
    daily_report,
    day_range_window,
    month_window,
    start_of_day,
    summarize,
)
from domain.activity.entity import ActivityStatus
from domain.common.exceptions import ConflictException, DomainValidationException, NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import ZERO, to_money, utcnow
from domain.order.entity import OrderStatus

logger = get_logger(__name__)

# 计入报名人数与收入的订单状态
PAID_ORDER_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED)
ACTIVE_ACTIVITY_STATUSES = (ActivityStatus.PUBLISHED, ActivityStatus.FULL)
RANKED_ACTIVITY_STATUSES = (
    ActivityStatus.PUBLISHED,
    ActivityStatus.FULL,
    ActivityStatus.ONGOING,
    ActivityStatus.COMPLETED,
)
MAX_TREND_DAYS = 90


def account_lock_key(club_id: int) -> str:
    return f"finance:account:{club_id}"


async def load_account(uow: AbstractUnitOfWork, club_id: int, *, for_update: bool = True) -> ClubAccount:
    """在当前工作单元内读取账户；账户须已由 ensure_account 建好"""
    account = await uow.account_repository.get_by_club(club_id, for_update=for_update)
    if account is None:
        raise NotFoundException("ClubAccount", club_id)
    return account


async def ensure_account(uow_factory: Callable[..., AbstractUnitOfWork], club_id: int) -> ClubAccount:
    """
    确保俱乐部账户存在，不存在时创建零余额账户

    创建在独立的工作单元中提交。并发首次访问时 club_id 唯一约束只放行一方，
    冲突的一方改为重新读取已建好的账户。
    """
    async with uow_factory(readonly=True) as uow:
        account = await uow.account_repository.get_by_club(club_id)
    if account is not None:
        return account

    try:
        async with uow_factory() as uow:
            account = await uow.account_repository.create(ClubAccount(id=None, club_id=club_id))
    except ConflictException:
        logger.info("club_account_create_raced", club_id=club_id)
        async with uow_factory(readonly=True) as uow:
            account = await uow.account_repository.get_by_club(club_id)
        if account is None:
            raise
        return account

    logger.info("club_account_created", club_id=club_id, account_id=account.id)
    return account


class AccountService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        lock: DistributedLockPort,
        cipher: SecretCipherPort,
        *,
        ledger: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._lock = lock
        self._cipher = cipher
        self._ledger = ledger or settings.ledger
        self._clock = clock

    def _to_detail(self, account: ClubAccount) -> AccountDetailDTO:
        masked = None
        if account.bank_account_encrypted:
            masked = mask_account_number(self._cipher.decrypt(account.bank_account_encrypted))
        return AccountDetailDTO(
            club_id=account.club_id,
            balance=account.balance,
            frozen_balance=account.frozen_balance,
            available_balance=account.available_balance,
            total_income=account.total_income,
            total_withdraw=account.total_withdraw,
            bank_name=account.bank_name,
            bank_account=masked,
            account_name=account.account_name,
        )

    async def _require_operator(self, actor: CurrentUser, club_id: int) -> None:
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)

    async def get_or_create_account(self, club_id: int) -> ClubAccount:
        return await ensure_account(self._uow_factory, club_id)

    async def get_account_detail(self, actor: CurrentUser, club_id: int) -> AccountDetailDTO:
        await self._require_operator(actor, club_id)
        return self._to_detail(await self.get_or_create_account(club_id))

    async def update_bank_account(
        self,
        actor: CurrentUser,
        club_id: int,
        *,
        bank_name: str,
        account_no: str,
        account_name: str,
    ) -> AccountDetailDTO:
        """更新提现银行信息；账号以密文入库，只保留后四位明文用于展示"""
        digits = account_no.replace(" ", "")
        await self._require_operator(actor, club_id)
        await self.get_or_create_account(club_id)

        async def _update() -> ClubAccount:
            async with self._uow_factory() as uow:
                account = await load_account(uow, club_id)
                account.bank_name = bank_name
                account.bank_account_encrypted = self._cipher.encrypt(digits)
                account.bank_account_last4 = digits[-4:]
                account.account_name = account_name
                return await uow.account_repository.update(account)

        account = await self._lock.with_lock(account_lock_key(club_id), _update)
        logger.info("bank_account_updated", club_id=club_id, operator_id=actor.id, last4=digits[-4:])
        return self._to_detail(account)

    async def list_transactions(
        self,
        actor: CurrentUser,
        club_id: int,
        tx_type: Optional[TransactionType] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[AccountTransaction], int]:
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            items = await uow.transaction_repository.list_by_club(club_id, tx_type=tx_type, skip=skip, limit=limit)
            total = await uow.transaction_repository.count_by_club(club_id, tx_type=tx_type)
        return items, total

    # ------------------------------------------------------------------ reports

    async def get_monthly_stats(
        self, actor: CurrentUser, club_id: int, year: Optional[int] = None, month: Optional[int] = None
    ) -> MonthlyLedgerStatsDTO:
        """按流水类型汇总某个自然月（UTC）的账本发生额，缺省为当月"""
        now = self._clock()
        year = year or now.year
        month = month or now.month
        start, end = month_window(year, month)
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            rows = await uow.transaction_repository.list_between(club_id, start, end)
        return MonthlyLedgerStatsDTO(year=year, month=month, **_totals_fields(summarize(rows)))

    async def get_finance_report(
        self, actor: CurrentUser, club_id: int, start_date: date, end_date: date
    ) -> List[DailyLedgerReportDTO]:
        """财务日报：区间内每个有流水的日期一行"""
        start, end = day_range_window(start_date, end_date)
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            rows = await uow.transaction_repository.list_between(club_id, start, end)
        return [DailyLedgerReportDTO(day=b.day, **_totals_fields(b.totals)) for b in daily_report(rows)]

    async def get_income_trend(self, actor: CurrentUser, club_id: int, days: int = 7) -> List[DailyAmountDTO]:
        """近 days 天（含今天）每日已支付订单金额，按 paid_at 归日"""
        if not 1 <= days <= MAX_TREND_DAYS:
            raise DomainValidationException(f"天数必须在 1-{MAX_TREND_DAYS} 之间", field="days")
        today = self._clock().date()
        since = start_of_day(today - timedelta(days=days - 1))
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            orders = await uow.order_repository.list_by_club(club_id, PAID_ORDER_STATUSES, paid_from=since)
        points = [(o.paid_at, o.total_amount) for o in orders if o.paid_at is not None]
        return [DailyAmountDTO(day=day, amount=amount) for day, amount in daily_amounts(points, today, days)]

    async def get_activity_ranking(self, actor: CurrentUser, club_id: int, limit: int = 10) -> List[ActivityRankingDTO]:
        """最近 50 个已发布活动按已支付收入倒序"""
        async with self._uow_factory(readonly=True) as uow:
            await require_club_operator(uow, club_id, actor)
            activities = await uow.activity_repository.list_by_club(club_id, RANKED_ACTIVITY_STATUSES, limit=50)
            totals = await uow.order_repository.totals_by_activity([a.id for a in activities], PAID_ORDER_STATUSES)

        ranked = []
        for activity in activities:
            count, income = totals.get(activity.id, (0, ZERO))
            ranked.append(
                ActivityRankingDTO(
                    id=activity.id,
                    title=activity.title,
                    status=activity.status.value,
                    price=activity.price,
                    enrollment_count=count,
                    total_income=income,
                )
            )
        ranked.sort(key=lambda item: item.total_income, reverse=True)
        return ranked[:limit]

    async def get_dashboard_stats(self, actor: CurrentUser, club_id: int) -> FinanceDashboardDTO:
        """资金看板：账户概览、待结算预估、本月收支、活动统计、最近活动与流水"""
        await self._require_operator(actor, club_id)
        account = await self.get_or_create_account(club_id)
        now = self._clock()
        month_start, month_end = month_window(now.year, now.month)
        fee_rate = Decimal(self._ledger.platform_fee_rate)

        async with self._uow_factory(readonly=True) as uow:
            unsettled = await uow.activity_repository.list_unsettled_for_club(club_id)
            pending_totals = await uow.order_repository.totals_by_activity(
                [a.id for a in unsettled], PAID_ORDER_STATUSES
            )

            month_orders = await uow.order_repository.list_by_club(
                club_id, PAID_ORDER_STATUSES, paid_from=month_start, paid_to=month_end
            )
            month_refund, _ = await uow.refund_repository.sum_completed_for_club(club_id, month_start, month_end)

            activity_stats = ActivityStatsDTO(
                total=await uow.activity_repository.count_by_club(club_id),
                active=await uow.activity_repository.count_by_club(club_id, ACTIVE_ACTIVITY_STATUSES),
                completed=await uow.activity_repository.count_by_club(club_id, [ActivityStatus.COMPLETED]),
                total_enrollments=await uow.order_repository.count_by_club(club_id, PAID_ORDER_STATUSES),
                monthly_enrollments=len(month_orders),
            )

            recent = await uow.activity_repository.list_by_club(club_id, limit=5)
            recent_totals = await uow.order_repository.totals_by_activity([a.id for a in recent], PAID_ORDER_STATUSES)
            recent_rows = await uow.transaction_repository.list_by_club(club_id, limit=10)

        pending_gross = sum((total for _, total in pending_totals.values()), ZERO)
        month_income = to_money(sum((o.total_amount for o in month_orders), ZERO))

        return FinanceDashboardDTO(
            overview=DashboardOverviewDTO(
                balance=account.balance,
                available_balance=account.available_balance,
                frozen_balance=account.frozen_balance,
                total_income=account.total_income,
                total_withdraw=account.total_withdraw,
                pending_settlement_count=len(unsettled),
                pending_settlement_amount=to_money(pending_gross * (1 - fee_rate)),
                has_bank_account=account.has_bank_details,
            ),
            monthly=MonthlyIncomeDTO(
                year=month_start.year,
                month=month_start.month,
                income=month_income,
                refund=month_refund,
                net_income=to_money(month_income - month_refund),
                order_count=len(month_orders),
            ),
            activity_stats=activity_stats,
            recent_activities=[
                ActivitySummaryDTO(
                    id=a.id,
                    title=a.title,
                    status=a.status.value,
                    start_time=a.start_time,
                    end_time=a.end_time,
                    capacity=a.capacity,
                    price=a.price,
                    enrollment_count=recent_totals.get(a.id, (0, ZERO))[0],
                )
                for a in recent
            ],
            recent_transactions=[TransactionResponseDTO.model_validate(row) for row in recent_rows],
        )


def _totals_fields(totals: LedgerTotals) -> dict:
    return {
        "income": totals.income,
        "refund": totals.refund,
        "withdrawal": totals.withdrawal,
        "platform_fee": totals.platform_fee,
        "settlement": totals.settlement,
        "net_income": totals.net_income,
    }
