import asyncio
from contextlib import asynccontextmanager
from datetime import date, timedelta
from decimal import Decimal

import pytest

from application.dto import CurrentUser
from application.services.account_service import ensure_account
from domain.account.entity import ClubAccount, TransactionType
from domain.activity.entity import ActivityStatus
from domain.common.exceptions import (
    ConflictException,
    DomainValidationException,
    ForbiddenException,
    NotFoundException,
)


@pytest.fixture
def busy_club(services, seed, clock, owner, place_paid_order):
    """
    三个活动：
    - 进行报名中（200 元）：两笔已支付、一笔已全额退款
    - 已结束未结算（100 元）：一笔已支付
    - 草稿
    """

    async def _build():
        club_id = await seed.club(owner_id=owner.id)
        open_id = await seed.activity(club_id, price="200.00")
        await place_paid_order(7, open_id)
        await place_paid_order(8, open_id)
        refunded = await place_paid_order(9, open_id)
        refund = await services.refunds.create_refund(9, refunded.id)
        await services.refunds.approve_refund(owner, refund.id)

        finished_id = await seed.activity(club_id, price="100.00")
        await place_paid_order(7, finished_id)
        await seed.finish_activity(finished_id, ended_at=clock.now - timedelta(hours=1))

        draft_id = await seed.activity(club_id, status=ActivityStatus.DRAFT)
        return club_id, open_id, finished_id, draft_id

    return _build


@pytest.mark.asyncio
async def test_dashboard_overview(services, owner, busy_club):
    club_id, open_id, finished_id, draft_id = await busy_club()

    dashboard = await services.accounts.get_dashboard_stats(owner, club_id)

    overview = dashboard.overview
    assert overview.balance == Decimal("0.00")
    assert overview.pending_settlement_count == 1
    assert overview.pending_settlement_amount == Decimal("95.00")
    assert overview.has_bank_account is False

    monthly = dashboard.monthly
    assert (monthly.year, monthly.month) == (2026, 6)
    assert monthly.income == Decimal("500.00")
    assert monthly.refund == Decimal("200.00")
    assert monthly.net_income == Decimal("300.00")
    assert monthly.order_count == 3

    stats = dashboard.activity_stats
    assert (stats.total, stats.active, stats.completed) == (3, 1, 1)
    assert stats.total_enrollments == 3
    assert stats.monthly_enrollments == 3

    assert [a.id for a in dashboard.recent_activities] == [draft_id, finished_id, open_id]
    assert [a.enrollment_count for a in dashboard.recent_activities] == [0, 1, 2]
    assert dashboard.recent_transactions == []


@pytest.mark.asyncio
async def test_dashboard_reflects_settlement(services, owner, clock, busy_club):
    club_id, _, finished_id, _ = await busy_club()
    await services.settlements.settle_activity(finished_id)

    dashboard = await services.accounts.get_dashboard_stats(owner, club_id)
    assert dashboard.overview.balance == Decimal("95.00")
    assert dashboard.overview.pending_settlement_count == 0
    assert dashboard.overview.pending_settlement_amount == Decimal("0.00")
    assert {t.type for t in dashboard.recent_transactions} == {"INCOME", "FEE"}


@pytest.mark.asyncio
async def test_income_trend_counts_paid_orders_per_day(services, owner, clock, busy_club):
    club_id, *_ = await busy_club()

    trend = await services.accounts.get_income_trend(owner, club_id, days=7)
    assert len(trend) == 7
    assert trend[0].day == clock.now.date() - timedelta(days=6)
    assert trend[-1].day == clock.now.date()
    assert trend[-1].amount == Decimal("500.00")
    assert all(point.amount == Decimal("0.00") for point in trend[:-1])

    clock.advance(days=1)
    trend = await services.accounts.get_income_trend(owner, club_id, days=2)
    assert [p.amount for p in trend] == [Decimal("500.00"), Decimal("0.00")]

    with pytest.raises(DomainValidationException):
        await services.accounts.get_income_trend(owner, club_id, days=0)


@pytest.mark.asyncio
async def test_activity_ranking_orders_by_income(services, owner, busy_club):
    club_id, open_id, finished_id, draft_id = await busy_club()

    ranking = await services.accounts.get_activity_ranking(owner, club_id)
    assert [r.id for r in ranking] == [open_id, finished_id]
    assert ranking[0].total_income == Decimal("400.00")
    assert ranking[0].enrollment_count == 2
    assert ranking[1].total_income == Decimal("100.00")

    assert len(await services.accounts.get_activity_ranking(owner, club_id, limit=1)) == 1


@pytest.mark.asyncio
async def test_monthly_stats_and_daily_report(services, seed, clock, owner, admin, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id, price="200.00")
    await place_paid_order(7, activity_id)
    await seed.finish_activity(activity_id, ended_at=clock.now - timedelta(hours=1))
    await services.settlements.settle_activity(activity_id)
    await services.accounts.update_bank_account(
        owner, club_id, bank_name="招商银行", account_no="6225880112345678", account_name="山野俱乐部"
    )
    withdrawal = await services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00"))
    await services.withdrawals.approve_withdrawal(admin, withdrawal.id)
    await services.withdrawals.complete_withdrawal(admin, withdrawal.id)

    # 流水时间由数据库写入，按流水实际所在的月份/日期查询
    rows, _ = await services.accounts.list_transactions(owner, club_id, tx_type=TransactionType.INCOME)
    posted = rows[0].created_at

    stats = await services.accounts.get_monthly_stats(owner, club_id, year=posted.year, month=posted.month)
    assert stats.income == Decimal("200.00")
    assert stats.platform_fee == Decimal("10.00")
    assert stats.withdrawal == Decimal("100.00")
    assert stats.refund == Decimal("0.00")
    assert stats.net_income == Decimal("190.00")

    previous = posted.replace(day=1) - timedelta(days=1)
    empty = await services.accounts.get_monthly_stats(owner, club_id, year=previous.year, month=previous.month)
    assert empty.income == Decimal("0.00")

    report = await services.accounts.get_finance_report(
        owner, club_id, posted.date() - timedelta(days=1), posted.date() + timedelta(days=1)
    )
    assert sum((day.income for day in report), Decimal("0.00")) == Decimal("200.00")
    assert sum((day.withdrawal for day in report), Decimal("0.00")) == Decimal("100.00")

    with pytest.raises(DomainValidationException):
        await services.accounts.get_monthly_stats(owner, club_id, year=2026, month=13)
    with pytest.raises(DomainValidationException):
        await services.accounts.get_finance_report(owner, club_id, date(2026, 6, 2), date(2026, 6, 1))


@pytest.mark.asyncio
async def test_reports_require_club_operator(services, seed):
    club_id = await seed.club(owner_id=100)
    outsider = CurrentUser(id=555)

    with pytest.raises(ForbiddenException):
        await services.accounts.get_dashboard_stats(outsider, club_id)
    with pytest.raises(ForbiddenException):
        await services.accounts.get_income_trend(outsider, club_id)
    with pytest.raises(ForbiddenException):
        await services.accounts.get_activity_ranking(outsider, club_id)
    with pytest.raises(ForbiddenException):
        await services.accounts.get_monthly_stats(outsider, club_id)


# ---------------------------------------------------------------- withdrawal detail

@pytest.mark.asyncio
async def test_withdrawal_detail_is_scoped_to_club(services, seed, clock, owner, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    other_club = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id, price="200.00")
    await place_paid_order(7, activity_id)
    await seed.finish_activity(activity_id, ended_at=clock.now - timedelta(hours=1))
    await services.settlements.settle_activity(activity_id)
    await services.accounts.update_bank_account(
        owner, club_id, bank_name="招商银行", account_no="6225880112345678", account_name="山野俱乐部"
    )
    withdrawal = await services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00"))

    detail = await services.withdrawals.get_withdrawal(owner, club_id, withdrawal.id)
    assert detail.withdrawal_no == withdrawal.withdrawal_no
    assert detail.amount == Decimal("100.00")

    with pytest.raises(ForbiddenException):
        await services.withdrawals.get_withdrawal(owner, other_club, withdrawal.id)
    with pytest.raises(ForbiddenException):
        await services.withdrawals.get_withdrawal(CurrentUser(id=555), club_id, withdrawal.id)
    with pytest.raises(NotFoundException):
        await services.withdrawals.get_withdrawal(owner, club_id, 9999)


# ---------------------------------------------------------------- account provisioning

@pytest.mark.asyncio
async def test_concurrent_first_access_creates_one_account(services, seed, owner, uow_factory):
    club_id = await seed.club(owner_id=owner.id)

    details = await asyncio.gather(
        services.accounts.get_account_detail(owner, club_id),
        services.accounts.get_account_detail(owner, club_id),
        services.accounts.get_account_detail(owner, club_id),
    )
    assert all(d.balance == Decimal("0.00") for d in details)

    async with uow_factory(readonly=True) as uow:
        account = await uow.account_repository.get_by_club(club_id)
    assert account is not None


@pytest.mark.asyncio
async def test_duplicate_account_is_rejected_by_storage(seed, uow_factory):
    club_id = await seed.club()
    async with uow_factory() as uow:
        await uow.account_repository.create(ClubAccount(id=None, club_id=club_id))

    with pytest.raises(ConflictException):
        async with uow_factory() as uow:
            await uow.account_repository.create(ClubAccount(id=None, club_id=club_id))


@pytest.mark.asyncio
async def test_ensure_account_rereads_after_losing_create_race(seed, uow_factory):
    club_id = await seed.club()
    async with uow_factory() as uow:
        existing = await uow.account_repository.create(ClubAccount(id=None, club_id=club_id))

    opened = []

    @asynccontextmanager
    async def _racing_factory(readonly: bool = False):
        async with uow_factory(readonly=readonly) as uow:
            if not opened:
                # 首次读取时另一请求的建户尚未提交
                async def _not_yet(club_id, *, for_update=False):
                    return None

                uow.account_repository.get_by_club = _not_yet
            opened.append(readonly)
            yield uow

    account = await ensure_account(_racing_factory, club_id)
    assert account.id == existing.id
    assert opened == [True, False, True]
