import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from application.dto import CurrentUser
from domain.account.entity import TransactionType
from domain.common.exceptions import (
    DomainValidationException,
    ForbiddenException,
    InvalidStateException,
    LockBusyException,
)
from domain.order.entity import OrderStatus
from domain.payment.events import SettlementCompleted, WithdrawalCompleted
from domain.settlement.entity import SettlementStatus
from domain.withdrawal.entity import WithdrawalStatus


@pytest.fixture
def settled_club(services, seed, clock, owner, place_paid_order):
    """一个已结算的俱乐部：收款 200，平台费 10，账户余额 190"""

    async def _settle():
        club_id = await seed.club(owner_id=owner.id)
        activity_id = await seed.activity(club_id, price="200.00")
        await place_paid_order(7, activity_id)
        await seed.finish_activity(activity_id, ended_at=clock.now - timedelta(hours=1))
        settlement = await services.settlements.settle_activity(activity_id)
        return club_id, activity_id, settlement

    return _settle


# ---------------------------------------------------------------- settlement

@pytest.mark.asyncio
async def test_settlement_credits_club_account(services, owner, publisher, settled_club):
    club_id, activity_id, settlement = await settled_club()

    assert settlement.status == SettlementStatus.COMPLETED
    assert settlement.total_amount == Decimal("200.00")
    assert settlement.platform_fee == Decimal("10.00")
    assert settlement.settle_amount == Decimal("190.00")
    assert settlement.settlement_no.startswith("ST")
    assert settlement.commission_detail["order_count"] == 1

    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.balance == Decimal("190.00")
    assert detail.available_balance == Decimal("190.00")
    assert detail.total_income == Decimal("190.00")

    rows, total = await services.accounts.list_transactions(owner, club_id)
    assert total == 2
    assert {(r.type, r.amount) for r in rows} == {
        (TransactionType.INCOME, Decimal("200.00")),
        (TransactionType.FEE, Decimal("-10.00")),
    }
    assert publisher.of_type(SettlementCompleted)[0].settle_amount == "190.00"


@pytest.mark.asyncio
async def test_settlement_is_idempotent(services, owner, settled_club):
    club_id, activity_id, settlement = await settled_club()

    again = await services.settlements.settle_activity(activity_id)
    assert again.id == settlement.id
    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.balance == Decimal("190.00")


@pytest.mark.asyncio
async def test_settlement_completes_paid_orders(services, seed, clock, owner, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id)
    order = await place_paid_order(7, activity_id)
    await seed.finish_activity(activity_id, ended_at=clock.now)

    await services.settlements.settle_activity(activity_id)
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_completed_refunds_are_deducted(services, seed, clock, owner, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id, price="200.00")
    kept = await place_paid_order(7, activity_id)
    refunded = await place_paid_order(8, activity_id)
    refund = await services.refunds.create_refund(8, refunded.id)
    await services.refunds.approve_refund(owner, refund.id)
    await seed.finish_activity(activity_id, ended_at=clock.now)

    settlement = await services.settlements.settle_activity(activity_id)
    assert settlement.total_amount == Decimal("400.00")
    assert settlement.refund_amount == Decimal("200.00")
    assert settlement.platform_fee == Decimal("10.00")
    assert settlement.settle_amount == Decimal("190.00")
    assert settlement.commission_detail["refund_count"] == 1
    assert (await services.orders.get_order(7, kept.id)).status == OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_settlement_waits_for_refunds_in_flight(services, seed, clock, owner, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id)
    order = await place_paid_order(7, activity_id)
    await services.refunds.create_refund(7, order.id)
    await seed.finish_activity(activity_id, ended_at=clock.now)

    with pytest.raises(InvalidStateException):
        await services.settlements.settle_activity(activity_id)


@pytest.mark.asyncio
async def test_unfinished_activity_cannot_settle(services, seed):
    activity_id = await seed.activity(await seed.club())
    with pytest.raises(InvalidStateException):
        await services.settlements.settle_activity(activity_id)


@pytest.mark.asyncio
async def test_auto_settle_respects_delay(services, seed, clock, admin, place_paid_order):
    club_id = await seed.club()
    activity_id = await seed.activity(club_id)
    await place_paid_order(7, activity_id)
    await seed.finish_activity(activity_id, ended_at=clock.now - timedelta(hours=2))

    assert (await services.settlements.auto_settle())["settled"] == 0
    stats = await services.settlements.get_pending_settlement_stats(admin)
    assert stats.awaiting_activities == 0

    clock.advance(hours=23)
    stats = await services.settlements.get_pending_settlement_stats(admin)
    assert stats.awaiting_activities == 1

    summary = await services.settlements.auto_settle()
    assert summary == {"settled": 1, "retried": 0, "failed": 0}
    stats = await services.settlements.get_pending_settlement_stats(admin)
    assert stats.completed_settlements == 1
    assert stats.awaiting_activities == 0


@pytest.mark.asyncio
async def test_auto_settle_skips_failing_activity_and_settles_the_rest(
    services, seed, clock, owner, place_paid_order
):
    club_id = await seed.club(owner_id=owner.id)
    blocked = await seed.activity(club_id)
    healthy = await seed.activity(club_id, price="200.00")
    order = await place_paid_order(7, blocked)
    await services.refunds.create_refund(7, order.id)
    await place_paid_order(8, healthy)
    await seed.finish_activity(blocked, ended_at=clock.now - timedelta(hours=25))
    await seed.finish_activity(healthy, ended_at=clock.now - timedelta(hours=25))

    summary = await services.settlements.auto_settle()
    assert summary == {"settled": 1, "retried": 0, "failed": 1}

    settlements = await services.settlements.list_club_settlements(owner, club_id)
    assert [s.activity_id for s in settlements] == [healthy]
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.REFUNDING


@pytest.mark.asyncio
async def test_concurrent_settlement_credits_once(services, seed, clock, owner, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id, price="200.00")
    await place_paid_order(7, activity_id)
    await seed.finish_activity(activity_id, ended_at=clock.now - timedelta(hours=1))

    results = await asyncio.gather(
        services.settlements.settle_activity(activity_id),
        services.settlements.settle_activity(activity_id),
        return_exceptions=True,
    )
    settled = [r for r in results if not isinstance(r, Exception)]
    assert settled
    assert all(isinstance(r, LockBusyException) for r in results if isinstance(r, Exception))
    assert len({s.id for s in settled}) == 1

    rows, _ = await services.accounts.list_transactions(owner, club_id, tx_type=TransactionType.INCOME)
    assert len(rows) == 1
    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.balance == Decimal("190.00")
    assert detail.total_income == Decimal("190.00")


@pytest.mark.asyncio
async def test_settlement_stats_require_admin(services, owner):
    with pytest.raises(ForbiddenException):
        await services.settlements.get_pending_settlement_stats(owner)


# ---------------------------------------------------------------- account & withdrawals

async def _bind_bank(services, owner, club_id):
    return await services.accounts.update_bank_account(
        owner, club_id, bank_name="招商银行", account_no="6225880112345678", account_name="山野俱乐部"
    )


@pytest.mark.asyncio
async def test_bank_account_is_encrypted_and_masked(services, seed, owner, uow_factory):
    club_id = await seed.club(owner_id=owner.id)
    detail = await _bind_bank(services, owner, club_id)
    assert detail.bank_account == "6225********5678"

    async with uow_factory(readonly=True) as uow:
        account = await uow.account_repository.get_by_club(club_id)
    assert account.bank_account_last4 == "5678"
    assert "6225880112345678" not in account.bank_account_encrypted


@pytest.mark.asyncio
async def test_account_requires_club_operator(services, seed):
    club_id = await seed.club(owner_id=100)
    with pytest.raises(ForbiddenException):
        await services.accounts.get_account_detail(CurrentUser(id=555), club_id)


@pytest.mark.asyncio
async def test_withdrawal_freezes_then_reject_unfreezes(services, owner, admin, settled_club):
    club_id, _, _ = await settled_club()
    await _bind_bank(services, owner, club_id)

    withdrawal = await services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00"))
    assert withdrawal.status == WithdrawalStatus.PENDING
    assert withdrawal.withdrawal_no.startswith("WD")
    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.available_balance == Decimal("90.00")
    assert detail.frozen_balance == Decimal("100.00")

    with pytest.raises(DomainValidationException):
        await services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00"))

    rejected = await services.withdrawals.reject_withdrawal(admin, withdrawal.id, "银行信息有误")
    assert rejected.status == WithdrawalStatus.REJECTED
    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.available_balance == Decimal("190.00")
    assert detail.frozen_balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_withdrawal_completion_debits_balance(services, owner, admin, publisher, settled_club):
    club_id, _, _ = await settled_club()
    await _bind_bank(services, owner, club_id)
    withdrawal = await services.withdrawals.create_withdrawal(owner, club_id, Decimal("150.00"))

    with pytest.raises(InvalidStateException):
        await services.withdrawals.complete_withdrawal(admin, withdrawal.id)
    with pytest.raises(ForbiddenException):
        await services.withdrawals.approve_withdrawal(owner, withdrawal.id)

    await services.withdrawals.approve_withdrawal(admin, withdrawal.id)
    done = await services.withdrawals.complete_withdrawal(admin, withdrawal.id)
    assert done.status == WithdrawalStatus.COMPLETED
    assert done.transferred_at is not None

    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.balance == Decimal("40.00")
    assert detail.frozen_balance == Decimal("0.00")
    assert detail.total_withdraw == Decimal("150.00")
    rows, _ = await services.accounts.list_transactions(owner, club_id, tx_type=TransactionType.WITHDRAWAL)
    assert [r.amount for r in rows] == [Decimal("-150.00")]
    assert publisher.of_type(WithdrawalCompleted)[0].amount == "150.00"


@pytest.mark.asyncio
async def test_withdrawal_validation(services, seed, owner, settled_club):
    club_id, _, _ = await settled_club()
    with pytest.raises(DomainValidationException):
        await services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00"))

    await _bind_bank(services, owner, club_id)
    with pytest.raises(DomainValidationException):
        await services.withdrawals.create_withdrawal(owner, club_id, Decimal("99.99"))
    with pytest.raises(DomainValidationException):
        await services.withdrawals.create_withdrawal(owner, club_id, Decimal("190.01"))


@pytest.mark.asyncio
async def test_concurrent_withdrawals_cannot_overdraw(services, owner, settled_club):
    club_id, _, _ = await settled_club()
    await _bind_bank(services, owner, club_id)

    results = await asyncio.gather(
        services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00")),
        services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00")),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(created) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (DomainValidationException, LockBusyException))

    detail = await services.accounts.get_account_detail(owner, club_id)
    assert detail.frozen_balance == Decimal("100.00")
    assert detail.frozen_balance <= detail.balance
    assert detail.available_balance == Decimal("90.00")
    assert len(await services.withdrawals.list_withdrawals(owner, club_id)) == 1


@pytest.mark.asyncio
async def test_pending_withdrawals_listing(services, owner, admin, settled_club):
    club_id, _, _ = await settled_club()
    await _bind_bank(services, owner, club_id)
    withdrawal = await services.withdrawals.create_withdrawal(owner, club_id, Decimal("100.00"))

    assert [w.id for w in await services.withdrawals.list_pending_withdrawals(admin)] == [withdrawal.id]
    assert [w.id for w in await services.withdrawals.list_withdrawals(owner, club_id)] == [withdrawal.id]
    with pytest.raises(ForbiddenException):
        await services.withdrawals.list_pending_withdrawals(owner)


def test_bank_cipher_rejects_foreign_ciphertext():
    from infrastructure.security import BankAccountCipher

    cipher = BankAccountCipher()
    token = cipher.encrypt("6225880112345678")
    assert cipher.decrypt(token) == "6225880112345678"
    with pytest.raises(DomainValidationException):
        cipher.decrypt("gAAAAAB-not-a-real-token")
