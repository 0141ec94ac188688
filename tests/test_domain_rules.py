import base64
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.config import LedgerSettings
from application.services.refund_service import default_refund_policy
from domain.account.entity import AccountTransaction, ClubAccount, TransactionType, mask_account_number
from domain.account.reports import daily_amounts, daily_report, day_range_window, month_window, summarize
from domain.common.exceptions import (
    DomainValidationException,
    InvariantViolationException,
)
from domain.common.values import generate_business_no, to_minor_units, to_money
from domain.order.entity import OrderStatus, assert_order_edge, prorate_daily_fee
from domain.order.verify_code import VerifyCodeSigner
from domain.refund.policy import RefundPolicy, RefundTier
from domain.settlement.entity import compute_settlement

NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------- refund policy

@pytest.fixture
def policy() -> RefundPolicy:
    return default_refund_policy(LedgerSettings())


@pytest.mark.parametrize(
    "hours, percent, amount",
    [
        (200, 100, Decimal("100.00")),
        (100, 80, Decimal("80.00")),
        (50, 50, Decimal("50.00")),
    ],
)
def test_default_policy_tiers(policy, hours, percent, amount):
    quote = policy.quote(Decimal("100.00"), hours)
    assert quote.refundable
    assert quote.refund_percent == percent
    assert quote.refund_amount == amount


def test_no_refund_window_and_started_activity(policy):
    inside = policy.quote(Decimal("100.00"), 10)
    assert not inside.refundable
    assert inside.refund_amount == Decimal("0.00")
    assert "24" in inside.reason

    started = policy.quote(Decimal("100.00"), -1)
    assert not started.refundable
    assert started.reason == "活动已开始"


def test_refund_amount_rounds_down_to_cent():
    policy = RefundPolicy([RefundTier(24, 50)], no_refund_hours=0)
    assert policy.quote(Decimal("33.33"), 48).refund_amount == Decimal("16.66")


def test_hours_below_lowest_tier_fall_back_to_lowest_percent():
    policy = RefundPolicy([RefundTier(72, 100), RefundTier(24, 30)], no_refund_hours=6)
    assert policy.percent_for(12) == 30
    assert policy.percent_for(5) is None


def test_policy_from_dict_round_trip_and_validation():
    data = {"tiers": [{"hours_before_start": 48, "refund_percent": 70}], "no_refund_hours": 12}
    assert RefundPolicy.from_dict(data).to_dict() == data

    with pytest.raises(DomainValidationException):
        RefundPolicy([], no_refund_hours=0)
    with pytest.raises(DomainValidationException):
        RefundPolicy([RefundTier(24, 120)], no_refund_hours=0)


# ---------------------------------------------------------------- verify code

def test_verify_code_round_trip():
    signer = VerifyCodeSigner("secret")
    code = signer.generate(42, now=NOW)
    claims = signer.parse(code, now=NOW + timedelta(days=1))
    assert claims.order_id == 42


def test_verify_code_layout():
    signer = VerifyCodeSigner("secret")
    code = signer.generate(42, now=NOW)
    order_part, ts_part, signature = base64.b64decode(code).decode("utf-8").split(":")
    assert order_part == "42"
    assert ts_part == str(int(NOW.timestamp() * 1000))
    assert len(signature) == 8


def test_verify_code_rejects_tampering_and_expiry():
    signer = VerifyCodeSigner("secret", max_age=timedelta(days=7))
    code = signer.generate(42, now=NOW)

    with pytest.raises(DomainValidationException):
        VerifyCodeSigner("other-secret").parse(code, now=NOW)
    with pytest.raises(DomainValidationException):
        signer.parse(code, now=NOW + timedelta(days=8))
    with pytest.raises(DomainValidationException):
        signer.parse("not-base64!!", now=NOW)


# ---------------------------------------------------------------- money & orders

def test_money_helpers():
    assert to_money(0.1 + 0.2) == Decimal("0.30")
    assert to_money("12.345") == Decimal("12.35")
    assert to_minor_units(Decimal("199.90")) == 19990

    no = generate_business_no("RF", now=NOW)
    assert no.startswith("RF20260601080000")
    assert len(no) == 2 + 14 + 6


def test_insurance_is_prorated_per_started_day():
    start = NOW
    days, fee = prorate_daily_fee(Decimal("5.00"), start, start + timedelta(hours=49))
    assert days == 3
    assert fee == Decimal("15.00")


def test_order_edges():
    assert_order_edge(OrderStatus.PENDING, OrderStatus.PAYING)
    assert_order_edge(OrderStatus.REFUNDING, OrderStatus.PAID)
    with pytest.raises(InvariantViolationException):
        assert_order_edge(OrderStatus.CANCELLED, OrderStatus.PAID)


# ---------------------------------------------------------------- settlement & account

def test_compute_settlement_figures():
    figures = compute_settlement(Decimal("400.00"), Decimal("200.00"), Decimal("0.05"))
    assert figures.net_amount == Decimal("200.00")
    assert figures.platform_fee == Decimal("10.00")
    assert figures.settle_amount == Decimal("190.00")

    with pytest.raises(InvariantViolationException):
        compute_settlement(Decimal("100.00"), Decimal("150.00"), Decimal("0.05"))


def test_account_credit_freeze_and_withdraw():
    account = ClubAccount(id=1, club_id=7)
    rows = account.credit_settlement(Decimal("200.00"), Decimal("10.00"), settlement_id=3)
    assert [r.type for r in rows] == [TransactionType.INCOME, TransactionType.FEE]
    assert rows[1].balance_before == Decimal("200.00")
    assert account.balance == Decimal("190.00")
    assert account.total_income == Decimal("190.00")

    account.freeze(Decimal("100.00"))
    assert account.available_balance == Decimal("90.00")
    with pytest.raises(InvariantViolationException):
        account.freeze(Decimal("90.01"))

    row = account.settle_withdrawal(Decimal("100.00"), withdrawal_id=5)
    assert row.amount == Decimal("-100.00")
    assert account.balance == Decimal("90.00")
    assert account.frozen_balance == Decimal("0.00")
    assert account.total_withdraw == Decimal("100.00")


def test_mask_account_number():
    assert mask_account_number("6222021234567890123") == "6222***********0123"
    assert mask_account_number("1234 5678") == "********"
    assert mask_account_number(None) is None


# ---------------------------------------------------------------- ledger reports

def _row(tx_type: TransactionType, amount: str, created_at: datetime) -> AccountTransaction:
    return AccountTransaction(
        id=None,
        account_id=1,
        club_id=1,
        type=tx_type,
        amount=Decimal(amount),
        balance_before=Decimal("0"),
        balance_after=Decimal("0"),
        created_at=created_at,
    )


def test_ledger_totals_use_absolute_outflows():
    totals = summarize([
        _row(TransactionType.INCOME, "200.00", NOW),
        _row(TransactionType.FEE, "-10.00", NOW),
        _row(TransactionType.REFUND, "-30.00", NOW),
        _row(TransactionType.WITHDRAWAL, "-100.00", NOW),
    ])
    assert totals.income == Decimal("200.00")
    assert totals.platform_fee == Decimal("10.00")
    assert totals.refund == Decimal("30.00")
    assert totals.withdrawal == Decimal("100.00")
    assert totals.net_income == Decimal("160.00")


def test_daily_report_groups_by_utc_day():
    report = daily_report([
        _row(TransactionType.INCOME, "200.00", NOW),
        _row(TransactionType.FEE, "-10.00", NOW + timedelta(minutes=1)),
        _row(TransactionType.WITHDRAWAL, "-50.00", NOW + timedelta(days=2)),
    ])
    assert [b.day for b in report] == [NOW.date(), (NOW + timedelta(days=2)).date()]
    assert report[0].totals.net_income == Decimal("190.00")
    assert report[1].totals.withdrawal == Decimal("50.00")


def test_daily_amounts_fill_missing_days():
    series = daily_amounts(
        [(NOW, Decimal("88.00")), (NOW, Decimal("12.00")), (NOW - timedelta(days=10), Decimal("5.00"))],
        NOW.date(),
        3,
    )
    assert series == [
        ((NOW - timedelta(days=2)).date(), Decimal("0.00")),
        ((NOW - timedelta(days=1)).date(), Decimal("0.00")),
        (NOW.date(), Decimal("100.00")),
    ]


def test_report_windows():
    start, end = month_window(2026, 12)
    assert start == datetime(2026, 12, 1, tzinfo=timezone.utc)
    assert end == datetime(2027, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(DomainValidationException):
        month_window(2026, 13)

    start, end = day_range_window(NOW.date(), NOW.date())
    assert end - start == timedelta(days=1)
    with pytest.raises(DomainValidationException):
        day_range_window(NOW.date(), NOW.date() - timedelta(days=1))
    with pytest.raises(DomainValidationException):
        day_range_window(NOW.date(), NOW.date() + timedelta(days=400))
