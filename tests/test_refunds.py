from decimal import Decimal

import pytest

from application.dto import CurrentUser
from application.dtos.payments import RefundRequest, RefundResult
from domain.common.exceptions import (
    ConflictException,
    ExternalGatewayException,
    ForbiddenException,
    InvalidStateException,
)
from domain.enrollment.entity import EnrollmentStatus
from domain.order.entity import OrderStatus
from domain.payment.events import RefundCompleted, RefundRejected
from domain.refund.entity import RefundStatus
from infrastructure.external.payments.mock_client import MockPaymentClient


class FlakyRefundGateway(MockPaymentClient):
    """退款通道故障的网关；fail=False 后恢复"""

    def __init__(self) -> None:
        super().__init__()
        self.fail = True
        self.requests: list[RefundRequest] = []

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        self.requests.append(req)
        if self.fail:
            raise ExternalGatewayException("refund channel down", provider=self.provider, recoverable=True)
        return await super().refund(req)


@pytest.mark.asyncio
async def test_preview_follows_default_tiers(services, seed, clock, place_paid_order):
    activity_id = await seed.activity(await seed.club(), price="200.00", starts_in_hours=50)
    order = await place_paid_order(7, activity_id)

    preview = await services.refunds.preview_refund(7, order.id)
    assert preview.refundable
    assert preview.refund_percent == 50
    assert preview.refund_amount == Decimal("100.00")
    assert preview.order_amount == Decimal("200.00")

    clock.advance(hours=40)
    late = await services.refunds.preview_refund(7, order.id)
    assert not late.refundable
    assert late.refund_amount == Decimal("0.00")


@pytest.mark.asyncio
async def test_activity_policy_overrides_club_default(services, seed, place_paid_order):
    club_id = await seed.club(
        default_refund_policy={"tiers": [{"hours_before_start": 1, "refund_percent": 10}], "no_refund_hours": 0}
    )
    custom = await seed.activity(
        club_id,
        refund_policy={"tiers": [{"hours_before_start": 1, "refund_percent": 90}], "no_refund_hours": 0},
    )
    inherited = await seed.activity(club_id)

    assert (await services.refunds.preview_refund(7, (await place_paid_order(7, custom)).id)).refund_percent == 90
    assert (await services.refunds.preview_refund(7, (await place_paid_order(7, inherited)).id)).refund_percent == 10


@pytest.mark.asyncio
async def test_create_refund_locks_order_in_refunding(services, seed, place_paid_order):
    activity_id = await seed.activity(await seed.club())
    order = await place_paid_order(7, activity_id)

    refund = await services.refunds.create_refund(7, order.id, reason="临时有事")
    assert refund.status == RefundStatus.PENDING
    assert refund.amount == Decimal("200.00")
    assert refund.refund_no.startswith("RF")
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.REFUNDING

    with pytest.raises((ConflictException, InvalidStateException)):
        await services.refunds.create_refund(7, order.id)


@pytest.mark.asyncio
async def test_refund_inside_no_refund_window_is_refused(services, seed, place_paid_order):
    activity_id = await seed.activity(await seed.club(), starts_in_hours=10)
    order = await place_paid_order(7, activity_id)
    with pytest.raises(InvalidStateException):
        await services.refunds.create_refund(7, order.id)
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_approve_executes_gateway_refund(services, seed, owner, publisher, place_paid_order):
    activity_id = await seed.activity(await seed.club(owner_id=owner.id))
    order = await place_paid_order(7, activity_id)
    refund = await services.refunds.create_refund(7, order.id)

    with pytest.raises(ForbiddenException):
        await services.refunds.approve_refund(CurrentUser(id=555), refund.id)

    done = await services.refunds.approve_refund(owner, refund.id)
    assert done.status == RefundStatus.COMPLETED
    assert done.gateway_refund_id.startswith("MOCKRF")
    assert done.reviewed_by == owner.id
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.REFUNDED
    assert (await services.enrollments.get_enrollment(7, order.enrollment_id)).status == EnrollmentStatus.REFUNDED
    assert publisher.of_type(RefundCompleted)[0].amount == "200.00"

    with pytest.raises(InvalidStateException):
        await services.refunds.approve_refund(owner, refund.id)


@pytest.mark.asyncio
async def test_reject_restores_paid_order(services, seed, owner, publisher, place_paid_order):
    activity_id = await seed.activity(await seed.club(owner_id=owner.id))
    order = await place_paid_order(7, activity_id)
    refund = await services.refunds.create_refund(7, order.id)

    rejected = await services.refunds.reject_refund(owner, refund.id, "活动照常进行")
    assert rejected.status == RefundStatus.REJECTED
    assert rejected.reject_reason == "活动照常进行"
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PAID
    assert publisher.of_type(RefundRejected)


@pytest.mark.asyncio
async def test_pending_refunds_listed_for_club_operator(services, seed, owner, place_paid_order):
    club_id = await seed.club(owner_id=owner.id)
    activity_id = await seed.activity(club_id)
    order = await place_paid_order(7, activity_id)
    refund = await services.refunds.create_refund(7, order.id)

    pending = await services.refunds.list_pending_refunds(owner, club_id)
    assert [r.id for r in pending] == [refund.id]
    with pytest.raises(ForbiddenException):
        await services.refunds.list_pending_refunds(CurrentUser(id=555), club_id)


class TestGatewayFailure:
    @pytest.fixture
    def gateway(self):
        return FlakyRefundGateway()

    @pytest.mark.asyncio
    async def test_failed_refund_returns_to_approved_and_can_retry(
        self, services, seed, owner, gateway, place_paid_order
    ):
        activity_id = await seed.activity(await seed.club(owner_id=owner.id))
        order = await place_paid_order(7, activity_id)
        refund = await services.refunds.create_refund(7, order.id)

        with pytest.raises(ExternalGatewayException):
            await services.refunds.approve_refund(owner, refund.id)

        stuck = await services.refunds.get_refund(owner, refund.id)
        assert stuck.status == RefundStatus.APPROVED
        assert "refund channel down" in stuck.failure_reason
        assert (await services.orders.get_order(7, order.id)).status == OrderStatus.REFUNDING

        gateway.fail = False
        done = await services.refunds.retry_refund(owner, refund.id)
        assert done.status == RefundStatus.COMPLETED
        assert done.failure_reason is None
        # 重试沿用同一退款单号，网关侧幂等
        assert {r.refund_no for r in gateway.requests} == {refund.refund_no}
        assert gateway.requests[0].amount_minor == 20000
