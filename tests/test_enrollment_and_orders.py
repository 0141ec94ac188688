import asyncio
from decimal import Decimal

import pytest

from application.dto import CurrentUser
from domain.activity.entity import ActivityStatus
from domain.common.exceptions import (
    ConflictException,
    DomainValidationException,
    ForbiddenException,
    InvalidStateException,
    LockBusyException,
)
from domain.enrollment.entity import EnrollmentStatus
from domain.order.entity import OrderStatus
from domain.payment.events import EnrollmentCheckedIn, OrderCancelled


# ---------------------------------------------------------------- enrollment gate

@pytest.mark.asyncio
async def test_enrollment_snapshots_price(services, seed):
    club_id = await seed.club()
    activity_id = await seed.activity(club_id, price="199.90")

    enrollment = await services.enrollments.create_enrollment(7, activity_id, contact_name="张三")
    assert enrollment.status == EnrollmentStatus.PENDING
    assert enrollment.amount == Decimal("199.90")
    assert enrollment.contact_name == "张三"


@pytest.mark.asyncio
async def test_duplicate_enrollment_is_rejected(services, seed):
    activity_id = await seed.activity(await seed.club())
    await services.enrollments.create_enrollment(7, activity_id)
    with pytest.raises(ConflictException):
        await services.enrollments.create_enrollment(7, activity_id)


@pytest.mark.asyncio
async def test_capacity_is_enforced(services, seed):
    activity_id = await seed.activity(await seed.club(), capacity=2)
    await services.enrollments.create_enrollment(7, activity_id)
    await services.enrollments.create_enrollment(8, activity_id)
    with pytest.raises(ConflictException) as exc:
        await services.enrollments.create_enrollment(9, activity_id)
    assert exc.value.details["capacity"] == 2


@pytest.mark.asyncio
async def test_concurrent_enrollments_never_oversell(services, seed):
    activity_id = await seed.activity(await seed.club(), capacity=1)
    results = await asyncio.gather(
        *(services.enrollments.create_enrollment(uid, activity_id) for uid in (11, 12, 13)),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(created) == 1
    assert all(isinstance(f, (ConflictException, LockBusyException)) for f in failures)


@pytest.mark.asyncio
async def test_enrollment_requires_published_activity_before_start(services, seed):
    club_id = await seed.club()
    draft = await seed.activity(club_id, status=ActivityStatus.DRAFT)
    started = await seed.activity(club_id, starts_in_hours=-1)
    with pytest.raises(InvalidStateException):
        await services.enrollments.create_enrollment(7, draft)
    with pytest.raises(InvalidStateException):
        await services.enrollments.create_enrollment(7, started)


@pytest.mark.asyncio
async def test_cancelled_enrollment_frees_the_seat(services, seed, publisher):
    activity_id = await seed.activity(await seed.club(), capacity=1)
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)

    cancelled = await services.enrollments.cancel_enrollment(7, enrollment.id)
    assert cancelled.status == EnrollmentStatus.CANCELLED
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.CANCELLED
    assert publisher.of_type(OrderCancelled)[0].reason == "enrollment_cancelled"

    again = await services.enrollments.create_enrollment(8, activity_id)
    assert again.status == EnrollmentStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_blocked_while_payment_in_flight(services, seed):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)
    await services.payments.prepay(7, order.id)

    with pytest.raises(InvalidStateException):
        await services.enrollments.cancel_enrollment(7, enrollment.id)


@pytest.mark.asyncio
async def test_only_owner_can_cancel_enrollment(services, seed):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    with pytest.raises(ForbiddenException):
        await services.enrollments.cancel_enrollment(8, enrollment.id)


# ---------------------------------------------------------------- order lifecycle

@pytest.mark.asyncio
async def test_create_order_is_reentrant(services, seed, clock):
    activity_id = await seed.activity(await seed.club(), price="100.00")
    enrollment = await services.enrollments.create_enrollment(7, activity_id)

    first = await services.orders.create_order(7, enrollment.id)
    second = await services.orders.create_order(7, enrollment.id)
    assert first.order_no == second.order_no
    assert first.status == OrderStatus.PENDING
    assert (first.expires_at - clock.now).total_seconds() == 15 * 60


@pytest.mark.asyncio
async def test_create_order_conflicts_while_payment_in_flight(services, seed):
    activity_id = await seed.activity(await seed.club(), price="100.00")
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)
    await services.payments.prepay(7, order.id)

    with pytest.raises(ConflictException) as exc:
        await services.orders.create_order(7, enrollment.id)
    assert exc.value.details["order_no"] == order.order_no
    assert exc.value.details["status"] == "PAYING"


@pytest.mark.asyncio
async def test_order_includes_insurance_add_on(services, seed):
    activity_id = await seed.activity(
        await seed.club(), price="100.00", duration_hours=30, insurance_daily_fee="5.00"
    )
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)
    assert order.add_on_fee == Decimal("10.00")
    assert order.total_amount == Decimal("110.00")


@pytest.mark.asyncio
async def test_expired_order_is_replaced_on_reorder(services, seed, clock):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    first = await services.orders.create_order(7, enrollment.id)

    clock.advance(minutes=16)
    second = await services.orders.create_order(7, enrollment.id)
    assert second.order_no != first.order_no
    assert (await services.orders.get_order(7, first.id)).status == OrderStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_order_is_idempotent(services, seed, publisher):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)

    first = await services.orders.cancel_order(7, order.id)
    second = await services.orders.cancel_order(7, order.id)
    assert first.status == second.status == OrderStatus.CANCELLED
    assert len(publisher.of_type(OrderCancelled)) == 1
    # 报名保持待支付，可重新下单
    assert (await services.enrollments.get_enrollment(7, enrollment.id)).status == EnrollmentStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_order_creation_yields_one_order(services, seed):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)

    results = await asyncio.gather(
        *(services.orders.create_order(7, enrollment.id) for _ in range(3)),
        return_exceptions=True,
    )
    created = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert created
    assert {o.id for o in created} == {created[0].id}
    assert all(isinstance(f, (ConflictException, LockBusyException)) for f in failures)
    assert len(await services.orders.list_my_orders(7)) == 1


@pytest.mark.asyncio
async def test_live_order_uniqueness_is_enforced_by_storage(services, seed, clock, uow_factory):
    from domain.common.values import generate_business_no
    from domain.order.entity import Order

    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    await services.orders.create_order(7, enrollment.id)

    with pytest.raises(ConflictException):
        async with uow_factory() as uow:
            await uow.order_repository.create(
                Order.place(
                    order_no=generate_business_no(now=clock.now),
                    enrollment_id=enrollment.id,
                    user_id=7,
                    activity_id=activity_id,
                    amount=enrollment.amount,
                    add_on_fee=Decimal("0.00"),
                    timeout_minutes=15,
                    now=clock.now,
                )
            )


@pytest.mark.asyncio
async def test_paid_order_cannot_be_cancelled(services, seed, place_paid_order):
    activity_id = await seed.activity(await seed.club())
    order = await place_paid_order(7, activity_id)
    with pytest.raises(InvalidStateException):
        await services.orders.cancel_order(7, order.id)


@pytest.mark.asyncio
async def test_expiry_sweep_cancels_only_overdue_orders(services, seed, clock, publisher):
    activity_id = await seed.activity(await seed.club())
    old = await services.orders.create_order(7, (await services.enrollments.create_enrollment(7, activity_id)).id)
    clock.advance(minutes=10)
    fresh = await services.orders.create_order(8, (await services.enrollments.create_enrollment(8, activity_id)).id)

    clock.advance(minutes=6)
    assert await services.orders.cancel_expired_orders() == 1
    assert (await services.orders.get_order(7, old.id)).status == OrderStatus.CANCELLED
    assert (await services.orders.get_order(8, fresh.id)).status == OrderStatus.PENDING
    assert publisher.of_type(OrderCancelled)[0].reason == "timeout"

    # 再次扫描不会重复处理
    assert await services.orders.cancel_expired_orders() == 0


@pytest.mark.asyncio
async def test_expiry_sweep_leaves_paid_orders_alone(services, seed, clock, publisher, place_paid_order):
    activity_id = await seed.activity(await seed.club())
    order = await place_paid_order(7, activity_id)

    clock.advance(minutes=30)
    assert clock.now > order.expires_at
    assert await services.orders.cancel_expired_orders() == 0
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PAID
    assert publisher.of_type(OrderCancelled) == []


@pytest.mark.asyncio
async def test_expiry_sweep_skips_orders_the_user_already_cancelled(services, seed, clock, publisher):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)

    clock.advance(minutes=16)
    await services.orders.cancel_order(7, order.id)
    assert await services.orders.cancel_expired_orders() == 0

    cancelled = publisher.of_type(OrderCancelled)
    assert len(cancelled) == 1
    assert cancelled[0].reason == "user_cancel"


@pytest.mark.asyncio
async def test_verify_flow_checks_in_enrollment(services, seed, owner, publisher, place_paid_order):
    activity_id = await seed.activity(await seed.club(owner_id=owner.id))
    order = await place_paid_order(7, activity_id)

    code = await services.orders.get_verify_code(7, order.id)
    assert code == order.verify_code

    with pytest.raises(ForbiddenException):
        await services.orders.verify_order(CurrentUser(id=555), code)

    verified = await services.orders.verify_order(owner, code)
    assert verified.status == OrderStatus.COMPLETED
    assert verified.verified_by == owner.id
    enrollment = await services.enrollments.get_enrollment(7, order.enrollment_id)
    assert enrollment.status == EnrollmentStatus.CHECKED_IN
    assert publisher.of_type(EnrollmentCheckedIn)

    with pytest.raises(InvalidStateException):
        await services.orders.verify_order(owner, code)


@pytest.mark.asyncio
async def test_verify_rejects_forged_code(services, seed, owner, place_paid_order):
    activity_id = await seed.activity(await seed.club(owner_id=owner.id))
    await place_paid_order(7, activity_id)
    with pytest.raises(DomainValidationException):
        await services.orders.verify_order(owner, "Zm9yZ2VkOmNvZGU6eHh4")
