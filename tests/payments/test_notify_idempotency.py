import asyncio
import json

import pytest

from domain.common.exceptions import SignatureInvalidException
from domain.enrollment.entity import EnrollmentStatus
from domain.order.entity import OrderStatus
from domain.payment.entity import PaymentStatus
from domain.payment.events import PaymentFailed, PaymentSucceeded
from infrastructure.external.payments.mock_client import SIGNATURE_HEADER, sign_payload


def _notify(gateway, order_no: str, *, trade_state: str = "SUCCESS", amount=None, transaction_id="WX0001"):
    payload = {"out_trade_no": order_no, "trade_state": trade_state, "transaction_id": transaction_id}
    if amount is not None:
        payload["amount"] = amount
    body = json.dumps(payload).encode("utf-8")
    return {SIGNATURE_HEADER: sign_payload(body, gateway._secret)}, body


@pytest.fixture
def open_order(services, seed):
    async def _open(user_id: int = 7, price: str = "200.00"):
        activity_id = await seed.activity(await seed.club(), price=price)
        enrollment = await services.enrollments.create_enrollment(user_id, activity_id)
        order = await services.orders.create_order(user_id, enrollment.id)
        await services.payments.prepay(user_id, order.id)
        return order

    return _open


@pytest.mark.asyncio
async def test_prepay_moves_order_to_paying(services, open_order):
    order = await open_order()
    current = await services.orders.get_order(7, order.id)
    assert current.status == OrderStatus.PAYING
    payment = await services.payments.get_payment(7, order.id)
    assert payment.status == PaymentStatus.PENDING
    assert payment.prepay_id.startswith("mock_prepay_")


@pytest.mark.asyncio
async def test_success_notify_marks_order_paid_once(services, gateway, publisher, open_order):
    order = await open_order()
    headers, body = _notify(gateway, order.order_no, amount=20000)

    assert await services.payments.handle_notify(headers, body) == {"code": "SUCCESS", "message": "处理成功"}
    assert await services.payments.handle_notify(headers, body) == {"code": "SUCCESS", "message": "处理成功"}

    paid = await services.orders.get_order(7, order.id)
    assert paid.status == OrderStatus.PAID
    assert paid.paid_at is not None
    assert paid.verify_code
    enrollment = await services.enrollments.get_enrollment(7, order.enrollment_id)
    assert enrollment.status == EnrollmentStatus.PAID
    payment = await services.payments.get_payment(7, order.id)
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.transaction_id == "WX0001"
    assert len(publisher.of_type(PaymentSucceeded)) == 1


@pytest.mark.asyncio
async def test_concurrent_notifies_apply_once(services, gateway, publisher, open_order):
    order = await open_order()
    headers, body = _notify(gateway, order.order_no)

    results = await asyncio.gather(*(services.payments.handle_notify(headers, body) for _ in range(5)))
    assert all(r["code"] == "SUCCESS" for r in results)
    assert len(publisher.of_type(PaymentSucceeded)) == 1
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_bad_signature_touches_nothing(services, gateway, open_order):
    order = await open_order()
    _, body = _notify(gateway, order.order_no)

    with pytest.raises(SignatureInvalidException):
        await services.payments.handle_notify({SIGNATURE_HEADER: "0" * 64}, body)
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PAYING


@pytest.mark.asyncio
async def test_amount_mismatch_is_acknowledged_but_not_applied(services, gateway, publisher, open_order):
    order = await open_order()
    headers, body = _notify(gateway, order.order_no, amount=1)

    assert (await services.payments.handle_notify(headers, body))["code"] == "SUCCESS"
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PAYING
    assert not publisher.of_type(PaymentSucceeded)


@pytest.mark.asyncio
async def test_failed_trade_returns_order_to_pending(services, gateway, publisher, open_order):
    order = await open_order()
    headers, body = _notify(gateway, order.order_no, trade_state="PAYERROR", transaction_id=None)

    await services.payments.handle_notify(headers, body)
    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.PENDING
    assert (await services.payments.get_payment(7, order.id)).status == PaymentStatus.FAILED
    assert publisher.of_type(PaymentFailed)[0].trade_state == "PAYERROR"

    # 可以重新发起支付
    await services.payments.prepay(7, order.id)
    assert (await services.payments.get_payment(7, order.id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_success_on_closed_order_keeps_payment_for_reconciliation(services, gateway, publisher, seed):
    activity_id = await seed.activity(await seed.club())
    enrollment = await services.enrollments.create_enrollment(7, activity_id)
    order = await services.orders.create_order(7, enrollment.id)
    await services.orders.cancel_order(7, order.id)

    headers, body = _notify(gateway, order.order_no)
    assert (await services.payments.handle_notify(headers, body))["code"] == "SUCCESS"

    assert (await services.orders.get_order(7, order.id)).status == OrderStatus.CANCELLED
    assert (await services.payments.get_payment(7, order.id)).status == PaymentStatus.SUCCESS
    assert not publisher.of_type(PaymentSucceeded)


@pytest.mark.asyncio
async def test_unknown_order_is_acknowledged(services, gateway):
    headers, body = _notify(gateway, "NO-SUCH-ORDER")
    assert (await services.payments.handle_notify(headers, body))["code"] == "SUCCESS"
