"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.

Notify handling is idempotent: the gateway may deliver the same result many
times and concurrently. Deliveries are serialized per order number through a
non-retrying lock; contention and already-paid orders are acknowledged
without touching state.
"""
from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from application.dto import PaymentSyncDTO, PrepayResponseDTO
from application.dtos.payments import NotifyResult, PrepayRequest
from application.ports.events import EventPublisherPort
from application.ports.lock import IN_PROGRESS, DistributedLockPort
from application.ports.payment_gateway import PaymentGateway
from core.config import settings
from core.logging_config import get_logger
from core.response import gateway_ack
from domain.common.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.common.values import to_minor_units, utcnow
from domain.enrollment.entity import EnrollmentStatus
from domain.order.entity import SETTLED_PAYMENT_STATUSES, Order, OrderStatus
from domain.order.verify_code import VerifyCodeSigner
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.events import LedgerEvent, PaymentFailed, PaymentSucceeded
from shared.codes.payment_codes import FAILED_TRADE_STATES


logger = get_logger(__name__)

NOTIFY_LOCK_TTL_MS = 30_000


def _notify_lock_key(order_no: str) -> str:
    return f"payment:notify:{order_no}"


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        lock: DistributedLockPort,
        gateway: PaymentGateway,
        publisher: EventPublisherPort,
        signer: VerifyCodeSigner,
        *,
        allow_mock_payment: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._lock = lock
        self.gateway = gateway
        self._publisher = publisher
        self._signer = signer
        self._allow_mock = settings.DEBUG if allow_mock_payment is None else allow_mock_payment
        self._clock = clock

    @property
    def provider(self) -> str:
        return self.gateway.provider

    async def _load_owned_order(self, uow: AbstractUnitOfWork, user_id: int, order_id: int) -> Order:
        order = await uow.order_repository.get_by_id(order_id)
        if not order:
            raise NotFoundException("Order", order_id)
        if not order.belongs_to(user_id):
            raise ForbiddenException("无权操作此订单")
        return order

    # ------------------------------------------------------------------ prepay

    async def prepay(self, user_id: int, order_id: int, payer_id: Optional[str] = None) -> PrepayResponseDTO:
        """唯一的 PENDING -> PAYING 路径"""
        now = self._clock()
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load_owned_order(uow, user_id, order_id)
            order.require_status(OrderStatus.PENDING, action="支付")
            if order.is_expired(now):
                raise InvalidStateException("订单已过期，请重新下单", current_status=order.status)
            payment = await uow.payment_repository.get_by_order_id(order.id)
            if payment and payment.is_success:
                raise InvalidStateException("订单已支付", current_status=payment.status)
            activity = await uow.activity_repository.get_by_id(order.activity_id)

        title = activity.title if activity else order.order_no
        logger.info("payment_prepay_request", order_no=order.order_no, provider=self.provider)
        result = await self.gateway.create_prepay(
            PrepayRequest(
                order_no=order.order_no,
                amount_minor=to_minor_units(order.total_amount),
                payer_id=payer_id or str(user_id),
                description=f"{title} - 活动报名",
            )
        )

        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_order_id(order.id)
            if payment is None:
                await uow.payment_repository.create(
                    Payment(
                        id=None,
                        order_id=order.id,
                        order_no=order.order_no,
                        user_id=user_id,
                        amount=order.total_amount,
                        provider=self.provider,
                        prepay_id=result.prepay_id,
                    )
                )
            else:
                payment.restart(result.prepay_id, order.total_amount)
                payment.provider = self.provider
                await uow.payment_repository.update(payment)

            if not await uow.order_repository.transition(order.id, [OrderStatus.PENDING], OrderStatus.PAYING):
                current = await uow.order_repository.get_by_id(order.id)
                raise InvalidStateException("订单状态已变化，无法支付", current_status=current.status)

        logger.info("payment_prepay_created", order_no=order.order_no, provider=self.provider)
        return PrepayResponseDTO(
            order_id=order.id,
            order_no=order.order_no,
            provider=self.provider,
            pay_params=result.client_params,
        )

    # ------------------------------------------------------------------ notify

    async def handle_notify(self, headers: Mapping[str, Any], body: bytes) -> dict[str, str]:
        # 签名校验失败直接抛出 SignatureInvalidException，不触碰任何状态
        result = self.gateway.parse_notify(headers, body)
        logger.info(
            "payment_notify_received",
            provider=self.provider,
            order_no=result.order_no,
            trade_state=result.trade_state,
            transaction_id=result.transaction_id,
        )
        outcome = await self._lock.try_with_lock(
            _notify_lock_key(result.order_no),
            lambda: self._process_notify(result),
            ttl_ms=NOTIFY_LOCK_TTL_MS,
        )
        if outcome is IN_PROGRESS:
            logger.info("payment_notify_in_progress", order_no=result.order_no)
            return gateway_ack(message="处理中")
        return gateway_ack()

    async def _process_notify(self, result: NotifyResult) -> bool:
        """在订单号锁内执行；返回是否发生了状态变更"""
        now = self._clock()
        events: List[LedgerEvent] = []
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_order_no(result.order_no)
            if not order:
                logger.error("payment_notify_order_not_found", order_no=result.order_no)
                return False
            if order.status in SETTLED_PAYMENT_STATUSES or order.paid_at is not None:
                logger.info("payment_notify_duplicate", order_no=order.order_no, status=order.status.value)
                return False

            if result.is_success:
                expected_minor = to_minor_units(order.total_amount)
                if result.amount_minor is not None and result.amount_minor != expected_minor:
                    logger.error(
                        "payment_amount_mismatch",
                        order_no=order.order_no,
                        expected=expected_minor,
                        reported=result.amount_minor,
                    )
                    return False
                events = await self._apply_success(uow, order, result.transaction_id, now)
            elif result.trade_state in FAILED_TRADE_STATES:
                events = await self._apply_failure(uow, order, result.trade_state)
            else:
                logger.info("payment_notify_pending_state", order_no=order.order_no, trade_state=result.trade_state)

        await self._publisher.publish_all(events)
        return bool(events)

    async def _apply_success(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        transaction_id: Optional[str],
        now: datetime,
    ) -> List[LedgerEvent]:
        """支付成功：支付记录、核销码、订单 PAID、报名 PAID 在同一事务内完成"""
        payment = await uow.payment_repository.get_by_order_id(order.id)
        if payment is None:
            payment = await uow.payment_repository.create(
                Payment(
                    id=None,
                    order_id=order.id,
                    order_no=order.order_no,
                    user_id=order.user_id,
                    amount=order.total_amount,
                    provider=self.provider,
                )
            )
        payment.mark_success(transaction_id, now)
        await uow.payment_repository.update(payment)

        if order.status not in (OrderStatus.PENDING, OrderStatus.PAYING):
            # 订单已取消后才收到成功通知：保留收款记录，交由人工对账退款
            logger.error(
                "payment_success_on_closed_order",
                order_no=order.order_no,
                status=order.status.value,
                transaction_id=transaction_id,
            )
            return []

        verify_code = self._signer.generate(order.id, now=now)
        changed = await uow.order_repository.transition(
            order.id,
            [OrderStatus.PENDING, OrderStatus.PAYING],
            OrderStatus.PAID,
            paid_at=now,
            verify_code=verify_code,
        )
        if not changed:
            current = await uow.order_repository.get_by_id(order.id)
            raise InvalidStateException("订单状态已变化", current_status=current.status)
        await uow.enrollment_repository.transition(
            order.enrollment_id, [EnrollmentStatus.PENDING], EnrollmentStatus.PAID
        )

        logger.info(
            "payment_succeeded",
            order_no=order.order_no,
            amount=str(order.total_amount),
            transaction_id=transaction_id,
        )
        return [
            PaymentSucceeded(
                order_id=order.id,
                order_no=order.order_no,
                user_id=order.user_id,
                amount=str(order.total_amount),
                transaction_id=transaction_id,
            )
        ]

    async def _apply_failure(self, uow: AbstractUnitOfWork, order: Order, trade_state: str) -> List[LedgerEvent]:
        """支付失败：支付记录 FAILED，订单回到 PENDING 允许重新支付；重复的失败结果不再发事件"""
        changed = False
        payment = await uow.payment_repository.get_by_order_id(order.id)
        if payment and payment.status == PaymentStatus.PENDING:
            payment.mark_failed(trade_state)
            await uow.payment_repository.update(payment)
            changed = True
        if order.status == OrderStatus.PAYING:
            if await uow.order_repository.transition(order.id, [OrderStatus.PAYING], OrderStatus.PENDING):
                changed = True
        if not changed:
            logger.info("payment_failure_duplicate", order_no=order.order_no, trade_state=trade_state)
            return []
        logger.warning("payment_failed", order_no=order.order_no, trade_state=trade_state)
        return [PaymentFailed(order_id=order.id, order_no=order.order_no, trade_state=trade_state)]

    # ------------------------------------------------------------------ reconcile

    async def sync_payment_status(self, order_id: int, *, user_id: Optional[int] = None) -> PaymentSyncDTO:
        """主动查询网关补偿丢失的回调；成功与失败（CLOSED/PAYERROR 等）都走与回调相同的落库路径"""
        async with self._uow_factory(readonly=True) as uow:
            if user_id is None:
                order = await uow.order_repository.get_by_id(order_id)
                if not order:
                    raise NotFoundException("Order", order_id)
            else:
                order = await self._load_owned_order(uow, user_id, order_id)

        if order.status in SETTLED_PAYMENT_STATUSES:
            return PaymentSyncDTO(order_id=order.id, status="paid", updated=False)

        query = await self.gateway.query_by_order_no(order.order_no)
        failed = query.trade_state in FAILED_TRADE_STATES
        if query.trade_state != "SUCCESS" and not failed:
            return PaymentSyncDTO(order_id=order.id, status=query.trade_state.lower(), updated=False)

        result = NotifyResult(
            order_no=order.order_no,
            trade_state=query.trade_state,
            transaction_id=query.transaction_id,
            amount_minor=query.amount_minor,
        )
        outcome = await self._lock.try_with_lock(
            _notify_lock_key(order.order_no),
            lambda: self._process_notify(result),
            ttl_ms=NOTIFY_LOCK_TTL_MS,
        )
        if outcome is IN_PROGRESS:
            return PaymentSyncDTO(order_id=order.id, status="processing", updated=False)
        async with self._uow_factory(readonly=True) as uow:
            current = await uow.order_repository.get_by_id(order.id)
        if current.status in SETTLED_PAYMENT_STATUSES:
            status = "paid"
        elif failed:
            status = "failed"
        else:
            status = current.status.value.lower()
        logger.info("payment_status_synced", order_no=order.order_no, updated=bool(outcome), status=status)
        return PaymentSyncDTO(order_id=order.id, status=status, updated=bool(outcome))

    async def mock_payment_success(self, user_id: int, order_id: int) -> Order:
        """开发环境模拟支付成功"""
        if not self._allow_mock:
            raise ForbiddenException("此功能仅在开发环境可用")
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load_owned_order(uow, user_id, order_id)
        if order.status in SETTLED_PAYMENT_STATUSES:
            return order
        order.require_status(OrderStatus.PENDING, OrderStatus.PAYING, action="模拟支付")

        result = NotifyResult(
            order_no=order.order_no,
            trade_state="SUCCESS",
            transaction_id=f"MOCK_{secrets.token_hex(8).upper()}",
        )
        await self._lock.with_lock(_notify_lock_key(order.order_no), lambda: self._process_notify(result))
        logger.info("payment_mock_success", order_no=order.order_no, transaction_id=result.transaction_id)

        async with self._uow_factory(readonly=True) as uow:
            return await uow.order_repository.get_by_id(order.id)

    async def get_payment(self, user_id: int, order_id: int) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load_owned_order(uow, user_id, order_id)
            payment = await uow.payment_repository.get_by_order_id(order.id)
        if not payment:
            raise NotFoundException("Payment", order_id)
        return payment

    async def aclose(self) -> None:
        await self.gateway.aclose()
