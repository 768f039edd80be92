import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel

from order_lifecycle.application.interfaces import CallbackStatus, CallbackVerification, PaymentGateway
from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain.exceptions import (
    CallbackVerificationError,
    ConcurrentUpdateError,
    OrderNotFoundError,
    PaymentServiceError,
)
from order_lifecycle.domain.models import (
    AttemptOutcome,
    AttemptStatus,
    Order,
    OrderStatus,
    PaymentAttempt,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class PaymentCallbackDTO(BaseModel):
    provider: PaymentMethod
    payload: dict[str, Any]
    signature: Optional[str] = None
    raw_body: Optional[bytes] = None


class ReconciliationResult(BaseModel):
    order_id: str
    outcome: AttemptOutcome
    order_status: OrderStatus
    payment_status: PaymentStatus
    message: Optional[str] = None


class ProcessPaymentCallbackUseCase:
    """Payment reconciler.

    Verifies the callback with the provider's gateway, then converges the
    order in one transaction. Every callback, verified or not, leaves one
    entry in ``payment.attempts``; only the first verified success with a
    matching amount is applied. A concurrent writer makes the versioned
    save fail, in which case the whole reconciliation is retried on a fresh
    copy of the order.
    """

    def __init__(
        self,
        unit_of_work,
        gateways: dict[PaymentMethod, PaymentGateway],
        state_machine: Optional[OrderStateMachine] = None,
        clock: Callable = utcnow,
        max_retries: int = 3,
    ):
        self._uow = unit_of_work
        self._gateways = gateways
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock
        self._max_retries = max_retries

    async def __call__(self, dto: PaymentCallbackDTO) -> ReconciliationResult:
        gateway = self._gateways.get(dto.provider)
        if gateway is None:
            raise PaymentServiceError(f"No payment gateway configured for '{dto.provider.value}'")

        verification = gateway.verify_callback(dto.payload, dto.signature, dto.raw_body)
        callback = verification.callback
        if not callback.order_id:
            logger.error(f"{dto.provider.value} callback without order reference: {callback.raw}")
            raise CallbackVerificationError("Callback does not reference an order")

        logger.info(
            f"Processing {dto.provider.value} callback for order {callback.order_id}: "
            f"status={callback.status.value}, verified={verification.verified}"
        )

        for attempt_no in range(1, self._max_retries + 1):
            try:
                return await self._reconcile(verification)
            except ConcurrentUpdateError:
                if attempt_no == self._max_retries:
                    raise
                logger.warning(
                    f"Order {callback.order_id} changed while reconciling, retry {attempt_no}/{self._max_retries}"
                )

    async def _reconcile(self, verification: CallbackVerification) -> ReconciliationResult:
        callback = verification.callback
        now = self._clock()

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(callback.order_id)
            if not order:
                raise OrderNotFoundError(f"Order {callback.order_id} not found")

            attempt = PaymentAttempt(
                txn_id=callback.txn_id,
                provider_payment_id=callback.payment_id,
                amount=callback.amount or 0,
                status=AttemptStatus.SUCCESS if callback.status == CallbackStatus.SUCCESS else AttemptStatus.FAILED,
                raw_payload=callback.raw,
                created_at=now,
            )

            if not verification.verified:
                outcome, message = self._reject_unverified(order, attempt, verification.reason)
            elif callback.status == CallbackStatus.SUCCESS:
                outcome, message = self._check_success(order, attempt)
            else:
                outcome, message = self._check_failure(order, attempt)

            order.payment.record_attempt(attempt)
            order.updated_at = now

            if outcome == AttemptOutcome.APPLIED and callback.status == CallbackStatus.SUCCESS:
                order.payment.status = PaymentStatus.PAID
                order.payment.paid_at = now
                order.payment.set_provider_ids(callback.txn_id, callback.payment_id)
                await self._state_machine.confirm(uow, order, now)
            elif outcome == AttemptOutcome.APPLIED:
                order.payment.set_provider_ids(callback.txn_id, callback.payment_id)
                await self._state_machine.fail_payment(
                    uow, order, callback.message or "Payment failed at provider", now
                )
            else:
                await uow.orders.save(order)

            await uow.commit()

        return ReconciliationResult(
            order_id=order.id,
            outcome=outcome,
            order_status=order.status,
            payment_status=order.payment.status,
            message=message,
        )

    @staticmethod
    def _reject_unverified(order: Order, attempt: PaymentAttempt, reason: Optional[str]):
        attempt.outcome = AttemptOutcome.REJECTED
        logger.error(
            f"Callback verification failed for order {order.id}: {reason}; "
            f"txn={attempt.txn_id}, payload={attempt.raw_payload}"
        )
        # A forged callback must not undo a settled payment
        if order.payment.status not in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            order.payment.status = PaymentStatus.VERIFICATION_FAILED
        return AttemptOutcome.REJECTED, reason or "Signature verification failed"

    @staticmethod
    def _check_success(order: Order, attempt: PaymentAttempt):
        if order.payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            attempt.outcome = AttemptOutcome.DUPLICATE
            logger.info(f"Order {order.id} already paid, duplicate success callback ignored")
            return AttemptOutcome.DUPLICATE, "Payment already processed"

        if order.status == OrderStatus.CANCELLED:
            attempt.outcome = AttemptOutcome.IGNORED
            logger.warning(
                f"Success callback for cancelled order {order.id} (txn {attempt.txn_id}, "
                f"amount {attempt.amount}); flagged for manual review"
            )
            return AttemptOutcome.IGNORED, "Order is cancelled; payment flagged for review"

        if attempt.amount != order.amount:
            attempt.outcome = AttemptOutcome.REJECTED
            logger.error(
                f"Amount mismatch on callback for order {order.id}: "
                f"expected {order.amount}, got {attempt.amount} (txn {attempt.txn_id})"
            )
            return AttemptOutcome.REJECTED, "Amount mismatch"

        if order.status != OrderStatus.PENDING:
            attempt.outcome = AttemptOutcome.IGNORED
            logger.warning(f"Success callback for order {order.id} in status {order.status.value} ignored")
            return AttemptOutcome.IGNORED, f"Order is {order.status.value}"

        attempt.outcome = AttemptOutcome.APPLIED
        return AttemptOutcome.APPLIED, "Payment successful"

    @staticmethod
    def _check_failure(order: Order, attempt: PaymentAttempt):
        if order.payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            attempt.outcome = AttemptOutcome.IGNORED
            logger.warning(f"Failure callback for already paid order {order.id} ignored")
            return AttemptOutcome.IGNORED, "Payment already processed"

        if order.status == OrderStatus.CANCELLED:
            attempt.outcome = AttemptOutcome.IGNORED
            logger.info(f"Failure callback for cancelled order {order.id} recorded")
            return AttemptOutcome.IGNORED, "Order already cancelled"

        attempt.outcome = AttemptOutcome.APPLIED
        return AttemptOutcome.APPLIED, "Payment failed"
