"""Return and refund sub-workflows attached to delivered/cancelled orders."""
from datetime import datetime
from typing import Optional

from order_lifecycle.domain.exceptions import RefundNotAllowedError, ReturnNotAllowedError
from order_lifecycle.domain.models import (
    AttemptOutcome,
    AttemptStatus,
    Order,
    PaymentAttempt,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
)

RETURN_TRANSITIONS: dict[ReturnStatus, frozenset[ReturnStatus]] = {
    ReturnStatus.NONE: frozenset({ReturnStatus.REQUESTED}),
    ReturnStatus.REQUESTED: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
    ReturnStatus.APPROVED: frozenset({ReturnStatus.PICKUP_SCHEDULED}),
    ReturnStatus.PICKUP_SCHEDULED: frozenset({ReturnStatus.PICKED_UP}),
    ReturnStatus.PICKED_UP: frozenset({ReturnStatus.COMPLETED}),
    ReturnStatus.REJECTED: frozenset(),
    ReturnStatus.COMPLETED: frozenset(),
}


def _move_return(order: Order, target: ReturnStatus) -> None:
    current = order.return_request.status
    if target not in RETURN_TRANSITIONS[current]:
        raise ReturnNotAllowedError(
            f"Return cannot move from '{current.value}' to '{target.value}'", current.value
        )
    order.return_request.status = target


def request_return(order: Order, reason: str, now: datetime, window_days: int) -> None:
    if not order.can_request_return(now, window_days):
        raise ReturnNotAllowedError(
            f"Returns are accepted only for delivered orders within {window_days} days of delivery "
            "and only once per order",
            order.status.value,
        )
    _move_return(order, ReturnStatus.REQUESTED)
    order.return_request.requested = True
    order.return_request.requested_at = now
    order.return_request.reason = reason
    order.updated_at = now


def approve_return(order: Order, admin_id: str, notes: Optional[str], now: datetime) -> None:
    _move_return(order, ReturnStatus.APPROVED)
    _processed(order, admin_id, notes, now)


def reject_return(order: Order, admin_id: str, notes: Optional[str], now: datetime) -> None:
    _move_return(order, ReturnStatus.REJECTED)
    _processed(order, admin_id, notes, now)


def ensure_pickup_schedulable(order: Order) -> None:
    if ReturnStatus.PICKUP_SCHEDULED not in RETURN_TRANSITIONS[order.return_request.status]:
        raise ReturnNotAllowedError(
            f"Pickup cannot be scheduled for a return in '{order.return_request.status.value}'",
            order.return_request.status.value,
        )


def schedule_pickup(order: Order, shipment_id: str, tracking_id: Optional[str], now: datetime) -> None:
    _move_return(order, ReturnStatus.PICKUP_SCHEDULED)
    order.return_request.return_shipment_id = shipment_id
    order.return_request.return_tracking_id = tracking_id
    order.updated_at = now


def mark_picked_up(order: Order, now: datetime) -> None:
    _move_return(order, ReturnStatus.PICKED_UP)
    order.updated_at = now


def complete_return(order: Order, admin_id: str, now: datetime) -> bool:
    """Returns True when the completion opened a refund request.

    Inventory restoration is the caller's job, guarded by the same latch as
    cancellations.
    """
    _move_return(order, ReturnStatus.COMPLETED)
    _processed(order, admin_id, order.return_request.admin_notes, now)
    if order.payment.status == PaymentStatus.PAID and order.refund_status in (RefundStatus.NONE, RefundStatus.FAILED):
        request_refund(order, order.return_request.reason or "Return completed", now)
        return True
    return False


def _processed(order: Order, admin_id: str, notes: Optional[str], now: datetime) -> None:
    order.return_request.processed_by = admin_id
    order.return_request.processed_at = now
    if notes:
        order.return_request.admin_notes = notes
    order.updated_at = now


def request_refund(order: Order, reason: str, now: datetime) -> None:
    order.refund_requested = True
    order.refund_requested_at = now
    order.refund_reason = reason
    order.refund_status = RefundStatus.REQUESTED
    order.updated_at = now


def begin_refund(order: Order, now: datetime) -> None:
    """requested -> processing; the claim that serialises concurrent approvals"""
    if order.refund_status != RefundStatus.REQUESTED:
        raise RefundNotAllowedError(
            f"Refund is '{order.refund_status.value}', only requested refunds can be approved",
            order.refund_status.value,
        )
    if order.payment.status != PaymentStatus.PAID:
        raise RefundNotAllowedError(
            f"Payment is '{order.payment.status.value}', only paid orders can be refunded",
            order.payment.status.value,
        )
    order.refund_status = RefundStatus.PROCESSING
    order.updated_at = now


def complete_refund(
    order: Order,
    payment_id: str,
    amount: int,
    provider_ref: Optional[str],
    now: datetime,
) -> None:
    if order.refund_status != RefundStatus.PROCESSING:
        raise RefundNotAllowedError(
            f"Refund is '{order.refund_status.value}', expected processing", order.refund_status.value
        )
    order.payment.status = PaymentStatus.REFUNDED
    order.payment.refund_amount = amount
    order.payment.refunded_at = now
    order.payment.record_attempt(
        PaymentAttempt(
            txn_id=provider_ref,
            provider_payment_id=payment_id,
            amount=amount,
            status=AttemptStatus.REFUND,
            outcome=AttemptOutcome.APPLIED,
            raw_payload={"refund_reference": provider_ref},
            created_at=now,
        )
    )
    order.refund_status = RefundStatus.REFUNDED
    order.updated_at = now


def rollback_refund(order: Order, now: datetime) -> None:
    """Provider refused or failed: back to requested so the admin can retry"""
    if order.refund_status == RefundStatus.PROCESSING:
        order.refund_status = RefundStatus.REQUESTED
        order.updated_at = now


def reject_refund(order: Order, reason: Optional[str], now: datetime) -> None:
    if order.refund_status != RefundStatus.REQUESTED:
        raise RefundNotAllowedError(
            f"Refund is '{order.refund_status.value}', only requested refunds can be rejected",
            order.refund_status.value,
        )
    order.refund_status = RefundStatus.FAILED
    order.refund_requested = False
    if reason:
        order.refund_reason = reason
    order.updated_at = now
