"""Order status allow-list and the pure mutations behind each transition.

Nothing here touches storage or providers; callers persist the order with a
conditional update so that a transition and its latches commit together.
"""
from datetime import datetime
from typing import Optional

from order_lifecycle.domain.exceptions import AlreadyShippedError, InvalidTransitionError
from order_lifecycle.domain.models import (
    CancelledBy,
    LogisticsStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses an admin may request directly; CONFIRMED only follows a paid callback
ADMIN_TARGETS = frozenset({
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(order: Order, target: OrderStatus) -> None:
    if not can_transition(order.status, target):
        raise InvalidTransitionError(order.status.value, target.value)


def confirm(order: Order, now: datetime) -> None:
    ensure_transition(order, OrderStatus.CONFIRMED)
    order.status = OrderStatus.CONFIRMED
    order.updated_at = now


def cancel(order: Order, cancelled_by: CancelledBy, reason: Optional[str], now: datetime) -> bool:
    """Move to CANCELLED. Returns True when a refund request was opened.

    Inventory restoration is left to the caller (it touches the catalog), but
    must happen in the same transaction as persisting this change.
    """
    if order.logistics.tracking_id or order.logistics.shipment_id:
        raise AlreadyShippedError(
            "Order has already been shipped and cannot be cancelled", order.status.value
        )
    ensure_transition(order, OrderStatus.CANCELLED)

    order.status = OrderStatus.CANCELLED
    order.cancelled_by = cancelled_by
    order.cancelled_at = now
    order.cancellation_reason = reason or _default_reason(cancelled_by)
    order.updated_at = now

    if order.payment.status == PaymentStatus.PAID and cancelled_by != CancelledBy.SYSTEM:
        order.refund_requested = True
        order.refund_requested_at = now
        order.refund_reason = reason or "Cancelled paid order"
        order.refund_status = RefundStatus.REQUESTED
        return True
    return False


def _default_reason(cancelled_by: CancelledBy) -> str:
    if cancelled_by == CancelledBy.USER:
        return "Cancelled by customer"
    if cancelled_by == CancelledBy.ADMIN:
        return "Cancelled by admin"
    return "Cancelled by system"


def fail_payment(order: Order, reason: str, now: datetime) -> bool:
    """Payment failure: system cancellation, never a refund. Returns True if cancelled."""
    order.payment.status = PaymentStatus.FAILED
    order.updated_at = now
    if order.status == OrderStatus.CANCELLED:
        return False
    cancel(order, CancelledBy.SYSTEM, reason, now)
    return True


# Unpaid orders, including ones that only received a rejected callback
EXPIRABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.VERIFICATION_FAILED})


def is_expirable(order: Order) -> bool:
    return order.status == OrderStatus.PENDING and order.payment.status in EXPIRABLE_PAYMENT_STATUSES


def expire(order: Order, now: datetime) -> None:
    if not is_expirable(order):
        raise InvalidTransitionError(
            order.status.value, OrderStatus.CANCELLED.value, "Only unpaid pending orders can expire"
        )
    fail_payment(order, "Payment not completed in time", now)


def mark_processing(order: Order, now: datetime) -> None:
    ensure_transition(order, OrderStatus.PROCESSING)
    order.status = OrderStatus.PROCESSING
    order.updated_at = now


def ensure_shippable(order: Order) -> None:
    """The single precondition for shipping: PROCESSING, paid, no shipment yet"""
    ensure_transition(order, OrderStatus.SHIPPED)
    if order.payment.status != PaymentStatus.PAID:
        raise InvalidTransitionError(
            order.status.value, OrderStatus.SHIPPED.value, "Only paid orders can be shipped"
        )
    if order.logistics.tracking_id or order.logistics.shipment_id:
        raise AlreadyShippedError("Shipment already exists for this order", order.status.value)


def mark_shipped(
    order: Order,
    provider: str,
    shipment_id: str,
    tracking_id: Optional[str],
    courier_name: Optional[str],
    now: datetime,
) -> None:
    ensure_shippable(order)
    order.status = OrderStatus.SHIPPED
    order.logistics.provider = provider
    order.logistics.shipment_id = shipment_id
    order.logistics.tracking_id = tracking_id
    order.logistics.courier_name = courier_name
    order.logistics.status = LogisticsStatus.SHIPPED if tracking_id else LogisticsStatus.CREATED
    order.logistics.shipped_at = now
    order.updated_at = now


def mark_delivered(order: Order, now: datetime) -> bool:
    """Idempotent. Returns True only on the first delivery."""
    if order.status == OrderStatus.DELIVERED:
        return False
    ensure_transition(order, OrderStatus.DELIVERED)
    order.status = OrderStatus.DELIVERED
    order.logistics.status = LogisticsStatus.DELIVERED
    if order.logistics.delivered_at is None:
        order.logistics.delivered_at = now
    order.updated_at = now
    return True


def claim_delivery_notification(order: Order) -> bool:
    """Latch: True exactly once per order"""
    if order.logistics.delivery_notified:
        return False
    order.logistics.delivery_notified = True
    return True
