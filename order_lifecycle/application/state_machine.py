import logging
from datetime import datetime
from typing import Optional

from order_lifecycle.application.interfaces import ShipmentInfo
from order_lifecycle.application.inventory import InventoryLedger
from order_lifecycle.domain import returns, transitions
from order_lifecycle.domain.models import CancelledBy, LogisticsStatus, Order, OrderStatus
from order_lifecycle.domain.tracking import apply_tracking_status

logger = logging.getLogger(__name__)


def event_payload(order: Order, **extra) -> dict:
    payload = {
        "order_id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer_email": order.customer_email,
        "status": order.status.value,
        "payment_status": order.payment.status.value,
        "amount": order.amount,
    }
    payload.update(extra)
    return payload


class OrderStateMachine:
    """Applies order transitions inside an open unit of work.

    Each method mutates the aggregate, performs the latched side effects
    (inventory, notifications via outbox) and saves the order with a
    versioned update. Nothing is durable until the caller commits, so a
    failed save discards the side effects together with the transition.
    """

    def __init__(self, ledger: Optional[InventoryLedger] = None):
        self._ledger = ledger or InventoryLedger()

    async def confirm(self, uow, order: Order, now: datetime) -> None:
        transitions.confirm(order, now)
        await uow.orders.save(order)
        await uow.outbox.create("order.confirmed", event_payload(order), order.id)
        logger.info(f"Order {order.id} confirmed")

    async def cancel(self, uow, order: Order, cancelled_by: CancelledBy, reason: Optional[str], now: datetime) -> bool:
        refund_requested = transitions.cancel(order, cancelled_by, reason, now)
        await self._ledger.restore(uow, order)
        await uow.orders.save(order)

        await uow.outbox.create(
            "order.cancelled",
            event_payload(order, cancelled_by=cancelled_by.value, reason=order.cancellation_reason),
            order.id,
        )
        if refund_requested:
            await uow.outbox.create("refund.requested", event_payload(order, reason=order.refund_reason), order.id)
        logger.info(f"Order {order.id} cancelled by {cancelled_by.value}, refund requested: {refund_requested}")
        return refund_requested

    async def fail_payment(self, uow, order: Order, reason: str, now: datetime) -> None:
        transitions.fail_payment(order, reason, now)
        if order.status == OrderStatus.CANCELLED:
            await self._ledger.restore(uow, order)
        await uow.orders.save(order)
        await uow.outbox.create("payment.failed", event_payload(order, reason=reason), order.id)
        logger.info(f"Payment failed for order {order.id}: {reason}")

    async def expire(self, uow, order: Order, now: datetime) -> None:
        transitions.expire(order, now)
        await self._ledger.restore(uow, order)
        await uow.orders.save(order)
        await uow.outbox.create(
            "order.cancelled",
            event_payload(order, cancelled_by=CancelledBy.SYSTEM.value, reason=order.cancellation_reason),
            order.id,
        )
        logger.info(f"Order {order.order_number} auto-expired")

    async def mark_processing(self, uow, order: Order, now: datetime) -> None:
        transitions.mark_processing(order, now)
        await uow.orders.save(order)
        logger.info(f"Order {order.id} moved to processing")

    async def mark_shipped(self, uow, order: Order, provider: str, shipment: ShipmentInfo, now: datetime) -> None:
        transitions.mark_shipped(
            order,
            provider=provider,
            shipment_id=shipment.shipment_id,
            tracking_id=shipment.tracking_id,
            courier_name=shipment.courier_name,
            now=now,
        )
        await uow.orders.save(order)
        await uow.outbox.create(
            "order.shipped",
            event_payload(order, tracking_id=shipment.tracking_id, courier_name=shipment.courier_name),
            order.id,
        )
        logger.info(f"Order {order.id} shipped, shipment {shipment.shipment_id}")

    async def mark_delivered(self, uow, order: Order, now: datetime) -> bool:
        newly_delivered = transitions.mark_delivered(order, now)
        if not newly_delivered:
            logger.info(f"Order {order.id} already delivered")
            return False
        await self._finish_delivery(uow, order)
        return True

    async def apply_tracking(self, uow, order: Order, status: LogisticsStatus, now: datetime) -> bool:
        changed, newly_delivered = apply_tracking_status(order, status, now)
        if not changed:
            return False
        if newly_delivered:
            await self._finish_delivery(uow, order)
        else:
            await uow.orders.save(order)
        logger.info(f"Order {order.id} logistics status -> {status.value}")
        return True

    async def _finish_delivery(self, uow, order: Order) -> None:
        notify = transitions.claim_delivery_notification(order)
        await uow.orders.save(order)
        if notify:
            await uow.outbox.create("order.delivered", event_payload(order), order.id)
        logger.info(f"Order {order.id} delivered")

    async def complete_return(self, uow, order: Order, admin_id: str, now: datetime) -> bool:
        refund_requested = returns.complete_return(order, admin_id, now)
        await self._ledger.restore(uow, order)
        await uow.orders.save(order)
        await uow.outbox.create("return.completed", event_payload(order), order.id)
        if refund_requested:
            await uow.outbox.create("refund.requested", event_payload(order, reason=order.refund_reason), order.id)
        logger.info(f"Return completed for order {order.id}, refund requested: {refund_requested}")
        return refund_requested
