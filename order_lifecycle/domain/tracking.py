from datetime import datetime
from typing import Optional

from order_lifecycle.domain.models import LogisticsStatus, Order, OrderStatus
from order_lifecycle.domain.transitions import mark_delivered

_COURIER_STATUS_MAP = {
    "PICKED_UP": LogisticsStatus.IN_TRANSIT,
    "IN_TRANSIT": LogisticsStatus.IN_TRANSIT,
    "REACHED_AT_DESTINATION": LogisticsStatus.IN_TRANSIT,
    "OUT_FOR_DELIVERY": LogisticsStatus.IN_TRANSIT,
    "DELIVERED": LogisticsStatus.DELIVERED,
    "RTO_INITIATED": LogisticsStatus.RTO,
    "RTO_DELIVERED": LogisticsStatus.RTO,
    "CANCELLED": LogisticsStatus.CANCELLED,
}


def map_courier_status(raw_status: Optional[str]) -> Optional[LogisticsStatus]:
    """'Out For Delivery' / 'OUT_FOR_DELIVERY' -> in_transit; unknown -> shipped"""
    if not raw_status:
        return None
    key = raw_status.strip().upper().replace(" ", "_")
    return _COURIER_STATUS_MAP.get(key, LogisticsStatus.SHIPPED)


def apply_tracking_status(order: Order, status: LogisticsStatus, now: datetime) -> tuple[bool, bool]:
    """Returns (changed, newly_delivered).

    Courier-side cancellation or RTO only updates the logistics status; the
    order has a tracking id, so it is never moved to CANCELLED from here.
    """
    changed = False
    newly_delivered = False

    if status == LogisticsStatus.DELIVERED:
        if order.status == OrderStatus.SHIPPED:
            newly_delivered = mark_delivered(order, now)
            changed = newly_delivered
        elif order.logistics.status != status and order.status == OrderStatus.DELIVERED:
            order.logistics.status = status
            changed = True
        return changed, newly_delivered

    # Late or out-of-order courier events never rewind a delivered order
    if order.status == OrderStatus.DELIVERED:
        return False, False

    if order.logistics.status != status:
        order.logistics.status = status
        order.updated_at = now
        changed = True
    return changed, newly_delivered
