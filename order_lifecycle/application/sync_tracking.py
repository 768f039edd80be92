import logging
from typing import Callable, Optional

from order_lifecycle.application.interfaces import ShippingProvider
from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain.models import Order, OrderStatus, utcnow
from order_lifecycle.domain.tracking import map_courier_status

logger = logging.getLogger(__name__)


async def apply_courier_status(
    uow, state_machine: OrderStateMachine, order: Order, raw_status: Optional[str], now
) -> bool:
    """Shared by the tracking poll and the shipment webhook. Returns True if the order changed."""
    status = map_courier_status(raw_status)
    if status is None:
        return False
    return await state_machine.apply_tracking(uow, order, status, now)


class SyncShipmentTrackingUseCase:
    """Polls the courier for every shipped order that has a tracking id"""

    def __init__(
        self,
        unit_of_work,
        shipping: ShippingProvider,
        state_machine: Optional[OrderStateMachine] = None,
        clock: Callable = utcnow,
    ):
        self._uow = unit_of_work
        self._shipping = shipping
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock

    async def __call__(self, limit: int = 100) -> int:
        async with self._uow() as uow:
            order_ids = await uow.orders.find_trackable(limit=limit)

        if not order_ids:
            return 0

        logger.info(f"Syncing tracking for {len(order_ids)} order(s)")
        updated = 0
        for order_id in order_ids:
            try:
                async with self._uow() as uow:
                    order = await uow.orders.get_by_id(order_id)
                if not order or order.status != OrderStatus.SHIPPED or not order.tracking_id:
                    continue

                raw_status = await self._shipping.track_shipment(order.tracking_id)

                async with self._uow() as uow:
                    order = await uow.orders.get_by_id(order_id)
                    if order and await apply_courier_status(uow, self._state_machine, order, raw_status, self._clock()):
                        await uow.commit()
                        updated += 1
            except Exception as e:
                logger.error(f"Tracking sync failed for order {order_id}: {e}")

        logger.info(f"Tracking sync updated {updated} order(s)")
        return updated
