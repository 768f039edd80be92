import logging
from typing import Callable, Optional

from pydantic import BaseModel

from order_lifecycle.application.interfaces import ShippingProvider
from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain import transitions
from order_lifecycle.domain.exceptions import InvalidTransitionError, OrderNotFoundError, ShippingServiceError
from order_lifecycle.domain.models import CancelledBy, Order, OrderStatus, utcnow

logger = logging.getLogger(__name__)


async def _load(uow, order_id: str) -> Order:
    order = await uow.orders.get_by_id(order_id)
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


class ShipOrderUseCase:
    """processing -> shipped.

    The shipment is created at the provider between two transactions. If
    the shipped transition then cannot be committed, the shipment is
    cancelled at the provider and the error is raised to the caller.
    """

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

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, order_id)
            transitions.ensure_shippable(order)

        shipment = await self._shipping.create_shipment(order)
        logger.info(f"Shipment {shipment.shipment_id} created for order {order_id} (awb {shipment.tracking_id})")

        try:
            async with self._uow() as uow:
                order = await _load(uow, order_id)
                await self._state_machine.mark_shipped(uow, order, self._shipping.name, shipment, self._clock())
                await uow.commit()
        except Exception:
            logger.error(f"Could not record shipment {shipment.shipment_id} for order {order_id}, cancelling it")
            await self._cancel_shipment(shipment.shipment_id)
            raise

        return order

    async def _cancel_shipment(self, shipment_id: str) -> None:
        try:
            await self._shipping.cancel_shipment(shipment_id)
        except Exception as e:
            logger.error(f"Failed to cancel orphaned shipment {shipment_id}: {e}")


class UpdateOrderStatusDTO(BaseModel):
    order_id: str
    status: OrderStatus
    admin_id: str
    reason: Optional[str] = None


class UpdateOrderStatusUseCase:
    """Admin status change restricted to the allow-list targets"""

    def __init__(
        self,
        unit_of_work,
        shipping: Optional[ShippingProvider] = None,
        state_machine: Optional[OrderStateMachine] = None,
        clock: Callable = utcnow,
    ):
        self._uow = unit_of_work
        self._shipping = shipping
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock

    async def __call__(self, dto: UpdateOrderStatusDTO) -> Order:
        if dto.status == OrderStatus.SHIPPED:
            if self._shipping is None:
                raise ShippingServiceError("No shipping provider configured")
            return await ShipOrderUseCase(self._uow, self._shipping, self._state_machine, self._clock)(dto.order_id)

        async with self._uow() as uow:
            order = await _load(uow, dto.order_id)
            if dto.status not in transitions.ADMIN_TARGETS:
                raise InvalidTransitionError(
                    order.status.value, dto.status.value, f"Status '{dto.status.value}' cannot be set directly"
                )

            now = self._clock()
            if dto.status == OrderStatus.PROCESSING:
                await self._state_machine.mark_processing(uow, order, now)
            elif dto.status == OrderStatus.DELIVERED:
                await self._state_machine.mark_delivered(uow, order, now)
            elif dto.status == OrderStatus.CANCELLED:
                await self._state_machine.cancel(uow, order, CancelledBy.ADMIN, dto.reason, now)
            await uow.commit()

        logger.info(f"Order {order.id} status set to {order.status.value} by {dto.admin_id}")
        return order
