import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from order_lifecycle.application.interfaces import ShippingProvider
from order_lifecycle.application.state_machine import OrderStateMachine, event_payload
from order_lifecycle.domain import returns
from order_lifecycle.domain.exceptions import AccessDeniedError, OrderNotFoundError
from order_lifecycle.domain.models import Order, utcnow

logger = logging.getLogger(__name__)


async def _load(uow, order_id: str) -> Order:
    order = await uow.orders.get_by_id(order_id)
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


class RequestReturnDTO(BaseModel):
    order_id: str
    user_id: str
    reason: str = Field(min_length=1)


class RequestReturnUseCase:
    def __init__(self, unit_of_work, window_days: int = 15, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._window_days = window_days
        self._clock = clock

    async def __call__(self, dto: RequestReturnDTO) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, dto.order_id)
            if not order.is_owned_by(dto.user_id):
                raise AccessDeniedError("You can only return your own orders")
            returns.request_return(order, dto.reason, self._clock(), self._window_days)
            await uow.orders.save(order)
            await uow.outbox.create("return.requested", event_payload(order, reason=dto.reason), order.id)
            await uow.commit()

        logger.info(f"Return requested for order {order.id}")
        return order


class ReviewReturnDTO(BaseModel):
    order_id: str
    admin_id: str
    approve: bool
    notes: Optional[str] = None


class ReviewReturnUseCase:
    def __init__(self, unit_of_work, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, dto: ReviewReturnDTO) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, dto.order_id)
            if dto.approve:
                returns.approve_return(order, dto.admin_id, dto.notes, self._clock())
                event_type = "return.approved"
            else:
                returns.reject_return(order, dto.admin_id, dto.notes, self._clock())
                event_type = "return.rejected"
            await uow.orders.save(order)
            await uow.outbox.create(event_type, event_payload(order, notes=dto.notes), order.id)
            await uow.commit()

        logger.info(f"Return for order {order.id} {'approved' if dto.approve else 'rejected'} by {dto.admin_id}")
        return order


class ScheduleReturnPickupUseCase:
    """approved -> pickup_scheduled; nothing changes unless the provider confirms the pickup"""

    def __init__(self, unit_of_work, shipping: ShippingProvider, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._shipping = shipping
        self._clock = clock

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, order_id)
            returns.ensure_pickup_schedulable(order)

        pickup = await self._shipping.create_return_pickup(order)

        async with self._uow() as uow:
            order = await _load(uow, order_id)
            returns.schedule_pickup(order, pickup.shipment_id, pickup.tracking_id, self._clock())
            await uow.orders.save(order)
            await uow.commit()

        logger.info(f"Return pickup scheduled for order {order.id}, shipment {pickup.shipment_id}")
        return order


class MarkReturnPickedUpUseCase:
    def __init__(self, unit_of_work, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, order_id)
            returns.mark_picked_up(order, self._clock())
            await uow.orders.save(order)
            await uow.commit()

        logger.info(f"Return for order {order.id} picked up")
        return order


class CompleteReturnUseCase:
    def __init__(self, unit_of_work, state_machine: Optional[OrderStateMachine] = None, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock

    async def __call__(self, order_id: str, admin_id: str) -> tuple[Order, bool]:
        async with self._uow() as uow:
            order = await _load(uow, order_id)
            refund_requested = await self._state_machine.complete_return(uow, order, admin_id, self._clock())
            await uow.commit()

        return order, refund_requested
