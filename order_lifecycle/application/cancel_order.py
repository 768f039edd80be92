import logging
from typing import Callable, Optional

from pydantic import BaseModel

from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain.exceptions import AccessDeniedError, OrderNotFoundError, ValidationError
from order_lifecycle.domain.models import CancelledBy, Order, utcnow

logger = logging.getLogger(__name__)


class CancelOrderDTO(BaseModel):
    order_id: str
    cancelled_by: CancelledBy
    user_id: Optional[str] = None
    reason: Optional[str] = None


class CancelOrderUseCase:
    """User or admin cancellation. System cancellations go through payment failure and expiry."""

    def __init__(self, unit_of_work, state_machine: Optional[OrderStateMachine] = None, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock

    async def __call__(self, dto: CancelOrderDTO) -> tuple[Order, bool]:
        if dto.cancelled_by == CancelledBy.SYSTEM:
            raise ValidationError("System cancellations are not requested through this use case")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id)
            if not order:
                raise OrderNotFoundError(f"Order {dto.order_id} not found")
            if dto.cancelled_by == CancelledBy.USER and not order.is_owned_by(dto.user_id or ""):
                raise AccessDeniedError("You can only cancel your own orders")

            refund_requested = await self._state_machine.cancel(
                uow, order, dto.cancelled_by, dto.reason, self._clock()
            )
            await uow.commit()

        return order, refund_requested
