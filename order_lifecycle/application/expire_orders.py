import logging
from datetime import timedelta
from typing import Callable, Optional

from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain import transitions
from order_lifecycle.domain.exceptions import ConflictError
from order_lifecycle.domain.models import utcnow

logger = logging.getLogger(__name__)


class ExpirePendingOrdersUseCase:
    """Cancels unpaid orders older than the expiry window.

    Each order is expired in its own transaction. The versioned save makes
    overlapping sweeps (or a payment callback landing at the same moment)
    safe: the loser gets a conflict and the order is skipped.
    """

    def __init__(
        self,
        unit_of_work,
        state_machine: Optional[OrderStateMachine] = None,
        expiry_minutes: int = 15,
        clock: Callable = utcnow,
    ):
        self._uow = unit_of_work
        self._state_machine = state_machine or OrderStateMachine()
        self._expiry = timedelta(minutes=expiry_minutes)
        self._clock = clock

    async def __call__(self, limit: int = 100) -> int:
        now = self._clock()
        async with self._uow() as uow:
            order_ids = await uow.orders.find_expirable(now - self._expiry, limit=limit)

        if not order_ids:
            return 0

        logger.info(f"Found {len(order_ids)} expired pending order(s)")
        expired = 0
        for order_id in order_ids:
            try:
                async with self._uow() as uow:
                    order = await uow.orders.get_by_id(order_id)
                    if not order or not transitions.is_expirable(order):
                        continue
                    await self._state_machine.expire(uow, order, self._clock())
                    await uow.commit()
                    expired += 1
            except ConflictError as e:
                logger.info(f"Skipping order {order_id}: {e}")

        logger.info(f"Expired {expired} order(s)")
        return expired
