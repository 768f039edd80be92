import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict

from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.application.sync_tracking import apply_courier_status
from order_lifecycle.domain.exceptions import ConcurrentUpdateError
from order_lifecycle.domain.models import utcnow

logger = logging.getLogger(__name__)

SHIPMENT_STATUS_EVENT = "shipment.status"


class ShipmentEventDTO(BaseModel):
    model_config = ConfigDict(extra="allow")

    awb: str
    current_status: str


class RecordShipmentEventUseCase:
    """Stores a courier webhook in the inbox. Returns False for a replayed event."""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: ShipmentEventDTO) -> bool:
        idempotency_key = f"{dto.awb}:{dto.current_status.strip().upper()}"

        async with self._uow() as uow:
            if await uow.inbox.exists(idempotency_key):
                logger.info(f"Shipment event {idempotency_key} already received")
                return False

            order = await uow.orders.get_by_tracking_id(dto.awb)
            await uow.inbox.create(
                event_type=SHIPMENT_STATUS_EVENT,
                event_data=dto.model_dump(mode="json"),
                order_id=order.id if order else None,
                idempotency_key=idempotency_key,
            )
            await uow.commit()

        logger.info(f"Shipment event {idempotency_key} stored in inbox")
        return True


class ProcessInboxEventsUseCase:
    def __init__(self, unit_of_work, state_machine: Optional[OrderStateMachine] = None, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock

    async def __call__(self, limit: int = 10) -> int:
        """Applies pending inbox events. Returns the number processed."""
        async with self._uow() as uow:
            pending = await uow.inbox.get_pending(limit=limit)

        if not pending:
            return 0

        logger.info(f"Processing {len(pending)} inbox event(s)")
        processed = 0
        for event in pending:
            try:
                if await self._process(event):
                    processed += 1
            except ConcurrentUpdateError:
                # left pending, retried on the next pass
                logger.warning(f"Order changed while applying inbox event {event['id']}")
            except Exception as e:
                logger.error(f"Error processing inbox event {event['id']}: {e}")
                await self._mark_failed(event["id"])

        return processed

    async def _process(self, event: dict[str, Any]) -> bool:
        async with self._uow() as uow:
            if event["event_type"] != SHIPMENT_STATUS_EVENT:
                logger.warning(f"Unknown inbox event type {event['event_type']} ({event['id']})")
                await uow.inbox.mark_as_failed(event["id"])
                await uow.commit()
                return False

            data = event["event_data"]
            order = None
            if event["order_id"]:
                order = await uow.orders.get_by_id(event["order_id"])
            if order is None:
                order = await uow.orders.get_by_tracking_id(data["awb"])
            if order is None:
                logger.error(f"No order for awb {data['awb']} (inbox event {event['id']})")
                await uow.inbox.mark_as_failed(event["id"])
                await uow.commit()
                return False

            await apply_courier_status(uow, self._state_machine, order, data.get("current_status"), self._clock())
            await uow.inbox.mark_as_processed(event["id"])
            await uow.commit()

        logger.info(f"Inbox event {event['id']} applied to order {order.id}")
        return True

    async def _mark_failed(self, event_id: str) -> None:
        async with self._uow() as uow:
            await uow.inbox.mark_as_failed(event_id)
            await uow.commit()
