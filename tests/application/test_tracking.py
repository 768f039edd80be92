from order_lifecycle.application.process_inbox import (
    ProcessInboxEventsUseCase,
    RecordShipmentEventUseCase,
    ShipmentEventDTO,
)
from order_lifecycle.application.sync_tracking import SyncShipmentTrackingUseCase
from order_lifecycle.domain.exceptions import ShippingServiceError
from order_lifecycle.domain.models import LogisticsStatus, OrderStatus
from tests.factories import load_order, outbox_types


async def pending_inbox(uow):
    async with uow() as tx:
        return await tx.inbox.get_pending(limit=100)


async def test_poll_marks_delivery(uow, clock, shipping, shipped_order):
    shipping.statuses["AWB-1"] = "Delivered"
    use_case = SyncShipmentTrackingUseCase(uow, shipping, clock=clock)

    assert await use_case() == 1
    order = await load_order(uow, shipped_order.id)
    assert order.status == OrderStatus.DELIVERED
    assert order.logistics.delivered_at == clock()

    assert await use_case() == 0
    assert (await outbox_types(uow)).count("order.delivered") == 1


async def test_poll_updates_logistics_status(uow, clock, shipping, shipped_order):
    shipping.statuses["AWB-1"] = "Out For Delivery"

    assert await SyncShipmentTrackingUseCase(uow, shipping, clock=clock)() == 1
    order = await load_order(uow, shipped_order.id)
    assert order.status == OrderStatus.SHIPPED
    assert order.logistics.status == LogisticsStatus.IN_TRANSIT


async def test_poll_without_news(uow, clock, shipping, shipped_order):
    assert await SyncShipmentTrackingUseCase(uow, shipping, clock=clock)() == 0
    assert (await load_order(uow, shipped_order.id)).logistics.status == LogisticsStatus.SHIPPED


async def test_poll_survives_provider_errors(uow, clock, shipping, shipped_order):
    shipping.track_error = ShippingServiceError("courier down")

    assert await SyncShipmentTrackingUseCase(uow, shipping, clock=clock)() == 0
    assert (await load_order(uow, shipped_order.id)).status == OrderStatus.SHIPPED


async def test_webhook_replay_is_deduplicated(uow, shipped_order):
    use_case = RecordShipmentEventUseCase(uow)

    assert await use_case(ShipmentEventDTO(awb="AWB-1", current_status="Delivered")) is True
    assert await use_case(ShipmentEventDTO(awb="AWB-1", current_status=" DELIVERED ")) is False

    pending = await pending_inbox(uow)
    assert len(pending) == 1
    assert pending[0]["order_id"] == shipped_order.id
    assert pending[0]["idempotency_key"] == "AWB-1:DELIVERED"


async def test_inbox_event_delivers_order(uow, clock, shipped_order):
    await RecordShipmentEventUseCase(uow)(ShipmentEventDTO(awb="AWB-1", current_status="DELIVERED", courier="x"))

    assert await ProcessInboxEventsUseCase(uow, clock=clock)() == 1
    order = await load_order(uow, shipped_order.id)
    assert order.status == OrderStatus.DELIVERED
    assert await pending_inbox(uow) == []
    assert (await outbox_types(uow)).count("order.delivered") == 1


async def test_webhook_and_poll_notify_once(uow, clock, shipping, shipped_order):
    await RecordShipmentEventUseCase(uow)(ShipmentEventDTO(awb="AWB-1", current_status="IN_TRANSIT"))
    await RecordShipmentEventUseCase(uow)(ShipmentEventDTO(awb="AWB-1", current_status="DELIVERED"))
    await ProcessInboxEventsUseCase(uow, clock=clock)()

    shipping.statuses["AWB-1"] = "Delivered"
    await SyncShipmentTrackingUseCase(uow, shipping, clock=clock)()

    assert (await outbox_types(uow)).count("order.delivered") == 1


async def test_event_for_unknown_awb_fails(uow, clock):
    assert await RecordShipmentEventUseCase(uow)(ShipmentEventDTO(awb="AWB-404", current_status="DELIVERED"))

    assert await ProcessInboxEventsUseCase(uow, clock=clock)() == 0
    assert await pending_inbox(uow) == []
