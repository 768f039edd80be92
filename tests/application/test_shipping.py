import pytest

from order_lifecycle.application.ship_order import ShipOrderUseCase
from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain.exceptions import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    ShippingServiceError,
)
from order_lifecycle.domain.models import CancelledBy, LogisticsStatus, OrderStatus, RefundStatus
from tests.factories import load_order, outbox_types, set_status


class LosingStateMachine(OrderStateMachine):
    async def mark_shipped(self, uow, order, provider, shipment, now):
        raise ConcurrentUpdateError(order.id)


async def test_ship_processing_order(uow, clock, shipping, paid_order):
    await set_status(uow, clock, paid_order.id, OrderStatus.PROCESSING)
    order = await ShipOrderUseCase(uow, shipping, clock=clock)(paid_order.id)

    assert order.status == OrderStatus.SHIPPED
    stored = await load_order(uow, paid_order.id)
    assert stored.tracking_id == "AWB-1"
    assert stored.logistics.shipment_id == "SH-1"
    assert stored.logistics.provider == "fakeship"
    assert stored.logistics.status == LogisticsStatus.SHIPPED
    assert "order.shipped" in await outbox_types(uow)


async def test_confirmed_order_cannot_ship(uow, clock, shipping, paid_order):
    with pytest.raises(InvalidTransitionError):
        await ShipOrderUseCase(uow, shipping, clock=clock)(paid_order.id)
    assert shipping.created == 0


async def test_second_shipment_is_refused(uow, clock, shipping, shipped_order):
    with pytest.raises(InvalidTransitionError):
        await ShipOrderUseCase(uow, shipping, clock=clock)(shipped_order.id)
    assert shipping.created == 1


async def test_unrecorded_shipment_is_cancelled(uow, clock, shipping, paid_order):
    await set_status(uow, clock, paid_order.id, OrderStatus.PROCESSING)

    with pytest.raises(ConcurrentUpdateError):
        await ShipOrderUseCase(uow, shipping, state_machine=LosingStateMachine(), clock=clock)(paid_order.id)

    assert shipping.cancelled == ["SH-1"]
    assert (await load_order(uow, paid_order.id)).status == OrderStatus.PROCESSING


@pytest.mark.parametrize("target", [OrderStatus.CONFIRMED, OrderStatus.PENDING])
async def test_admin_cannot_set_payment_driven_statuses(uow, clock, pending_order, target):
    with pytest.raises(InvalidTransitionError):
        await set_status(uow, clock, pending_order.id, target)
    assert (await load_order(uow, pending_order.id)).status == OrderStatus.PENDING


async def test_processing_requires_confirmation(uow, clock, pending_order):
    with pytest.raises(InvalidTransitionError):
        await set_status(uow, clock, pending_order.id, OrderStatus.PROCESSING)


async def test_admin_ship_without_provider(uow, clock, paid_order):
    await set_status(uow, clock, paid_order.id, OrderStatus.PROCESSING)
    with pytest.raises(ShippingServiceError):
        await set_status(uow, clock, paid_order.id, OrderStatus.SHIPPED)


async def test_admin_ship_through_status_update(uow, clock, shipping, paid_order):
    await set_status(uow, clock, paid_order.id, OrderStatus.PROCESSING)
    order = await set_status(uow, clock, paid_order.id, OrderStatus.SHIPPED, shipping=shipping)
    assert order.status == OrderStatus.SHIPPED


async def test_admin_delivery_notifies_once(uow, clock, shipped_order):
    await set_status(uow, clock, shipped_order.id, OrderStatus.DELIVERED)
    await set_status(uow, clock, shipped_order.id, OrderStatus.DELIVERED)

    stored = await load_order(uow, shipped_order.id)
    assert stored.status == OrderStatus.DELIVERED
    assert stored.logistics.delivery_notified is True
    assert (await outbox_types(uow)).count("order.delivered") == 1


async def test_admin_cancel_of_paid_order(uow, clock, paid_order):
    order = await set_status(uow, clock, paid_order.id, OrderStatus.CANCELLED)

    assert order.cancelled_by == CancelledBy.ADMIN
    assert order.refund_status == RefundStatus.REQUESTED
