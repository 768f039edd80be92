import pytest

from order_lifecycle.application.cancel_order import CancelOrderDTO, CancelOrderUseCase
from order_lifecycle.application.state_machine import OrderStateMachine
from order_lifecycle.domain.exceptions import (
    AccessDeniedError,
    ConcurrentUpdateError,
    ConflictError,
    OrderNotFoundError,
    ValidationError,
)
from order_lifecycle.domain.models import CancelledBy, OrderStatus, RefundStatus
from tests.factories import load_inventory, load_order, outbox_types


def cancel_dto(order_id, user_id="user-1", cancelled_by=CancelledBy.USER):
    return CancelOrderDTO(order_id=order_id, cancelled_by=cancelled_by, user_id=user_id, reason="Changed my mind")


async def test_cancel_unpaid_order(uow, clock, pending_order):
    order, refund_requested = await CancelOrderUseCase(uow, clock=clock)(cancel_dto(pending_order.id))

    assert refund_requested is False
    assert order.status == OrderStatus.CANCELLED
    assert await load_inventory(uow) == 10
    assert "refund.requested" not in await outbox_types(uow)


async def test_second_cancel_conflicts(uow, clock, paid_order):
    use_case = CancelOrderUseCase(uow, clock=clock)

    order, refund_requested = await use_case(cancel_dto(paid_order.id))
    assert refund_requested is True
    assert order.refund_status == RefundStatus.REQUESTED

    with pytest.raises(ConflictError) as exc:
        await use_case(cancel_dto(paid_order.id))
    assert exc.value.current_status == "cancelled"

    assert await load_inventory(uow) == 10
    events = await outbox_types(uow)
    assert events.count("order.cancelled") == 1
    assert events.count("refund.requested") == 1


async def test_stale_cancel_loses_and_restores_nothing(uow, clock, paid_order):
    stale = await load_order(uow, paid_order.id)

    await CancelOrderUseCase(uow, clock=clock)(cancel_dto(paid_order.id))

    with pytest.raises(ConcurrentUpdateError):
        async with uow() as tx:
            await OrderStateMachine().cancel(tx, stale, CancelledBy.USER, None, clock())
            await tx.commit()

    stored = await load_order(uow, paid_order.id)
    assert stored.inventory_restored is True
    assert await load_inventory(uow) == 10
    assert (await outbox_types(uow)).count("refund.requested") == 1


async def test_cannot_cancel_someone_elses_order(uow, clock, pending_order):
    with pytest.raises(AccessDeniedError):
        await CancelOrderUseCase(uow, clock=clock)(cancel_dto(pending_order.id, user_id="user-2"))
    assert (await load_order(uow, pending_order.id)).status == OrderStatus.PENDING


async def test_admin_can_cancel_any_order(uow, clock, pending_order):
    order, _ = await CancelOrderUseCase(uow, clock=clock)(
        cancel_dto(pending_order.id, user_id=None, cancelled_by=CancelledBy.ADMIN)
    )
    assert order.cancelled_by == CancelledBy.ADMIN


async def test_system_cancellation_is_not_requestable(uow, clock, pending_order):
    with pytest.raises(ValidationError):
        await CancelOrderUseCase(uow, clock=clock)(cancel_dto(pending_order.id, cancelled_by=CancelledBy.SYSTEM))


async def test_shipped_order_cannot_be_cancelled(uow, clock, shipped_order):
    with pytest.raises(ConflictError):
        await CancelOrderUseCase(uow, clock=clock)(cancel_dto(shipped_order.id))
    assert (await load_order(uow, shipped_order.id)).status == OrderStatus.SHIPPED


async def test_unknown_order(uow, clock):
    with pytest.raises(OrderNotFoundError):
        await CancelOrderUseCase(uow, clock=clock)(cancel_dto("missing"))
