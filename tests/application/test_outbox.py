from order_lifecycle.application.process_outbox import ProcessOutboxEventsUseCase
from tests.factories import FakeSink, outbox_types


async def test_publishes_pending_events(uow, sink, pending_order):
    published = await ProcessOutboxEventsUseCase(uow, sink)()

    assert published == 1
    event_type, payload = sink.events[0]
    assert event_type == "order.created"
    assert payload["order_id"] == pending_order.id
    assert payload["amount"] == pending_order.amount
    assert await outbox_types(uow) == []


async def test_failed_publish_stays_pending(uow, pending_order):
    assert await ProcessOutboxEventsUseCase(uow, FakeSink(fail=True))() == 0
    assert await outbox_types(uow) == ["order.created"]


async def test_limit(uow, sink, paid_order):
    assert await ProcessOutboxEventsUseCase(uow, sink)(limit=1) == 1
    assert len(await outbox_types(uow)) == 1
