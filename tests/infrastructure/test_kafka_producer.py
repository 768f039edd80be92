import json

import pytest
from aiokafka.errors import KafkaConnectionError

from order_lifecycle.domain.exceptions import NotificationError
from order_lifecycle.infrastructure.kafka_producer import KafkaNotificationSink


class StubProducer:
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send_and_wait(self, topic, key, value):
        if self.error:
            raise self.error
        self.sent.append((topic, key, value))


def sink_with(producer) -> KafkaNotificationSink:
    sink = KafkaNotificationSink("localhost:9092", "order-events")
    sink._producer = producer
    return sink


async def test_publishes_keyed_by_order_id():
    producer = StubProducer()

    await sink_with(producer).notify("order.created", {"order_id": "order-1", "amount": 100000})

    topic, key, value = producer.sent[0]
    assert topic == "order-events"
    assert key == b"order-1"
    assert json.loads(value) == {"event_type": "order.created", "order_id": "order-1", "amount": 100000}


async def test_requires_started_producer():
    with pytest.raises(NotificationError, match="not started"):
        await KafkaNotificationSink("localhost:9092", "order-events").notify("order.created", {"order_id": "o"})


async def test_broker_errors_become_notification_errors():
    sink = sink_with(StubProducer(error=KafkaConnectionError("broker unavailable")))

    with pytest.raises(NotificationError, match="order.created"):
        await sink.notify("order.created", {"order_id": "order-1"})
