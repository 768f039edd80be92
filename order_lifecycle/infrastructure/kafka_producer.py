import json
import logging

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from order_lifecycle.application.interfaces import NotificationSink
from order_lifecycle.domain.exceptions import NotificationError

logger = logging.getLogger(__name__)


class KafkaNotificationSink(NotificationSink):
    """Publishes order events to one topic, keyed by order id"""

    def __init__(self, bootstrap_servers: str, topic: str):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer: AIOKafkaProducer | None = None

    async def start(self):
        if not self._producer:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers
            )
            await self._producer.start()
            logger.info("Kafka producer started")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def notify(self, event_type: str, payload: dict) -> None:
        if not self._producer:
            raise NotificationError("Kafka producer not started")

        order_id = payload.get("order_id") or ""
        try:
            await self._producer.send_and_wait(
                topic=self._topic,
                key=order_id.encode(),
                value=json.dumps({"event_type": event_type, **payload}, default=str).encode(),
            )
        except KafkaError as e:
            raise NotificationError(f"Failed to publish {event_type} for order {order_id}: {e}") from e

        logger.info(f"Published {event_type} for order {order_id}")
