import asyncio
import logging

from order_lifecycle.application.process_outbox import ProcessOutboxEventsUseCase
from order_lifecycle.config import settings
from order_lifecycle.database import AsyncSessionLocal
from order_lifecycle.infrastructure.kafka_producer import KafkaNotificationSink
from order_lifecycle.infrastructure.unit_of_work import UnitOfWork

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

kafka_sink = KafkaNotificationSink(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)


async def outbox_worker():
    """Publishes outbox events to Kafka"""
    logger.info("Outbox worker started")

    await kafka_sink.start()
    try:
        while True:
            try:
                uow = UnitOfWork(AsyncSessionLocal)
                use_case = ProcessOutboxEventsUseCase(unit_of_work=uow, sink=kafka_sink)

                published = await use_case(limit=10)
                if published:
                    logger.info(f"Published {published} outbox event(s)")

                await asyncio.sleep(3)

            except Exception as e:
                logger.error(f"Error in outbox worker: {e}", exc_info=True)
                await asyncio.sleep(10)
    finally:
        await kafka_sink.stop()


async def main():
    await outbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
