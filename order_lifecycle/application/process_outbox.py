import json
import logging

from order_lifecycle.application.interfaces import NotificationSink
from order_lifecycle.domain.exceptions import NotificationError

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    """Publishes pending outbox rows. A failed publish leaves the row pending."""

    def __init__(self, unit_of_work, sink: NotificationSink):
        self._uow = unit_of_work
        self._sink = sink

    async def __call__(self, limit: int = 10) -> int:
        published = 0

        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(limit=limit)

            for event in pending:
                try:
                    event_data = event["event_data"]
                    if isinstance(event_data, str):
                        event_data = json.loads(event_data)

                    await self._sink.notify(event["event_type"], event_data)
                    await uow.outbox.mark_as_published(event["id"])
                    published += 1
                    logger.info(f"Published {event['event_type']} event {event['id']}")
                except NotificationError as e:
                    logger.warning(f"Publishing {event['event_type']} event {event['id']} failed, will retry: {e}")
                except Exception as e:
                    logger.error(f"Error processing outbox event {event['id']}: {e}")

            await uow.commit()

        return published
