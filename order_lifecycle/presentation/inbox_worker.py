import asyncio
import logging

from order_lifecycle.application.process_inbox import ProcessInboxEventsUseCase
from order_lifecycle.database import AsyncSessionLocal
from order_lifecycle.infrastructure.unit_of_work import UnitOfWork

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def inbox_worker():
    """Applies courier webhook events stored in the inbox"""
    logger.info("Inbox worker started")

    while True:
        try:
            uow = UnitOfWork(AsyncSessionLocal)
            use_case = ProcessInboxEventsUseCase(unit_of_work=uow)

            processed = await use_case(limit=10)
            if processed:
                logger.info(f"Processed {processed} inbox event(s)")

            await asyncio.sleep(2)

        except Exception as e:
            logger.error(f"Error in inbox worker: {e}", exc_info=True)
            await asyncio.sleep(10)


async def main():
    await inbox_worker()


if __name__ == "__main__":
    asyncio.run(main())
