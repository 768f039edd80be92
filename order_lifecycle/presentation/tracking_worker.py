import asyncio
import logging

from order_lifecycle.application.sync_tracking import SyncShipmentTrackingUseCase
from order_lifecycle.config import settings
from order_lifecycle.database import AsyncSessionLocal
from order_lifecycle.infrastructure.http_clients import build_shipping_provider
from order_lifecycle.infrastructure.unit_of_work import UnitOfWork

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

shipping_provider = build_shipping_provider(settings)


async def tracking_worker():
    """Polls the courier for shipped orders"""
    logger.info(f"Tracking worker started: every {settings.TRACKING_SYNC_INTERVAL_SECONDS}s")

    while True:
        try:
            uow = UnitOfWork(AsyncSessionLocal)
            use_case = SyncShipmentTrackingUseCase(unit_of_work=uow, shipping=shipping_provider)

            await use_case()
            await asyncio.sleep(settings.TRACKING_SYNC_INTERVAL_SECONDS)

        except Exception as e:
            logger.error(f"Error in tracking worker: {e}", exc_info=True)
            await asyncio.sleep(10)


async def main():
    await tracking_worker()


if __name__ == "__main__":
    asyncio.run(main())
