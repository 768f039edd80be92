import asyncio
import logging

from order_lifecycle.application.expire_orders import ExpirePendingOrdersUseCase
from order_lifecycle.config import settings
from order_lifecycle.database import AsyncSessionLocal
from order_lifecycle.infrastructure.unit_of_work import UnitOfWork

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def expiry_worker():
    """Cancels pending orders that were not paid in time"""
    logger.info(
        f"Expiry worker started: every {settings.EXPIRY_SWEEP_INTERVAL_SECONDS}s, "
        f"orders older than {settings.ORDER_EXPIRY_MINUTES} min"
    )

    while True:
        try:
            uow = UnitOfWork(AsyncSessionLocal)
            use_case = ExpirePendingOrdersUseCase(unit_of_work=uow, expiry_minutes=settings.ORDER_EXPIRY_MINUTES)

            await use_case()
            await asyncio.sleep(settings.EXPIRY_SWEEP_INTERVAL_SECONDS)

        except Exception as e:
            logger.error(f"Error in expiry worker: {e}", exc_info=True)
            await asyncio.sleep(10)


async def main():
    await expiry_worker()


if __name__ == "__main__":
    asyncio.run(main())
