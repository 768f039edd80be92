import logging

from order_lifecycle.domain.exceptions import InsufficientStockError
from order_lifecycle.domain.models import Order, OrderItem

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Stock moves for orders. Both operations run inside the caller's transaction."""

    async def reserve(self, uow, items: list[OrderItem]) -> None:
        for item in items:
            reserved = await uow.products.reserve(item.product_id, item.quantity)
            if not reserved:
                product = await uow.products.get_by_id(item.product_id)
                available = product.inventory if product else 0
                # Earlier reservations in this transaction are undone by the rollback
                raise InsufficientStockError(item.product_id, available, item.quantity)
        logger.info(f"Reserved stock for {len(items)} line(s)")

    async def restore(self, uow, order: Order) -> bool:
        """Return stock once per order. Returns False if the latch was already set.

        The latch is flipped on the aggregate; it only becomes durable together
        with the increments when the caller saves the order in the same
        transaction. A concurrent restorer fails the versioned save and rolls
        its increments back.
        """
        if order.inventory_restored:
            logger.info(f"Inventory for order {order.id} already restored")
            return False

        for item in order.items:
            await uow.products.increment(item.product_id, item.quantity)

        order.inventory_restored = True
        logger.info(f"Inventory restored for order {order.id}")
        return True
