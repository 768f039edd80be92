from typing import List, Optional

from order_lifecycle.domain.exceptions import AccessDeniedError, OrderNotFoundError
from order_lifecycle.domain.models import Order, OrderStatus


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, user_id: Optional[str] = None) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Order {order_id} not found")
            if user_id is not None and not order.is_owned_by(user_id):
                raise AccessDeniedError("You can only access your own orders")
            return order


class ListOrdersUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, user_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        async with self._uow() as uow:
            return await uow.orders.list_by_user(user_id, status)
