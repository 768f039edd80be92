import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from order_lifecycle.application.inventory import InventoryLedger
from order_lifecycle.application.state_machine import event_payload
from order_lifecycle.domain.discounts import DiscountEngine
from order_lifecycle.domain.exceptions import (
    DuplicateOrderNumberError,
    InsufficientStockError,
    InvalidDiscountError,
    ProductNotFoundError,
)
from order_lifecycle.domain.models import (
    Discount,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
    generate_order_number,
    new_order_id,
    utcnow,
)
from order_lifecycle.domain.pricing import PricingCalculator

logger = logging.getLogger(__name__)


class OrderLineDTO(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class CreateOrderDTO(BaseModel):
    user_id: str
    customer_email: Optional[str] = None
    items: list[OrderLineDTO] = Field(min_length=1)
    shipping_address: ShippingAddress
    discount_code: Optional[str] = None
    shipping_cost: int = Field(default=0, ge=0)


class CreateOrderUseCase:
    def __init__(
        self,
        unit_of_work,
        order_number_prefix: str = "VT",
        payment_method: PaymentMethod = PaymentMethod.PAYU,
        ledger: Optional[InventoryLedger] = None,
        discount_engine: Optional[DiscountEngine] = None,
        pricing: Optional[PricingCalculator] = None,
        clock: Callable = utcnow,
        id_factory: Callable[[], str] = new_order_id,
        max_attempts: int = 3,
    ):
        self._uow = unit_of_work
        self._prefix = order_number_prefix
        self._payment_method = payment_method
        self._ledger = ledger or InventoryLedger()
        self._discounts = discount_engine or DiscountEngine()
        self._pricing = pricing or PricingCalculator()
        self._clock = clock
        self._id_factory = id_factory
        self._max_attempts = max_attempts

    async def __call__(self, order_data: CreateOrderDTO) -> Order:
        logger.info(f"Creating order for user {order_data.user_id}, {len(order_data.items)} line(s)")

        for attempt_no in range(1, self._max_attempts + 1):
            try:
                order, discount = await self._create(order_data)
                break
            except DuplicateOrderNumberError as e:
                if attempt_no == self._max_attempts:
                    raise
                logger.warning(f"{e}, generating a new one ({attempt_no}/{self._max_attempts})")

        if discount:
            await self._record_discount_usage(discount, order_data.user_id, order.id)

        return order

    async def _create(self, order_data: CreateOrderDTO) -> tuple[Order, Optional[Discount]]:
        now = self._clock()
        discount: Optional[Discount] = None

        async with self._uow() as uow:
            # 1. Line snapshots from server-side prices
            items = []
            for line in order_data.items:
                product = await uow.products.get_by_id(line.product_id)
                if not product:
                    raise ProductNotFoundError(f"Product {line.product_id} not found")
                if product.inventory < line.quantity:
                    raise InsufficientStockError(product.id, product.inventory, line.quantity)
                items.append(
                    OrderItem(
                        product_id=product.id,
                        title=product.title,
                        unit_price=product.price,
                        quantity=line.quantity,
                    )
                )

            # 2. Discount
            discount_amount = 0
            if order_data.discount_code:
                subtotal = sum(item.line_total for item in items)
                check = self._discounts.validate(
                    order_data.discount_code,
                    await uow.discounts.get_by_code(order_data.discount_code),
                    subtotal,
                    now,
                    has_prior_orders=await uow.orders.has_prior_orders(order_data.user_id),
                    user_id=order_data.user_id,
                )
                if not check.valid:
                    raise InvalidDiscountError(check.code, check.reason.value, check.message)
                discount = check.discount
                discount_amount = check.amount

            # 3. Tax and total
            tax_config = await uow.tax_configs.get_active()
            snapshot = self._pricing.calculate(items, discount_amount, tax_config, order_data.shipping_cost)

            # 4. Stock
            await self._ledger.reserve(uow, items)

            # 5. Order
            order_id = self._id_factory()
            order = Order(
                id=order_id,
                order_number=generate_order_number(order_id, self._prefix, now),
                user_id=order_data.user_id,
                customer_email=order_data.customer_email,
                items=items,
                shipping_address=order_data.shipping_address,
                subtotal=snapshot.subtotal,
                tax=snapshot.tax,
                shipping_cost=snapshot.shipping_cost,
                discount=snapshot.discount,
                amount=snapshot.amount,
                discount_code=discount.code if discount else None,
                status=OrderStatus.PENDING,
                payment=Payment(method=self._payment_method, status=PaymentStatus.PENDING),
                created_at=now,
                updated_at=now,
            )
            await uow.orders.create(order)
            await uow.outbox.create("order.created", event_payload(order), order.id)
            await uow.commit()
            logger.info(f"Order created: {order.id} ({order.order_number}), amount {order.amount}")

        return order, discount

    async def _record_discount_usage(self, discount: Discount, user_id: str, order_id: str) -> None:
        # Separate transaction: the counter may run ahead of orders that fail later
        try:
            async with self._uow() as uow:
                await uow.discounts.increment_usage(discount.id, user_id, order_id)
                await uow.commit()
        except Exception as e:
            logger.error(f"Failed to record usage of discount {discount.code} for order {order_id}: {e}")
