import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import exists, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from order_lifecycle.application.interfaces import (
    DiscountRepository,
    InboxRepository,
    OrderRepository,
    OutboxRepository,
    ProductRepository,
    TaxConfigRepository,
)
from order_lifecycle.domain.exceptions import ConcurrentUpdateError, DuplicateOrderNumberError
from order_lifecycle.domain.transitions import EXPIRABLE_PAYMENT_STATUSES
from order_lifecycle.domain.models import (
    Discount,
    Logistics,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    Product,
    ReturnRequest,
    ShippingAddress,
    TaxConfig,
)
from order_lifecycle.infrastructure.db_schema import (
    discount_redemptions_tbl,
    discounts_tbl,
    inbox_events_tbl,
    orders_tbl,
    outbox_events_tbl,
    products_tbl,
    tax_configs_tbl,
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Some drivers (sqlite) hand back naive datetimes; everything is stored in UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.tracking_id == tracking_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, order: Order) -> None:
        order.ensure_amount_consistent()
        stmt = insert(orders_tbl).values(
            id=order.id,
            order_number=order.order_number,
            version=order.version,
            **self._to_row(order),
        )
        try:
            await self._session.execute(stmt)
        except IntegrityError as e:
            # Unique order number (or id) already taken; the transaction is unusable now
            raise DuplicateOrderNumberError(order.order_number) from e

    async def save(self, order: Order) -> None:
        order.ensure_amount_consistent()
        expected_version = order.version
        stmt = (
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order.id,
                orders_tbl.c.version == expected_version,
            )
            .values(version=expected_version + 1, **self._to_row(order))
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrentUpdateError(order.id)
        order.version = expected_version + 1

    async def list_by_user(self, user_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        query = select(orders_tbl).where(orders_tbl.c.user_id == user_id)
        if status is not None:
            query = query.where(orders_tbl.c.status == status)
        result = await self._session.execute(query.order_by(orders_tbl.c.created_at.desc()))
        return [self._to_domain(row) for row in result.fetchall()]

    async def has_prior_orders(self, user_id: str) -> bool:
        result = await self._session.execute(
            select(
                exists().where(
                    orders_tbl.c.user_id == user_id,
                    orders_tbl.c.status != OrderStatus.CANCELLED,
                )
            )
        )
        return bool(result.scalar())

    async def find_expirable(self, created_before: datetime, limit: int = 100) -> List[str]:
        result = await self._session.execute(
            select(orders_tbl.c.id)
            .where(
                orders_tbl.c.status == OrderStatus.PENDING,
                orders_tbl.c.payment_status.in_(list(EXPIRABLE_PAYMENT_STATUSES)),
                orders_tbl.c.created_at < created_before,
            )
            .order_by(orders_tbl.c.created_at.asc())
            .limit(limit)
        )
        return [row.id for row in result.fetchall()]

    async def find_trackable(self, limit: int = 100) -> List[str]:
        result = await self._session.execute(
            select(orders_tbl.c.id)
            .where(
                orders_tbl.c.status == OrderStatus.SHIPPED,
                orders_tbl.c.tracking_id.is_not(None),
            )
            .order_by(orders_tbl.c.updated_at.asc())
            .limit(limit)
        )
        return [row.id for row in result.fetchall()]

    @staticmethod
    def _to_row(order: Order) -> dict:
        """Domain -> DB; status fields and tracking id live in their own columns"""
        return dict(
            user_id=order.user_id,
            customer_email=order.customer_email,
            items=[item.model_dump(mode="json") for item in order.items],
            shipping_address=order.shipping_address.model_dump(mode="json"),
            subtotal=order.subtotal,
            tax=order.tax,
            shipping_cost=order.shipping_cost,
            discount=order.discount,
            amount=order.amount,
            discount_code=order.discount_code,
            status=order.status,
            payment_status=order.payment.status,
            payment=order.payment.model_dump(mode="json", exclude={"status"}),
            tracking_id=order.logistics.tracking_id,
            logistics=order.logistics.model_dump(mode="json", exclude={"tracking_id"}),
            inventory_restored=order.inventory_restored,
            cancelled_by=order.cancelled_by,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            refund_requested=order.refund_requested,
            refund_requested_at=order.refund_requested_at,
            refund_status=order.refund_status,
            refund_reason=order.refund_reason,
            return_request=order.return_request.model_dump(mode="json"),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    @staticmethod
    def _to_domain(row) -> Order:
        """DB -> Domain"""
        return Order(
            id=row.id,
            order_number=row.order_number,
            user_id=row.user_id,
            customer_email=row.customer_email,
            items=[OrderItem.model_validate(item) for item in row.items],
            shipping_address=ShippingAddress.model_validate(row.shipping_address),
            subtotal=row.subtotal,
            tax=row.tax,
            shipping_cost=row.shipping_cost,
            discount=row.discount,
            amount=row.amount,
            discount_code=row.discount_code,
            status=OrderStatus(row.status),
            payment=Payment.model_validate({**row.payment, "status": row.payment_status}),
            logistics=Logistics.model_validate({**row.logistics, "tracking_id": row.tracking_id}),
            inventory_restored=row.inventory_restored,
            cancelled_by=row.cancelled_by,
            cancelled_at=_utc(row.cancelled_at),
            cancellation_reason=row.cancellation_reason,
            refund_requested=row.refund_requested,
            refund_requested_at=_utc(row.refund_requested_at),
            refund_status=row.refund_status,
            refund_reason=row.refund_reason,
            return_request=ReturnRequest.model_validate(row.return_request),
            version=row.version,
            created_at=_utc(row.created_at),
            updated_at=_utc(row.updated_at),
        )


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return Product(id=row.id, title=row.title, price=row.price, inventory=row.inventory)

    async def create(self, product: Product) -> None:
        await self._session.execute(
            insert(products_tbl).values(
                id=product.id,
                title=product.title,
                price=product.price,
                inventory=product.inventory,
            )
        )

    async def reserve(self, product_id: str, quantity: int) -> bool:
        # The stock check is part of the decrement, so concurrent orders cannot oversell
        stmt = (
            update(products_tbl)
            .where(
                products_tbl.c.id == product_id,
                products_tbl.c.inventory >= quantity,
            )
            .values(inventory=products_tbl.c.inventory - quantity)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def increment(self, product_id: str, quantity: int) -> None:
        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(inventory=products_tbl.c.inventory + quantity)
        )
        await self._session.execute(stmt)


class SQLAlchemyDiscountRepository(DiscountRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_code(self, code: str) -> Optional[Discount]:
        result = await self._session.execute(
            select(discounts_tbl).where(discounts_tbl.c.code == code.strip().upper())
        )
        row = result.fetchone()
        if not row:
            return None

        redemptions = await self._session.execute(
            select(discount_redemptions_tbl.c.user_id)
            .where(discount_redemptions_tbl.c.discount_id == row.id)
            .distinct()
        )
        return Discount(
            id=row.id,
            code=row.code,
            type=row.type,
            value=row.value,
            active=row.active,
            starts_at=_utc(row.starts_at),
            ends_at=_utc(row.ends_at),
            usage_limit=row.usage_limit,
            used_count=row.used_count,
            min_order_value=row.min_order_value,
            max_discount_amount=row.max_discount_amount,
            first_time_only=row.first_time_only,
            used_by=[r.user_id for r in redemptions.fetchall()],
            description=row.description,
        )

    async def create(self, discount: Discount) -> None:
        await self._session.execute(
            insert(discounts_tbl).values(
                id=discount.id,
                code=discount.code,
                type=discount.type,
                value=discount.value,
                active=discount.active,
                starts_at=discount.starts_at,
                ends_at=discount.ends_at,
                usage_limit=discount.usage_limit,
                used_count=discount.used_count,
                min_order_value=discount.min_order_value,
                max_discount_amount=discount.max_discount_amount,
                first_time_only=discount.first_time_only,
                description=discount.description,
            )
        )

    async def increment_usage(self, discount_id: str, user_id: str, order_id: str) -> None:
        await self._session.execute(
            update(discounts_tbl)
            .where(discounts_tbl.c.id == discount_id)
            .values(used_count=discounts_tbl.c.used_count + 1)
        )
        await self._session.execute(
            insert(discount_redemptions_tbl).values(
                id=str(uuid.uuid4()),
                discount_id=discount_id,
                user_id=user_id,
                order_id=order_id,
            )
        )


class SQLAlchemyTaxConfigRepository(TaxConfigRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_active(self) -> Optional[TaxConfig]:
        result = await self._session.execute(
            select(tax_configs_tbl)
            .where(tax_configs_tbl.c.is_active.is_(True))
            .order_by(tax_configs_tbl.c.created_at.desc())
            .limit(1)
        )
        row = result.fetchone()
        if not row:
            return None
        return TaxConfig(
            id=row.id,
            name=row.name,
            rate=row.rate,
            inclusive=row.inclusive,
            is_active=row.is_active,
        )

    async def activate(self, config: TaxConfig) -> None:
        await self._session.execute(
            update(tax_configs_tbl)
            .where(tax_configs_tbl.c.is_active.is_(True))
            .values(is_active=False)
        )
        await self._session.execute(
            insert(tax_configs_tbl).values(
                id=config.id,
                name=config.name,
                rate=config.rate,
                inclusive=config.inclusive,
                is_active=True,
            )
        )


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,
            order_id=order_id,
            status="pending",
            created_at=datetime.now(timezone.utc),
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(outbox_events_tbl.c.status == "pending")
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id,
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)


class SQLAlchemyInboxRepository(InboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: Optional[str], idempotency_key: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(inbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,
            order_id=order_id,
            idempotency_key=idempotency_key,
            status="pending",
            created_at=datetime.now(timezone.utc),
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(inbox_events_tbl)
            .where(inbox_events_tbl.c.status == "pending")
            .order_by(inbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id,
                "idempotency_key": row.idempotency_key,
            }
            for row in rows
        ]

    async def mark_as_processed(self, event_id: str) -> None:
        stmt = (
            update(inbox_events_tbl)
            .where(inbox_events_tbl.c.id == event_id)
            .values(
                status="processed",
                processed_at=datetime.now(timezone.utc),
            )
        )
        await self._session.execute(stmt)

    async def mark_as_failed(self, event_id: str) -> None:
        stmt = (
            update(inbox_events_tbl)
            .where(inbox_events_tbl.c.id == event_id)
            .values(status="failed")
        )
        await self._session.execute(stmt)

    async def exists(self, idempotency_key: str) -> bool:
        result = await self._session.execute(
            select(inbox_events_tbl.c.id).where(inbox_events_tbl.c.idempotency_key == idempotency_key)
        )
        return result.fetchone() is not None
