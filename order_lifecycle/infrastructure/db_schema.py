from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)
from sqlalchemy.sql import func

from order_lifecycle.domain.models import (
    CancelledBy,
    DiscountType,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)

metadata = MetaData()


def _enum(enum_cls, name: str) -> Enum:
    # Store the lowercase values, not the member names
    return Enum(enum_cls, name=name, values_callable=lambda e: [member.value for member in e])


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("title", String, nullable=False),
    Column("price", Integer, nullable=False),
    Column("inventory", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_number", String, unique=True, nullable=False, index=True),
    Column("user_id", String, nullable=False, index=True),
    Column("customer_email", String, nullable=True),
    Column("items", JSON, nullable=False),
    Column("shipping_address", JSON, nullable=False),
    Column("subtotal", Integer, nullable=False),
    Column("tax", Integer, nullable=False, default=0),
    Column("shipping_cost", Integer, nullable=False, default=0),
    Column("discount", Integer, nullable=False, default=0),
    Column("amount", Integer, nullable=False),
    Column("discount_code", String, nullable=True),
    Column("status", _enum(OrderStatus, "order_status"), nullable=False, index=True),
    Column("payment_status", _enum(PaymentStatus, "payment_status"), nullable=False, index=True),
    Column("payment", JSON, nullable=False),
    Column("tracking_id", String, nullable=True, index=True),
    Column("logistics", JSON, nullable=False),
    Column("inventory_restored", Boolean, nullable=False, default=False),
    Column("cancelled_by", _enum(CancelledBy, "cancelled_by"), nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("cancellation_reason", String, nullable=True),
    Column("refund_requested", Boolean, nullable=False, default=False),
    Column("refund_requested_at", DateTime(timezone=True), nullable=True),
    Column("refund_status", _enum(RefundStatus, "refund_status"), nullable=False),
    Column("refund_reason", String, nullable=True),
    Column("return_request", JSON, nullable=False),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


discounts_tbl = Table(
    "discounts",
    metadata,
    Column("id", String, primary_key=True),
    Column("code", String, unique=True, nullable=False, index=True),
    Column("type", _enum(DiscountType, "discount_type"), nullable=False),
    Column("value", Integer, nullable=False),
    Column("active", Boolean, nullable=False, default=True, index=True),
    Column("starts_at", DateTime(timezone=True), nullable=True),
    Column("ends_at", DateTime(timezone=True), nullable=True, index=True),
    Column("usage_limit", Integer, nullable=True),
    Column("used_count", Integer, nullable=False, default=0),
    Column("min_order_value", Integer, nullable=True),
    Column("max_discount_amount", Integer, nullable=True),
    Column("first_time_only", Boolean, nullable=False, default=False),
    Column("description", String, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


discount_redemptions_tbl = Table(
    "discount_redemptions",
    metadata,
    Column("id", String, primary_key=True),
    Column("discount_id", String, ForeignKey("discounts.id"), nullable=False, index=True),
    Column("user_id", String, nullable=False),
    Column("order_id", String, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


tax_configs_tbl = Table(
    "tax_configs",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False, default="GST"),
    Column("rate", Numeric(5, 2), nullable=False, default=0),
    Column("inclusive", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True, index=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


inbox_events_tbl = Table(
    "inbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=True),
    Column("idempotency_key", String, unique=True, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("processed_at", DateTime(timezone=True), nullable=True),
)
