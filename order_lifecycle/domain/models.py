import itertools
import os
import random
import re
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from order_lifecycle.domain.exceptions import AmountInvariantError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    VERIFICATION_FAILED = "verification_failed"


class PaymentMethod(str, Enum):
    PAYU = "payu"
    RAZORPAY = "razorpay"


class AttemptStatus(str, Enum):
    INITIATED = "initiated"
    SUCCESS = "success"
    FAILED = "failed"
    REFUND = "refund"


class AttemptOutcome(str, Enum):
    """How reconciliation treated the attempt; exactly one success is APPLIED."""
    RECORDED = "recorded"
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    IGNORED = "ignored"


class CancelledBy(str, Enum):
    USER = "user"
    SYSTEM = "system"
    ADMIN = "admin"


class RefundStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    PROCESSING = "processing"
    REFUNDED = "refunded"
    FAILED = "failed"


class ReturnStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PICKUP_SCHEDULED = "pickup_scheduled"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"


class LogisticsStatus(str, Enum):
    CREATED = "created"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RTO = "rto"
    CANCELLED = "cancelled"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class OrderItem(BaseModel):
    """Value Object: line snapshot taken from the catalog at creation time"""
    product_id: str
    title: str
    unit_price: int = Field(ge=0)
    quantity: int = Field(ge=1)

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


_PHONE_RE = re.compile(r"^[6-9]\d{9}$")
_PINCODE_RE = re.compile(r"^\d{6}$")


class ShippingAddress(BaseModel):
    name: str
    phone: str
    street: str
    city: str
    state: str
    pincode: str
    country: str = "India"

    @field_validator("name", "phone", "street", "city", "state", "pincode")
    @classmethod
    def _not_blank(cls, value: str, info) -> str:
        value = value.strip()
        if not value:
            raise ValueError(f"{info.field_name} is required")
        return value

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        if not _PHONE_RE.match(value):
            raise ValueError("Invalid phone number")
        return value

    @field_validator("pincode")
    @classmethod
    def _pincode(cls, value: str) -> str:
        if not _PINCODE_RE.match(value):
            raise ValueError("Invalid pincode")
        return value


class PaymentAttempt(BaseModel):
    """Append-only audit entry for every callback, initiation and refund"""
    txn_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    amount: int = 0
    status: AttemptStatus
    outcome: AttemptOutcome = AttemptOutcome.RECORDED
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Payment(BaseModel):
    method: PaymentMethod = PaymentMethod.PAYU
    status: PaymentStatus = PaymentStatus.PENDING
    provider_order_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: Optional[int] = Field(default=None, ge=0)
    attempts: list[PaymentAttempt] = Field(default_factory=list)

    def record_attempt(self, attempt: PaymentAttempt) -> None:
        self.attempts.append(attempt)

    def set_provider_ids(self, txn_id: Optional[str], payment_id: Optional[str]) -> None:
        """Set-once: later callbacks never overwrite stored provider ids"""
        if not self.provider_transaction_id and txn_id:
            self.provider_transaction_id = txn_id
        if not self.provider_payment_id and payment_id:
            self.provider_payment_id = payment_id

    def refundable_payment_id(self) -> Optional[str]:
        if self.provider_payment_id:
            return self.provider_payment_id
        for attempt in reversed(self.attempts):
            if attempt.status == AttemptStatus.SUCCESS and attempt.provider_payment_id:
                return attempt.provider_payment_id
        return None


class Logistics(BaseModel):
    provider: Optional[str] = None
    shipment_id: Optional[str] = None
    tracking_id: Optional[str] = None
    courier_name: Optional[str] = None
    status: Optional[LogisticsStatus] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_notified: bool = False


class ReturnRequest(BaseModel):
    requested: bool = False
    requested_at: Optional[datetime] = None
    reason: Optional[str] = None
    status: ReturnStatus = ReturnStatus.NONE
    admin_notes: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    return_shipment_id: Optional[str] = None
    return_tracking_id: Optional[str] = None


class Order(BaseModel):
    """Domain Entity: order aggregate root"""
    id: str
    order_number: str
    user_id: str
    customer_email: Optional[str] = None
    items: list[OrderItem]
    shipping_address: ShippingAddress
    subtotal: int = Field(ge=0)
    tax: int = Field(default=0, ge=0)
    shipping_cost: int = Field(default=0, ge=0)
    discount: int = Field(default=0, ge=0)
    amount: int = Field(ge=0)
    discount_code: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    payment: Payment = Field(default_factory=Payment)
    logistics: Logistics = Field(default_factory=Logistics)
    inventory_restored: bool = False
    cancelled_by: Optional[CancelledBy] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_requested: bool = False
    refund_requested_at: Optional[datetime] = None
    refund_status: RefundStatus = RefundStatus.NONE
    refund_reason: Optional[str] = None
    return_request: ReturnRequest = Field(default_factory=ReturnRequest)
    version: int = 0
    created_at: datetime
    updated_at: datetime

    def calculate_total(self) -> int:
        return self.subtotal - self.discount + self.tax + self.shipping_cost

    def ensure_amount_consistent(self) -> None:
        """Checked before every persist"""
        expected = self.calculate_total()
        if self.amount != expected:
            raise AmountInvariantError(expected, self.amount)

    def is_owned_by(self, user_id: str) -> bool:
        return self.user_id == user_id

    @property
    def tracking_id(self) -> Optional[str]:
        return self.logistics.tracking_id

    def can_be_paid(self) -> bool:
        return self.status == OrderStatus.PENDING and self.payment.status != PaymentStatus.PAID

    def can_request_return(self, now: datetime, window_days: int) -> bool:
        """Delivered, no earlier request, and within the return window"""
        if self.status != OrderStatus.DELIVERED:
            return False
        if self.return_request.requested:
            return False
        delivered_at = self.logistics.delivered_at
        if not delivered_at:
            return False
        return now - delivered_at <= timedelta(days=window_days)


# 24 hex chars: seconds | per-process token | counter. The counter tail makes
# order numbers sequential within a process.
_PROCESS_TOKEN = os.urandom(5).hex()
_order_counter = itertools.count(random.randrange(0x1000000))


def new_order_id() -> str:
    sequence = next(_order_counter) % 0x1000000
    return f"{int(time.time()) & 0xFFFFFFFF:08x}{_PROCESS_TOKEN}{sequence:06x}"


def generate_order_number(order_id: str, prefix: str, now: datetime) -> str:
    return f"{prefix}-{now.year}-{order_id[-6:].upper()}"


class Product(BaseModel):
    """Catalog product; referenced by orders, owned by the catalog"""
    id: str
    title: str
    price: int = Field(ge=0)
    inventory: int = 0


class Discount(BaseModel):
    id: str
    code: str
    type: DiscountType = DiscountType.PERCENTAGE
    value: int
    active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    usage_limit: Optional[int] = Field(default=None, ge=1)
    used_count: int = 0
    min_order_value: Optional[int] = Field(default=None, ge=0)
    max_discount_amount: Optional[int] = Field(default=None, ge=0)
    first_time_only: bool = False
    used_by: list[str] = Field(default_factory=list)
    description: Optional[str] = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Discount code is required")
        return value

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.value <= 0:
            raise ValueError("Discount value must be greater than 0")
        if self.type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValueError("End date must be after start date")
        return self


class TaxConfig(BaseModel):
    id: str
    name: str = "GST"
    rate: Decimal = Decimal("0")
    inclusive: bool = False
    is_active: bool = True

    @field_validator("rate")
    @classmethod
    def _check_rate(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 100:
            raise ValueError("Tax rate must be between 0 and 100")
        if value != value.quantize(Decimal("0.01")):
            raise ValueError("Tax rate allows at most 2 decimal places")
        return value
