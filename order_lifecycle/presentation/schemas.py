from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from order_lifecycle.domain.models import (
    CancelledBy,
    DiscountType,
    Logistics,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ReturnRequest,
    ShippingAddress,
)


class OrderLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)


class CreateOrderRequest(BaseModel):
    customer_email: Optional[str] = None
    items: list[OrderLineRequest] = Field(min_length=1)
    shipping_address: ShippingAddress
    discount_code: Optional[str] = None
    shipping_cost: int = Field(default=0, ge=0)


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class ReturnRequestBody(BaseModel):
    reason: str = Field(min_length=1)


class ReturnReviewRequest(BaseModel):
    notes: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None


class PaymentView(BaseModel):
    method: PaymentMethod
    status: PaymentStatus
    paid_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    payment_id: Optional[str] = None
    refund_amount: Optional[int] = None
    refunded_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: str
    customer_email: Optional[str] = None
    items: list[OrderItem]
    shipping_address: ShippingAddress
    subtotal: int
    tax: int
    shipping_cost: int
    discount: int
    amount: int
    discount_code: Optional[str] = None
    status: OrderStatus
    payment: PaymentView
    logistics: Logistics
    cancelled_by: Optional[CancelledBy] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_requested: bool
    refund_status: RefundStatus
    refund_reason: Optional[str] = None
    return_request: ReturnRequest
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order: Order):
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            customer_email=order.customer_email,
            items=order.items,
            shipping_address=order.shipping_address,
            subtotal=order.subtotal,
            tax=order.tax,
            shipping_cost=order.shipping_cost,
            discount=order.discount,
            amount=order.amount,
            discount_code=order.discount_code,
            status=order.status,
            payment=PaymentView(
                method=order.payment.method,
                status=order.payment.status,
                paid_at=order.payment.paid_at,
                transaction_id=order.payment.provider_transaction_id,
                payment_id=order.payment.provider_payment_id,
                refund_amount=order.payment.refund_amount,
                refunded_at=order.payment.refunded_at,
            ),
            logistics=order.logistics,
            cancelled_by=order.cancelled_by,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            refund_requested=order.refund_requested,
            refund_status=order.refund_status,
            refund_reason=order.refund_reason,
            return_request=order.return_request,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderRefundResponse(BaseModel):
    order: OrderResponse
    refund_requested: bool


class PaymentStatusResponse(BaseModel):
    order_id: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    method: PaymentMethod
    paid_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    payment_id: Optional[str] = None

    @classmethod
    def from_domain(cls, order: Order):
        return cls(
            order_id=order.id,
            order_status=order.status,
            payment_status=order.payment.status,
            method=order.payment.method,
            paid_at=order.payment.paid_at,
            transaction_id=order.payment.provider_transaction_id,
            payment_id=order.payment.provider_payment_id,
        )


class TrackingResponse(BaseModel):
    order_id: str
    order_number: str
    status: OrderStatus
    tracking_id: Optional[str] = None
    courier_name: Optional[str] = None
    logistics_status: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order):
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            tracking_id=order.logistics.tracking_id,
            courier_name=order.logistics.courier_name,
            logistics_status=order.logistics.status.value if order.logistics.status else None,
            shipped_at=order.logistics.shipped_at,
            delivered_at=order.logistics.delivered_at,
        )


class PaymentInitResponse(BaseModel):
    provider: PaymentMethod
    url: str
    provider_order_id: Optional[str] = None
    fields: dict[str, Any]


class ValidateDiscountRequest(BaseModel):
    code: str
    subtotal: int = Field(ge=0)


class DiscountCheckResponse(BaseModel):
    code: str
    valid: bool
    discount_amount: int = 0
    reason: Optional[str] = None
    message: Optional[str] = None


class CreateDiscountRequest(BaseModel):
    code: str
    type: DiscountType = DiscountType.PERCENTAGE
    value: int
    active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    usage_limit: Optional[int] = None
    min_order_value: Optional[int] = None
    max_discount_amount: Optional[int] = None
    first_time_only: bool = False
    description: Optional[str] = None


class DiscountResponse(BaseModel):
    id: str
    code: str
    type: DiscountType
    value: int
    active: bool
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    usage_limit: Optional[int] = None
    used_count: int
    min_order_value: Optional[int] = None
    max_discount_amount: Optional[int] = None
    first_time_only: bool


class TaxConfigRequest(BaseModel):
    name: str = "GST"
    rate: Decimal
    inclusive: bool = False


class TaxConfigResponse(BaseModel):
    id: str
    name: str
    rate: Decimal
    inclusive: bool
    is_active: bool


class ShipmentWebhookRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    awb: str
    current_status: str


class ErrorResponse(BaseModel):
    detail: Any
