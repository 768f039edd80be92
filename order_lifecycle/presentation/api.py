import hmac
import json
import logging
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from order_lifecycle.application.cancel_order import CancelOrderDTO, CancelOrderUseCase
from order_lifecycle.application.create_order import CreateOrderDTO, CreateOrderUseCase, OrderLineDTO
from order_lifecycle.application.discounts import ValidateDiscountDTO, ValidateDiscountUseCase
from order_lifecycle.application.get_order import GetOrderUseCase, ListOrdersUseCase
from order_lifecycle.application.initiate_payment import InitiatePaymentDTO, InitiatePaymentUseCase
from order_lifecycle.application.process_inbox import RecordShipmentEventUseCase, ShipmentEventDTO
from order_lifecycle.application.process_payment import PaymentCallbackDTO, ProcessPaymentCallbackUseCase
from order_lifecycle.application.process_return import RequestReturnDTO, RequestReturnUseCase
from order_lifecycle.config import settings
from order_lifecycle.domain.exceptions import DomainException, OrderNotFoundError
from order_lifecycle.domain.models import AttemptOutcome, CancelledBy, OrderStatus, PaymentMethod, PaymentStatus
from order_lifecycle.infrastructure.payment_gateways import RAZORPAY_PAYMENT_EVENTS
from order_lifecycle.presentation.dependencies import (
    get_cancel_order_use_case,
    get_create_order_use_case,
    get_current_user_id,
    get_get_order_use_case,
    get_initiate_payment_use_case,
    get_list_orders_use_case,
    get_optional_user_id,
    get_process_payment_use_case,
    get_record_shipment_event_use_case,
    get_request_return_use_case,
    get_validate_discount_use_case,
    to_http_error,
)
from order_lifecycle.presentation.schemas import (
    CreateOrderRequest,
    DiscountCheckResponse,
    ErrorResponse,
    OrderRefundResponse,
    OrderResponse,
    PaymentInitResponse,
    PaymentStatusResponse,
    ReasonRequest,
    ReturnRequestBody,
    ShipmentWebhookRequest,
    TrackingResponse,
    ValidateDiscountRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/orders",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    request: CreateOrderRequest,
    user_id: str = Depends(get_current_user_id),
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case),
):
    """Create an order, reserving stock at snapshot prices"""
    try:
        dto = CreateOrderDTO(
            user_id=user_id,
            customer_email=request.customer_email,
            items=[OrderLineDTO(product_id=line.product_id, quantity=line.quantity) for line in request.items],
            shipping_address=request.shipping_address,
            discount_code=request.discount_code,
            shipping_cost=request.shipping_cost,
        )
        order = await use_case(dto)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case),
):
    order_status = None
    if status_filter:
        try:
            order_status = OrderStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status filter: {status_filter}")

    orders = await use_case(user_id, order_status)
    return [OrderResponse.from_domain(order) for order in orders]


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case),
):
    try:
        order = await use_case(order_id, user_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.get("/orders/{order_id}/tracking", response_model=TrackingResponse)
async def track_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case),
):
    try:
        order = await use_case(order_id, user_id)
        return TrackingResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.get("/orders/{order_id}/payment", response_model=PaymentStatusResponse)
async def payment_status(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case),
):
    try:
        order = await use_case(order_id, user_id)
        return PaymentStatusResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderRefundResponse,
    responses={409: {"model": ErrorResponse}},
)
async def cancel_order(
    order_id: str,
    request: ReasonRequest,
    user_id: str = Depends(get_current_user_id),
    use_case: CancelOrderUseCase = Depends(get_cancel_order_use_case),
):
    try:
        order, refund_requested = await use_case(
            CancelOrderDTO(order_id=order_id, cancelled_by=CancelledBy.USER, user_id=user_id, reason=request.reason)
        )
        return OrderRefundResponse(order=OrderResponse.from_domain(order), refund_requested=refund_requested)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/return", response_model=OrderResponse)
async def request_return(
    order_id: str,
    request: ReturnRequestBody,
    user_id: str = Depends(get_current_user_id),
    use_case: RequestReturnUseCase = Depends(get_request_return_use_case),
):
    try:
        order = await use_case(RequestReturnDTO(order_id=order_id, user_id=user_id, reason=request.reason))
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/payment", response_model=PaymentInitResponse)
async def initiate_payment(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: InitiatePaymentUseCase = Depends(get_initiate_payment_use_case),
):
    try:
        redirect = await use_case(InitiatePaymentDTO(order_id=order_id, user_id=user_id))
        return PaymentInitResponse(**redirect.model_dump())
    except DomainException as e:
        raise to_http_error(e)


def _frontend_redirect(outcome: str, **params) -> RedirectResponse:
    query = urlencode({key: value for key, value in params.items() if value is not None})
    return RedirectResponse(
        f"{settings.FRONTEND_URL.rstrip('/')}/payment/{outcome}?{query}",
        status_code=status.HTTP_303_SEE_OTHER,
    )


async def _handle_payu_callback(request: Request, use_case: ProcessPaymentCallbackUseCase) -> RedirectResponse:
    form = await request.form()
    payload = {key: str(value) for key, value in form.items()}
    order_id = payload.get("udf1")

    try:
        result = await use_case(PaymentCallbackDTO(provider=PaymentMethod.PAYU, payload=payload))
    except DomainException as e:
        logger.error(f"PayU callback for order {order_id} failed: {e}")
        return _frontend_redirect("failure", orderId=order_id, error_Message=str(e))

    if result.payment_status == PaymentStatus.PAID and result.outcome in (
        AttemptOutcome.APPLIED,
        AttemptOutcome.DUPLICATE,
    ):
        return _frontend_redirect("success", orderId=result.order_id, status="success")
    return _frontend_redirect("failure", orderId=result.order_id, error_Message=result.message)


@router.post("/payments/payu/success", status_code=status.HTTP_303_SEE_OTHER)
async def payu_success(
    request: Request,
    use_case: ProcessPaymentCallbackUseCase = Depends(get_process_payment_use_case),
):
    """PayU surl: browser form post after checkout"""
    return await _handle_payu_callback(request, use_case)


@router.post("/payments/payu/failure", status_code=status.HTTP_303_SEE_OTHER)
async def payu_failure(
    request: Request,
    use_case: ProcessPaymentCallbackUseCase = Depends(get_process_payment_use_case),
):
    """PayU furl"""
    return await _handle_payu_callback(request, use_case)


@router.post("/payments/razorpay/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    use_case: ProcessPaymentCallbackUseCase = Depends(get_process_payment_use_case),
):
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if payload.get("event") not in RAZORPAY_PAYMENT_EVENTS:
        return {"status": "ignored", "event": payload.get("event")}

    try:
        result = await use_case(
            PaymentCallbackDTO(
                provider=PaymentMethod.RAZORPAY,
                payload=payload,
                signature=x_razorpay_signature,
                raw_body=raw_body,
            )
        )
    except OrderNotFoundError as e:
        logger.warning(f"Razorpay webhook for unknown order: {e}")
        return {"status": "ignored", "message": str(e)}
    except DomainException as e:
        raise to_http_error(e)

    if result.outcome == AttemptOutcome.REJECTED:
        raise HTTPException(status_code=400, detail=result.message)
    return {"status": result.outcome.value, "order_id": result.order_id, "message": result.message}


@router.post("/shipments/webhook", status_code=status.HTTP_202_ACCEPTED)
async def shipment_webhook(
    request: ShipmentWebhookRequest,
    x_api_key: Optional[str] = Header(None),
    use_case: RecordShipmentEventUseCase = Depends(get_record_shipment_event_use_case),
):
    """Courier status push; applied asynchronously by the inbox worker"""
    token = settings.SHIPPING_WEBHOOK_TOKEN
    if token and not hmac.compare_digest(x_api_key or "", token):
        raise HTTPException(status_code=401, detail="Invalid API key")

    stored = await use_case(ShipmentEventDTO(**request.model_dump()))
    return {"status": "accepted" if stored else "duplicate"}


@router.post("/discounts/validate", response_model=DiscountCheckResponse)
async def validate_discount(
    request: ValidateDiscountRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    use_case: ValidateDiscountUseCase = Depends(get_validate_discount_use_case),
):
    check = await use_case(ValidateDiscountDTO(code=request.code, subtotal=request.subtotal, user_id=user_id))
    return DiscountCheckResponse(
        code=check.code,
        valid=check.valid,
        discount_amount=check.amount,
        reason=check.reason.value if check.reason else None,
        message=check.message,
    )
