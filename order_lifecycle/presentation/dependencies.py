from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from order_lifecycle.application.cancel_order import CancelOrderUseCase
from order_lifecycle.application.create_order import CreateOrderUseCase
from order_lifecycle.application.discounts import (
    CreateDiscountUseCase,
    SetTaxConfigUseCase,
    ValidateDiscountUseCase,
)
from order_lifecycle.application.get_order import GetOrderUseCase, ListOrdersUseCase
from order_lifecycle.application.initiate_payment import InitiatePaymentUseCase
from order_lifecycle.application.interfaces import PaymentGateway, ShippingProvider
from order_lifecycle.application.process_inbox import RecordShipmentEventUseCase
from order_lifecycle.application.process_payment import ProcessPaymentCallbackUseCase
from order_lifecycle.application.process_refund import ApproveRefundUseCase, RejectRefundUseCase
from order_lifecycle.application.process_return import (
    CompleteReturnUseCase,
    MarkReturnPickedUpUseCase,
    RequestReturnUseCase,
    ReviewReturnUseCase,
    ScheduleReturnPickupUseCase,
)
from order_lifecycle.application.ship_order import ShipOrderUseCase, UpdateOrderStatusUseCase
from order_lifecycle.config import settings
from order_lifecycle.database import get_unit_of_work as database_unit_of_work
from order_lifecycle.domain.exceptions import (
    AccessDeniedError,
    AmountInvariantError,
    ConflictError,
    DomainException,
    ExternalServiceError,
    IntegrityViolationError,
    InvalidDiscountError,
    InsufficientStockError,
    NotFoundError,
    RefundRejectedError,
    ValidationError,
)
from order_lifecycle.domain.models import PaymentMethod
from order_lifecycle.infrastructure.http_clients import build_shipping_provider
from order_lifecycle.infrastructure.payment_gateways import build_gateways


# Authentication happens upstream; the gateway forwards the caller's identity
def get_current_user_id(x_user_id: str = Header(...)) -> str:
    return x_user_id


def get_optional_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id


def get_admin_id(x_admin_id: str = Header(...)) -> str:
    return x_admin_id


def get_unit_of_work():
    return database_unit_of_work()


@lru_cache
def get_gateways() -> dict[PaymentMethod, PaymentGateway]:
    return build_gateways(settings)


@lru_cache
def get_shipping_provider() -> ShippingProvider:
    return build_shipping_provider(settings)


# Use case factories

def get_create_order_use_case(uow=Depends(get_unit_of_work)):
    return CreateOrderUseCase(
        uow,
        order_number_prefix=settings.ORDER_NUMBER_PREFIX,
        payment_method=PaymentMethod(settings.PAYMENT_PROVIDER),
    )


def get_get_order_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_list_orders_use_case(uow=Depends(get_unit_of_work)):
    return ListOrdersUseCase(uow)


def get_cancel_order_use_case(uow=Depends(get_unit_of_work)):
    return CancelOrderUseCase(uow)


def get_initiate_payment_use_case(uow=Depends(get_unit_of_work), gateways=Depends(get_gateways)):
    return InitiatePaymentUseCase(uow, gateways)


def get_process_payment_use_case(uow=Depends(get_unit_of_work), gateways=Depends(get_gateways)):
    return ProcessPaymentCallbackUseCase(uow, gateways)


def get_request_return_use_case(uow=Depends(get_unit_of_work)):
    return RequestReturnUseCase(uow, window_days=settings.RETURN_WINDOW_DAYS)


def get_review_return_use_case(uow=Depends(get_unit_of_work)):
    return ReviewReturnUseCase(uow)


def get_schedule_pickup_use_case(uow=Depends(get_unit_of_work), shipping=Depends(get_shipping_provider)):
    return ScheduleReturnPickupUseCase(uow, shipping)


def get_mark_picked_up_use_case(uow=Depends(get_unit_of_work)):
    return MarkReturnPickedUpUseCase(uow)


def get_complete_return_use_case(uow=Depends(get_unit_of_work)):
    return CompleteReturnUseCase(uow)


def get_approve_refund_use_case(uow=Depends(get_unit_of_work), gateways=Depends(get_gateways)):
    return ApproveRefundUseCase(uow, gateways)


def get_reject_refund_use_case(uow=Depends(get_unit_of_work)):
    return RejectRefundUseCase(uow)


def get_ship_order_use_case(uow=Depends(get_unit_of_work), shipping=Depends(get_shipping_provider)):
    return ShipOrderUseCase(uow, shipping)


def get_update_status_use_case(uow=Depends(get_unit_of_work), shipping=Depends(get_shipping_provider)):
    return UpdateOrderStatusUseCase(uow, shipping)


def get_validate_discount_use_case(uow=Depends(get_unit_of_work)):
    return ValidateDiscountUseCase(uow)


def get_create_discount_use_case(uow=Depends(get_unit_of_work)):
    return CreateDiscountUseCase(uow)


def get_set_tax_config_use_case(uow=Depends(get_unit_of_work)):
    return SetTaxConfigUseCase(uow)


def get_record_shipment_event_use_case(uow=Depends(get_unit_of_work)):
    return RecordShipmentEventUseCase(uow)


def to_http_error(error: DomainException) -> HTTPException:
    """Domain exception -> HTTP status, following the error taxonomy"""
    if isinstance(error, InvalidDiscountError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(error), "code": error.code, "reason": error.reason},
        )
    if isinstance(error, InsufficientStockError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": str(error),
                "product_id": error.product_id,
                "available": error.available,
                "required": error.required,
            },
        )
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, AccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(error), "current_status": error.current_status},
        )
    if isinstance(error, AmountInvariantError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, IntegrityViolationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, RefundRejectedError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(error), "provider_ref": error.provider_ref},
        )
    if isinstance(error, ExternalServiceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
