from fastapi import APIRouter, Depends, status

from order_lifecycle.application.discounts import (
    CreateDiscountDTO,
    CreateDiscountUseCase,
    SetTaxConfigDTO,
    SetTaxConfigUseCase,
)
from order_lifecycle.application.process_refund import (
    ApproveRefundUseCase,
    RefundDecisionDTO,
    RejectRefundUseCase,
)
from order_lifecycle.application.process_return import (
    CompleteReturnUseCase,
    MarkReturnPickedUpUseCase,
    ReviewReturnDTO,
    ReviewReturnUseCase,
    ScheduleReturnPickupUseCase,
)
from order_lifecycle.application.ship_order import (
    ShipOrderUseCase,
    UpdateOrderStatusDTO,
    UpdateOrderStatusUseCase,
)
from order_lifecycle.domain.exceptions import DomainException
from order_lifecycle.presentation.dependencies import (
    get_admin_id,
    get_approve_refund_use_case,
    get_complete_return_use_case,
    get_create_discount_use_case,
    get_mark_picked_up_use_case,
    get_reject_refund_use_case,
    get_review_return_use_case,
    get_schedule_pickup_use_case,
    get_set_tax_config_use_case,
    get_ship_order_use_case,
    get_update_status_use_case,
    to_http_error,
)
from order_lifecycle.presentation.schemas import (
    CreateDiscountRequest,
    DiscountResponse,
    ErrorResponse,
    OrderRefundResponse,
    OrderResponse,
    ReasonRequest,
    ReturnReviewRequest,
    TaxConfigRequest,
    TaxConfigResponse,
    UpdateStatusRequest,
)

router = APIRouter(prefix="/admin", dependencies=[Depends(get_admin_id)])


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={409: {"model": ErrorResponse}},
)
async def update_order_status(
    order_id: str,
    request: UpdateStatusRequest,
    admin_id: str = Depends(get_admin_id),
    use_case: UpdateOrderStatusUseCase = Depends(get_update_status_use_case),
):
    """Move an order along the allow-list; confirmation only comes from payment"""
    try:
        order = await use_case(
            UpdateOrderStatusDTO(order_id=order_id, status=request.status, admin_id=admin_id, reason=request.reason)
        )
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/ship", response_model=OrderResponse)
async def ship_order(
    order_id: str,
    use_case: ShipOrderUseCase = Depends(get_ship_order_use_case),
):
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/refund/approve", response_model=OrderResponse)
async def approve_refund(
    order_id: str,
    admin_id: str = Depends(get_admin_id),
    use_case: ApproveRefundUseCase = Depends(get_approve_refund_use_case),
):
    try:
        order = await use_case(RefundDecisionDTO(order_id=order_id, admin_id=admin_id))
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/refund/reject", response_model=OrderResponse)
async def reject_refund(
    order_id: str,
    request: ReasonRequest,
    admin_id: str = Depends(get_admin_id),
    use_case: RejectRefundUseCase = Depends(get_reject_refund_use_case),
):
    try:
        order = await use_case(RefundDecisionDTO(order_id=order_id, admin_id=admin_id, reason=request.reason))
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


async def _review_return(order_id: str, admin_id: str, approve: bool, notes, use_case: ReviewReturnUseCase):
    try:
        order = await use_case(ReviewReturnDTO(order_id=order_id, admin_id=admin_id, approve=approve, notes=notes))
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/return/approve", response_model=OrderResponse)
async def approve_return(
    order_id: str,
    request: ReturnReviewRequest,
    admin_id: str = Depends(get_admin_id),
    use_case: ReviewReturnUseCase = Depends(get_review_return_use_case),
):
    return await _review_return(order_id, admin_id, True, request.notes, use_case)


@router.post("/orders/{order_id}/return/reject", response_model=OrderResponse)
async def reject_return(
    order_id: str,
    request: ReturnReviewRequest,
    admin_id: str = Depends(get_admin_id),
    use_case: ReviewReturnUseCase = Depends(get_review_return_use_case),
):
    return await _review_return(order_id, admin_id, False, request.notes, use_case)


@router.post("/orders/{order_id}/return/pickup", response_model=OrderResponse)
async def schedule_return_pickup(
    order_id: str,
    use_case: ScheduleReturnPickupUseCase = Depends(get_schedule_pickup_use_case),
):
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/return/picked-up", response_model=OrderResponse)
async def mark_return_picked_up(
    order_id: str,
    use_case: MarkReturnPickedUpUseCase = Depends(get_mark_picked_up_use_case),
):
    try:
        order = await use_case(order_id)
        return OrderResponse.from_domain(order)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/orders/{order_id}/return/complete", response_model=OrderRefundResponse)
async def complete_return(
    order_id: str,
    admin_id: str = Depends(get_admin_id),
    use_case: CompleteReturnUseCase = Depends(get_complete_return_use_case),
):
    try:
        order, refund_requested = await use_case(order_id, admin_id)
        return OrderRefundResponse(order=OrderResponse.from_domain(order), refund_requested=refund_requested)
    except DomainException as e:
        raise to_http_error(e)


@router.post("/discounts", response_model=DiscountResponse, status_code=status.HTTP_201_CREATED)
async def create_discount(
    request: CreateDiscountRequest,
    use_case: CreateDiscountUseCase = Depends(get_create_discount_use_case),
):
    try:
        discount = await use_case(CreateDiscountDTO(**request.model_dump()))
        return DiscountResponse.model_validate(discount.model_dump())
    except DomainException as e:
        raise to_http_error(e)


@router.put("/tax-config", response_model=TaxConfigResponse)
async def set_tax_config(
    request: TaxConfigRequest,
    use_case: SetTaxConfigUseCase = Depends(get_set_tax_config_use_case),
):
    try:
        config = await use_case(SetTaxConfigDTO(**request.model_dump()))
        return TaxConfigResponse.model_validate(config.model_dump())
    except DomainException as e:
        raise to_http_error(e)
