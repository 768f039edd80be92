import pytest

from order_lifecycle.application.cancel_order import CancelOrderDTO, CancelOrderUseCase
from order_lifecycle.application.interfaces import RefundResult
from order_lifecycle.application.process_refund import (
    ApproveRefundUseCase,
    RefundDecisionDTO,
    RejectRefundUseCase,
)
from order_lifecycle.domain.exceptions import PaymentServiceError, RefundNotAllowedError, RefundRejectedError
from order_lifecycle.domain.models import AttemptStatus, CancelledBy, PaymentStatus, RefundStatus
from tests.factories import load_order, outbox_types


@pytest.fixture
async def refund_requested_order(uow, clock, paid_order):
    await CancelOrderUseCase(uow, clock=clock)(
        CancelOrderDTO(order_id=paid_order.id, cancelled_by=CancelledBy.USER, user_id="user-1")
    )
    return await load_order(uow, paid_order.id)


def decision(order_id, reason=None):
    return RefundDecisionDTO(order_id=order_id, admin_id="admin-1", reason=reason)


async def test_approved_refund(uow, clock, gateway, gateways, refund_requested_order):
    order = await ApproveRefundUseCase(uow, gateways, clock=clock)(decision(refund_requested_order.id))

    assert gateway.refund_calls == [("PAY-1", 100000)]
    assert order.refund_status == RefundStatus.REFUNDED
    stored = await load_order(uow, order.id)
    assert stored.refund_status == RefundStatus.REFUNDED
    assert stored.payment.status == PaymentStatus.REFUNDED
    assert stored.payment.refund_amount == 100000
    assert stored.payment.attempts[-1].status == AttemptStatus.REFUND
    assert "refund.completed" in await outbox_types(uow)


async def test_provider_rejection_rolls_back_to_requested(uow, clock, gateway, gateways, refund_requested_order):
    gateway.refund_result = RefundResult(accepted=False, provider_ref="RF-X", message="Insufficient balance")
    use_case = ApproveRefundUseCase(uow, gateways, clock=clock)

    with pytest.raises(RefundRejectedError) as exc:
        await use_case(decision(refund_requested_order.id))
    assert exc.value.provider_ref == "RF-X"

    stored = await load_order(uow, refund_requested_order.id)
    assert stored.refund_status == RefundStatus.REQUESTED
    assert stored.payment.status == PaymentStatus.PAID

    gateway.refund_result = RefundResult(accepted=True, provider_ref="RF-2")
    order = await use_case(decision(refund_requested_order.id))
    assert order.refund_status == RefundStatus.REFUNDED
    assert len(gateway.refund_calls) == 2


async def test_provider_outage_rolls_back(uow, clock, gateway, gateways, refund_requested_order):
    gateway.refund_error = PaymentServiceError("timeout")

    with pytest.raises(PaymentServiceError):
        await ApproveRefundUseCase(uow, gateways, clock=clock)(decision(refund_requested_order.id))

    assert (await load_order(uow, refund_requested_order.id)).refund_status == RefundStatus.REQUESTED


async def test_refund_is_not_repeated(uow, clock, gateway, gateways, refund_requested_order):
    use_case = ApproveRefundUseCase(uow, gateways, clock=clock)
    await use_case(decision(refund_requested_order.id))

    with pytest.raises(RefundNotAllowedError):
        await use_case(decision(refund_requested_order.id))
    assert len(gateway.refund_calls) == 1


async def test_refund_needs_a_request(uow, clock, gateway, gateways, paid_order):
    with pytest.raises(RefundNotAllowedError):
        await ApproveRefundUseCase(uow, gateways, clock=clock)(decision(paid_order.id))
    assert gateway.refund_calls == []


async def test_rejected_refund(uow, clock, refund_requested_order):
    order = await RejectRefundUseCase(uow, clock=clock)(decision(refund_requested_order.id, "Policy"))

    assert order.refund_status == RefundStatus.FAILED
    stored = await load_order(uow, order.id)
    assert stored.refund_requested is False
    assert stored.payment.status == PaymentStatus.PAID
    assert "refund.rejected" in await outbox_types(uow)
