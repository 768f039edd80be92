from datetime import timedelta

import pytest

from order_lifecycle.domain import returns
from order_lifecycle.domain.exceptions import RefundNotAllowedError, ReturnNotAllowedError
from order_lifecycle.domain.models import (
    AttemptStatus,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    ReturnStatus,
)
from tests.factories import NOW, build_order


def delivered_order(**overrides):
    order = build_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PAID, **overrides)
    order.logistics.delivered_at = NOW
    return order


def test_request_within_window():
    order = delivered_order()
    returns.request_return(order, "Wrong size", NOW + timedelta(days=3), window_days=15)

    assert order.return_request.status == ReturnStatus.REQUESTED
    assert order.return_request.requested is True
    assert order.return_request.reason == "Wrong size"


def test_request_outside_window():
    order = delivered_order()
    with pytest.raises(ReturnNotAllowedError):
        returns.request_return(order, "Wrong size", NOW + timedelta(days=16), window_days=15)
    assert order.return_request.status == ReturnStatus.NONE


def test_only_one_return_per_order():
    order = delivered_order()
    returns.request_return(order, "Wrong size", NOW, window_days=15)
    with pytest.raises(ReturnNotAllowedError):
        returns.request_return(order, "Changed my mind", NOW, window_days=15)


def test_return_requires_delivery():
    order = build_order(status=OrderStatus.SHIPPED, payment_status=PaymentStatus.PAID)
    with pytest.raises(ReturnNotAllowedError):
        returns.request_return(order, "Late", NOW, window_days=15)


def test_cannot_approve_without_request():
    with pytest.raises(ReturnNotAllowedError):
        returns.approve_return(delivered_order(), "admin-1", None, NOW)


def test_rejected_return_is_final():
    order = delivered_order()
    returns.request_return(order, "Wrong size", NOW, window_days=15)
    returns.reject_return(order, "admin-1", "Used item", NOW)

    assert order.return_request.admin_notes == "Used item"
    with pytest.raises(ReturnNotAllowedError):
        returns.approve_return(order, "admin-1", None, NOW)


def test_full_return_opens_refund():
    order = delivered_order()
    returns.request_return(order, "Wrong size", NOW, window_days=15)
    returns.approve_return(order, "admin-1", "ok", NOW)
    returns.ensure_pickup_schedulable(order)
    returns.schedule_pickup(order, "RSH-1", "RAWB-1", NOW)
    returns.mark_picked_up(order, NOW)

    assert returns.complete_return(order, "admin-1", NOW) is True
    assert order.return_request.status == ReturnStatus.COMPLETED
    assert order.return_request.return_tracking_id == "RAWB-1"
    assert order.refund_status == RefundStatus.REQUESTED
    assert order.refund_reason == "Wrong size"


def test_completion_skips_refund_when_already_refunded():
    order = delivered_order(refund_status=RefundStatus.REFUNDED)
    order.payment.status = PaymentStatus.REFUNDED
    returns.request_return(order, "Wrong size", NOW, window_days=15)
    returns.approve_return(order, "admin-1", None, NOW)
    returns.schedule_pickup(order, "RSH-1", None, NOW)
    returns.mark_picked_up(order, NOW)

    assert returns.complete_return(order, "admin-1", NOW) is False


def test_pickup_needs_approval():
    order = delivered_order()
    returns.request_return(order, "Wrong size", NOW, window_days=15)
    with pytest.raises(ReturnNotAllowedError):
        returns.ensure_pickup_schedulable(order)


def test_refund_claim_and_rollback():
    order = delivered_order(refund_status=RefundStatus.REQUESTED)
    returns.begin_refund(order, NOW)
    assert order.refund_status == RefundStatus.PROCESSING

    with pytest.raises(RefundNotAllowedError):
        returns.begin_refund(order, NOW)

    returns.rollback_refund(order, NOW)
    assert order.refund_status == RefundStatus.REQUESTED


def test_complete_refund_records_attempt():
    order = delivered_order(refund_status=RefundStatus.REQUESTED)
    returns.begin_refund(order, NOW)
    returns.complete_refund(order, "PAY-1", order.amount, "RF-1", NOW)

    assert order.refund_status == RefundStatus.REFUNDED
    assert order.payment.status == PaymentStatus.REFUNDED
    assert order.payment.refund_amount == order.amount
    assert order.payment.attempts[-1].status == AttemptStatus.REFUND
    assert order.payment.attempts[-1].txn_id == "RF-1"


def test_complete_refund_requires_claim():
    order = delivered_order(refund_status=RefundStatus.REQUESTED)
    with pytest.raises(RefundNotAllowedError):
        returns.complete_refund(order, "PAY-1", order.amount, "RF-1", NOW)


def test_unpaid_order_cannot_be_refunded():
    order = build_order(status=OrderStatus.CANCELLED, refund_status=RefundStatus.REQUESTED)
    with pytest.raises(RefundNotAllowedError):
        returns.begin_refund(order, NOW)


def test_reject_refund():
    order = delivered_order(refund_status=RefundStatus.REQUESTED, refund_requested=True)
    returns.reject_refund(order, "Outside policy", NOW)

    assert order.refund_status == RefundStatus.FAILED
    assert order.refund_requested is False
    assert order.refund_reason == "Outside policy"
    with pytest.raises(RefundNotAllowedError):
        returns.reject_refund(order, None, NOW)
