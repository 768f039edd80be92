import logging
from typing import Callable, Optional

from pydantic import BaseModel

from order_lifecycle.application.interfaces import PaymentGateway
from order_lifecycle.application.state_machine import event_payload
from order_lifecycle.domain import returns
from order_lifecycle.domain.exceptions import (
    OrderNotFoundError,
    PaymentServiceError,
    RefundNotAllowedError,
    RefundRejectedError,
)
from order_lifecycle.domain.models import Order, PaymentMethod, utcnow

logger = logging.getLogger(__name__)


class RefundDecisionDTO(BaseModel):
    order_id: str
    admin_id: str
    reason: Optional[str] = None


async def _load(uow, order_id: str) -> Order:
    order = await uow.orders.get_by_id(order_id)
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


class ApproveRefundUseCase:
    """requested -> processing -> refunded.

    The claim (processing) is committed before the provider is called, so a
    second approval conflicts instead of refunding twice. Any provider
    failure or rejection moves the refund back to requested.
    """

    def __init__(self, unit_of_work, gateways: dict[PaymentMethod, PaymentGateway], clock: Callable = utcnow):
        self._uow = unit_of_work
        self._gateways = gateways
        self._clock = clock

    async def __call__(self, dto: RefundDecisionDTO) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, dto.order_id)
            gateway = self._gateways.get(order.payment.method)
            if gateway is None:
                raise PaymentServiceError(f"No payment gateway configured for '{order.payment.method.value}'")
            payment_id = order.payment.refundable_payment_id()
            if not payment_id:
                raise RefundNotAllowedError(
                    "No provider payment id recorded for this order", order.refund_status.value
                )
            returns.begin_refund(order, self._clock())
            await uow.orders.save(order)
            await uow.commit()

        logger.info(f"Refund for order {order.id} claimed by {dto.admin_id}, payment {payment_id}, amount {order.amount}")

        try:
            result = await gateway.refund(payment_id, order.amount)
        except Exception:
            logger.error(f"Refund call failed for order {order.id}", exc_info=True)
            await self._rollback(order.id)
            raise

        if not result.accepted:
            logger.warning(f"Refund for order {order.id} rejected by provider: {result.message}")
            await self._rollback(order.id)
            raise RefundRejectedError(result.message or "Refund rejected by payment provider", result.provider_ref)

        now = self._clock()
        try:
            async with self._uow() as uow:
                order = await _load(uow, dto.order_id)
                returns.complete_refund(order, payment_id, order.amount, result.provider_ref, now)
                await uow.orders.save(order)
                await uow.outbox.create(
                    "refund.completed",
                    event_payload(order, refund_amount=order.amount, refund_reference=result.provider_ref),
                    order.id,
                )
                await uow.commit()
        except Exception:
            logger.critical(
                f"Refund {result.provider_ref} for order {dto.order_id} accepted by provider but not recorded; "
                "manual reconciliation required",
                exc_info=True,
            )
            raise

        logger.info(f"Order {order.id} refunded, reference {result.provider_ref}")
        return order

    async def _rollback(self, order_id: str) -> None:
        async with self._uow() as uow:
            order = await _load(uow, order_id)
            returns.rollback_refund(order, self._clock())
            await uow.orders.save(order)
            await uow.commit()
        logger.info(f"Refund for order {order_id} moved back to requested")


class RejectRefundUseCase:
    def __init__(self, unit_of_work, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, dto: RefundDecisionDTO) -> Order:
        async with self._uow() as uow:
            order = await _load(uow, dto.order_id)
            returns.reject_refund(order, dto.reason, self._clock())
            await uow.orders.save(order)
            await uow.outbox.create("refund.rejected", event_payload(order, reason=dto.reason), order.id)
            await uow.commit()

        logger.info(f"Refund for order {order.id} rejected by {dto.admin_id}")
        return order
