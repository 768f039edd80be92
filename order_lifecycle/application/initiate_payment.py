import logging
from typing import Callable, Optional

from pydantic import BaseModel

from order_lifecycle.application.interfaces import PaymentGateway, PaymentRedirect
from order_lifecycle.domain.exceptions import (
    AccessDeniedError,
    ConflictError,
    OrderNotFoundError,
    PaymentServiceError,
)
from order_lifecycle.domain.models import AttemptStatus, Order, PaymentAttempt, PaymentMethod, utcnow

logger = logging.getLogger(__name__)


class InitiatePaymentDTO(BaseModel):
    order_id: str
    user_id: Optional[str] = None


def new_txn_id(order_id: str, now) -> str:
    return f"TXN_{order_id}_{int(now.timestamp() * 1000)}"


class InitiatePaymentUseCase:
    def __init__(self, unit_of_work, gateways: dict[PaymentMethod, PaymentGateway], clock: Callable = utcnow):
        self._uow = unit_of_work
        self._gateways = gateways
        self._clock = clock

    async def __call__(self, dto: InitiatePaymentDTO) -> PaymentRedirect:
        async with self._uow() as uow:
            order = await self._load_payable(uow, dto)

        gateway = self._gateways.get(order.payment.method)
        if gateway is None:
            raise PaymentServiceError(f"No payment gateway configured for '{order.payment.method.value}'")

        now = self._clock()
        txn_id = new_txn_id(order.id, now)
        # Provider call outside the transaction; nothing is written if it fails
        redirect = await gateway.initiate(order, txn_id)

        async with self._uow() as uow:
            order = await self._load_payable(uow, dto)
            order.payment.record_attempt(
                PaymentAttempt(
                    txn_id=txn_id,
                    amount=order.amount,
                    status=AttemptStatus.INITIATED,
                    raw_payload={"provider_order_id": redirect.provider_order_id} if redirect.provider_order_id else {},
                    created_at=now,
                )
            )
            if redirect.provider_order_id and not order.payment.provider_order_id:
                order.payment.provider_order_id = redirect.provider_order_id
            order.updated_at = now
            await uow.orders.save(order)
            await uow.commit()

        logger.info(f"Payment initiated for order {order.id}, txn {txn_id} via {gateway.kind.value}")
        return redirect

    @staticmethod
    async def _load_payable(uow, dto: InitiatePaymentDTO) -> Order:
        order = await uow.orders.get_by_id(dto.order_id)
        if not order:
            raise OrderNotFoundError(f"Order {dto.order_id} not found")
        if dto.user_id is not None and not order.is_owned_by(dto.user_id):
            raise AccessDeniedError("You can only pay for your own orders")
        if not order.can_be_paid():
            raise ConflictError(
                f"Order is '{order.status.value}' with payment '{order.payment.status.value}' and cannot be paid",
                order.status.value,
            )
        return order
