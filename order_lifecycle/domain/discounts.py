from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from order_lifecycle.domain.models import Discount, DiscountType
from order_lifecycle.domain.money import percent_of, to_major


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    FIRST_ORDER_ONLY = "first_order_only"
    BELOW_MIN_ORDER_VALUE = "below_min_order_value"


class DiscountCheck(BaseModel):
    """Either a valid discount with its computed amount, or a rejection reason"""
    code: str
    valid: bool
    discount: Optional[Discount] = None
    amount: int = 0
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None


def compute_amount(discount: Discount, subtotal: int) -> int:
    if discount.type == DiscountType.PERCENTAGE:
        amount = percent_of(subtotal, discount.value)
    else:
        amount = discount.value

    if discount.max_discount_amount is not None and amount > discount.max_discount_amount:
        amount = discount.max_discount_amount

    return max(0, min(amount, subtotal))


class DiscountEngine:
    """Checks run in a fixed order; the first failing one is reported."""

    def validate(
        self,
        code: str,
        discount: Optional[Discount],
        subtotal: int,
        now: datetime,
        has_prior_orders: bool = False,
        user_id: Optional[str] = None,
    ) -> DiscountCheck:
        code = code.strip().upper()

        if discount is None:
            return self._reject(code, RejectionReason.NOT_FOUND, "Invalid discount code")

        if not discount.active:
            return self._reject(code, RejectionReason.INACTIVE, "Discount code is inactive")

        if discount.starts_at and now < discount.starts_at:
            return self._reject(
                code,
                RejectionReason.NOT_STARTED,
                f"Discount code is not yet active. It will start on {discount.starts_at.date().isoformat()}",
            )

        if discount.ends_at and now > discount.ends_at:
            return self._reject(code, RejectionReason.EXPIRED, "Discount code has expired")

        if discount.usage_limit is not None and discount.used_count >= discount.usage_limit:
            return self._reject(code, RejectionReason.USAGE_LIMIT_REACHED, "Discount code usage limit reached")

        if discount.first_time_only and (has_prior_orders or (user_id and user_id in discount.used_by)):
            return self._reject(code, RejectionReason.FIRST_ORDER_ONLY, "Discount code is valid on the first order only")

        if discount.min_order_value and subtotal < discount.min_order_value:
            return self._reject(
                code,
                RejectionReason.BELOW_MIN_ORDER_VALUE,
                f"Minimum order value of {to_major(discount.min_order_value)} required for this discount",
            )

        return DiscountCheck(
            code=code,
            valid=True,
            discount=discount,
            amount=compute_amount(discount, subtotal),
        )

    @staticmethod
    def _reject(code: str, reason: RejectionReason, message: str) -> DiscountCheck:
        return DiscountCheck(code=code, valid=False, reason=reason, message=message)
