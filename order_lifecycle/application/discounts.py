import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import pydantic
from pydantic import BaseModel, Field

from order_lifecycle.domain.discounts import DiscountCheck, DiscountEngine
from order_lifecycle.domain.exceptions import ConflictError, ValidationError
from order_lifecycle.domain.models import Discount, DiscountType, TaxConfig, utcnow

logger = logging.getLogger(__name__)


class ValidateDiscountDTO(BaseModel):
    code: str
    subtotal: int = Field(ge=0)
    user_id: Optional[str] = None


class ValidateDiscountUseCase:
    """Checks a code for a subtotal without consuming it"""

    def __init__(self, unit_of_work, discount_engine: Optional[DiscountEngine] = None, clock: Callable = utcnow):
        self._uow = unit_of_work
        self._engine = discount_engine or DiscountEngine()
        self._clock = clock

    async def __call__(self, dto: ValidateDiscountDTO) -> DiscountCheck:
        async with self._uow() as uow:
            discount = await uow.discounts.get_by_code(dto.code)
            has_prior_orders = await uow.orders.has_prior_orders(dto.user_id) if dto.user_id else False

        return self._engine.validate(
            dto.code,
            discount,
            dto.subtotal,
            self._clock(),
            has_prior_orders=has_prior_orders,
            user_id=dto.user_id,
        )


class CreateDiscountDTO(BaseModel):
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


class CreateDiscountUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: CreateDiscountDTO) -> Discount:
        try:
            discount = Discount(id=str(uuid.uuid4()), **dto.model_dump())
        except pydantic.ValidationError as e:
            raise ValidationError(_first_error(e))

        async with self._uow() as uow:
            if await uow.discounts.get_by_code(discount.code):
                raise ConflictError(f"Discount code {discount.code} already exists")
            await uow.discounts.create(discount)
            await uow.commit()

        logger.info(f"Discount {discount.code} created ({discount.type.value}, {discount.value})")
        return discount


class SetTaxConfigDTO(BaseModel):
    name: str = "GST"
    rate: Decimal
    inclusive: bool = False


class SetTaxConfigUseCase:
    """Activates a new tax config; any previously active one is deactivated in the same transaction"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: SetTaxConfigDTO) -> TaxConfig:
        try:
            config = TaxConfig(id=str(uuid.uuid4()), name=dto.name, rate=dto.rate, inclusive=dto.inclusive)
        except pydantic.ValidationError as e:
            raise ValidationError(_first_error(e))

        async with self._uow() as uow:
            await uow.tax_configs.activate(config)
            await uow.commit()

        logger.info(f"Tax config {config.name} activated: {config.rate}% (inclusive={config.inclusive})")
        return config


def _first_error(error: pydantic.ValidationError) -> str:
    first = error.errors()[0]
    return first["msg"].removeprefix("Value error, ")
