from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from order_lifecycle.domain.exceptions import AmountInvariantError, ValidationError
from order_lifecycle.domain.models import OrderItem, TaxConfig
from order_lifecycle.domain.money import ensure_minor, percent_of


class PriceSnapshot(BaseModel):
    """Immutable monetary breakdown copied onto the order"""
    model_config = ConfigDict(frozen=True)

    subtotal: int = Field(ge=0)
    discount: int = Field(ge=0)
    tax: int = Field(ge=0)
    shipping_cost: int = Field(ge=0)
    amount: int = Field(ge=0)


class PricingCalculator:
    def calculate(
        self,
        items: list[OrderItem],
        discount: int = 0,
        tax_config: Optional[TaxConfig] = None,
        shipping_cost: int = 0,
    ) -> PriceSnapshot:
        if not items:
            raise ValidationError("Order must contain at least one item")

        subtotal = sum(item.line_total for item in items)
        ensure_minor(discount, "discount")
        ensure_minor(shipping_cost, "shipping_cost")
        if discount > subtotal:
            raise ValidationError("Discount cannot exceed the order subtotal")

        taxable = subtotal - discount
        tax = self.calculate_tax(taxable, tax_config)
        amount = taxable + tax + shipping_cost

        if amount <= 0:
            raise ValidationError("Order total must be greater than 0")

        snapshot = PriceSnapshot(
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            shipping_cost=shipping_cost,
            amount=amount,
        )
        expected = snapshot.subtotal - snapshot.discount + snapshot.tax + snapshot.shipping_cost
        if snapshot.amount != expected:
            raise AmountInvariantError(expected, snapshot.amount)
        return snapshot

    @staticmethod
    def calculate_tax(taxable: int, tax_config: Optional[TaxConfig]) -> int:
        # Inclusive prices already carry the tax, nothing is added on top
        if tax_config is None or tax_config.inclusive:
            return 0
        return percent_of(taxable, tax_config.rate)
