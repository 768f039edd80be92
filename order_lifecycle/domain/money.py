"""Integer minor-unit arithmetic (paise). Floats never touch stored amounts."""
from decimal import Decimal, ROUND_HALF_UP

from order_lifecycle.domain.exceptions import ValidationError

MINOR_UNITS = 100


def ensure_minor(value, field: str = "amount") -> int:
    """Accept only non-negative integers (bool excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in minor units")
    if value < 0:
        raise ValidationError(f"{field} must not be negative")
    return value


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount: int, rate) -> int:
    """round(amount * rate / 100) with half-up rounding, rate may carry decimals."""
    return round_half_up(Decimal(amount) * Decimal(str(rate)) / Decimal(100))


def to_minor(major) -> int:
    """'1171.50' -> 117150. Used for provider payloads that carry major units."""
    try:
        value = Decimal(str(major).strip())
        if value.is_finite():
            return round_half_up(value * MINOR_UNITS)
    except (ArithmeticError, ValueError):
        pass
    raise ValidationError(f"Invalid money amount: {major!r}")


def to_major(minor: int) -> str:
    """117150 -> '1171.50'"""
    return str((Decimal(minor) / MINOR_UNITS).quantize(Decimal("0.01")))
