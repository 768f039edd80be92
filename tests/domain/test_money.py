from decimal import Decimal

import pytest

from order_lifecycle.domain.exceptions import ValidationError
from order_lifecycle.domain.money import ensure_minor, percent_of, to_major, to_minor


@pytest.mark.parametrize("value", [10.5, "100", True, None])
def test_ensure_minor_rejects_non_integers(value):
    with pytest.raises(ValidationError):
        ensure_minor(value)


def test_ensure_minor_rejects_negative():
    with pytest.raises(ValidationError, match="shipping_cost must not be negative"):
        ensure_minor(-1, "shipping_cost")


def test_percent_of_rounds_half_up():
    assert percent_of(95000, 18) == 17100
    assert percent_of(5, 50) == 3
    assert percent_of(999, Decimal("12.5")) == 125


def test_major_minor_conversion():
    assert to_minor("1171.50") == 117150
    assert to_minor(" 10 ") == 1000
    assert to_major(117150) == "1171.50"
    assert to_major(5) == "0.05"


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", ""])
def test_to_minor_rejects_garbage(value):
    with pytest.raises(ValidationError):
        to_minor(value)


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", "1e999999", ""])
def test_to_minor_rejects_unusable_amounts(value):
    with pytest.raises(ValidationError):
        to_minor(value)
