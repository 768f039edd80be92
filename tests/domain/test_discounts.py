from datetime import timedelta

import pydantic
import pytest

from order_lifecycle.domain.discounts import DiscountEngine, RejectionReason, compute_amount
from order_lifecycle.domain.models import Discount, DiscountType
from tests.factories import NOW


def make_discount(**overrides) -> Discount:
    data = dict(id="d-1", code="flat50", type=DiscountType.FIXED, value=5000)
    data.update(overrides)
    return Discount(**data)


def test_code_is_normalized():
    assert make_discount(code="  flat50 ").code == "FLAT50"


def test_fixed_discount_amount():
    assert compute_amount(make_discount(), 100000) == 5000


def test_percentage_discount_is_capped():
    discount = make_discount(type=DiscountType.PERCENTAGE, value=20, max_discount_amount=10000)
    assert compute_amount(discount, 100000) == 10000


def test_discount_never_exceeds_subtotal():
    assert compute_amount(make_discount(value=9000), 4000) == 4000


@pytest.mark.parametrize(
    "overrides",
    [
        {"type": DiscountType.PERCENTAGE, "value": 150},
        {"value": 0},
        {"starts_at": NOW, "ends_at": NOW - timedelta(days=1)},
        {"code": "   "},
    ],
)
def test_invalid_discount_definitions(overrides):
    with pytest.raises(pydantic.ValidationError):
        make_discount(**overrides)


def test_unknown_code():
    check = DiscountEngine().validate("nope", None, 100000, NOW)
    assert not check.valid
    assert check.code == "NOPE"
    assert check.reason == RejectionReason.NOT_FOUND


def test_valid_code():
    check = DiscountEngine().validate("flat50", make_discount(), 100000, NOW)
    assert check.valid
    assert check.amount == 5000
    assert check.reason is None


@pytest.mark.parametrize(
    "overrides, kwargs, reason",
    [
        ({"active": False}, {}, RejectionReason.INACTIVE),
        ({"starts_at": NOW + timedelta(days=1)}, {}, RejectionReason.NOT_STARTED),
        ({"ends_at": NOW - timedelta(seconds=1)}, {}, RejectionReason.EXPIRED),
        ({"usage_limit": 2, "used_count": 2}, {}, RejectionReason.USAGE_LIMIT_REACHED),
        ({"first_time_only": True}, {"has_prior_orders": True}, RejectionReason.FIRST_ORDER_ONLY),
        ({"first_time_only": True, "used_by": ["user-1"]}, {"user_id": "user-1"}, RejectionReason.FIRST_ORDER_ONLY),
        ({"min_order_value": 200000}, {}, RejectionReason.BELOW_MIN_ORDER_VALUE),
    ],
)
def test_rejections(overrides, kwargs, reason):
    check = DiscountEngine().validate("FLAT50", make_discount(**overrides), 100000, NOW, **kwargs)
    assert not check.valid
    assert check.reason == reason
    assert check.amount == 0


def test_first_failing_check_is_reported():
    discount = make_discount(
        active=False,
        ends_at=NOW - timedelta(days=1),
        usage_limit=1,
        used_count=1,
        min_order_value=500000,
    )
    check = DiscountEngine().validate("FLAT50", discount, 100000, NOW)
    assert check.reason == RejectionReason.INACTIVE


def test_expired_reported_before_usage_limit():
    discount = make_discount(ends_at=NOW - timedelta(days=1), usage_limit=1, used_count=1)
    check = DiscountEngine().validate("FLAT50", discount, 100000, NOW)
    assert check.reason == RejectionReason.EXPIRED


def test_min_order_value_message_uses_major_units():
    check = DiscountEngine().validate("FLAT50", make_discount(min_order_value=150000), 100000, NOW)
    assert "1500.00" in check.message
