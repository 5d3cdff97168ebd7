from decimal import Decimal

import pytest

from crystal_bot.core.system_locks import LockViolation
from crystal_bot.schemas.coupons_schemas import CouponSnapshot
from crystal_bot.services.pricing_service import apply


def test_no_coupon_keeps_base_price():
    pricing = apply(Decimal("20"), None)
    assert pricing.original == Decimal("20.00")
    assert pricing.discount == Decimal("0.00")
    assert pricing.total == Decimal("20.00")
    assert pricing.label is None


def test_fixed_coupon_subtracts_value():
    pricing = apply("20.00", CouponSnapshot("SAVE5", "fixed", Decimal("5")))
    assert pricing.total == Decimal("15.00")
    assert pricing.discount == Decimal("5.00")
    assert pricing.label == "SAVE5 (-$5.00)"


def test_fixed_coupon_larger_than_price_is_clamped():
    pricing = apply("20.00", CouponSnapshot("BIG", "fixed", Decimal("30")))
    assert pricing.discount == Decimal("20.00")
    assert pricing.total == Decimal("0.00")


@pytest.mark.parametrize(
    "base, pct, discount, total",
    [
        ("49.99", "10", "5.00", "44.99"),
        ("9.99", "12.5", "1.25", "8.74"),
        ("20.00", "100", "20.00", "0.00"),
        ("20.00", "150", "20.00", "0.00"),
    ],
)
def test_percent_coupon_rounds_half_up_once(base, pct, discount, total):
    pricing = apply(base, CouponSnapshot("PCT", "percent", Decimal(pct)))
    assert pricing.discount == Decimal(discount)
    assert pricing.total == Decimal(total)
    assert pricing.original - pricing.discount == pricing.total


def test_percent_label_drops_trailing_zeros():
    pricing = apply("20.00", CouponSnapshot("TEN", "percent", Decimal("10.00")))
    assert pricing.label == "TEN (-10%)"


def test_float_base_price_has_no_binary_artifacts():
    pricing = apply(0.1 + 0.2, None)
    assert pricing.total == Decimal("0.30")


def test_unknown_coupon_kind_is_rejected():
    with pytest.raises(LockViolation):
        apply("10", CouponSnapshot("ODD", "bogus", Decimal("1")))


def test_negative_base_is_rejected():
    with pytest.raises(LockViolation):
        apply("-1", None)


@pytest.mark.parametrize(
    "base, coupon, total, discount",
    [
        ("100", CouponSnapshot("C30", "fixed", Decimal("30")), "70.00", "30.00"),
        ("50", CouponSnapshot("P20", "percent", Decimal("20")), "40.00", "10.00"),
        ("10", CouponSnapshot("HUGE", "fixed", Decimal("999")), "0.00", "10.00"),
        ("100", None, "100.00", "0.00"),
    ],
)
def test_reference_prices(base, coupon, total, discount):
    pricing = apply(base, coupon)
    assert (pricing.total, pricing.discount) == (Decimal(total), Decimal(discount))
