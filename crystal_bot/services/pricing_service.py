# -*- coding: utf-8 -*-
# crystal_bot/services/pricing_service.py
# =============================================================================
# Назначение кода:
#   Чистая функция цены: (базовая цена, купон | None) → (итог, скидка, метка).
#
# Канон/инварианты:
#   • fixed:   discount = clamp(value, 0, base).
#   • percent: pct = clamp(value, 0, 100); discount = base * pct / 100.
#   • Промежуточные значения не округляются; на финале discount и original
#     округляются ROUND_HALF_UP до центов, а total = original - discount.
#     Так total == original - discount держится точно, без «потерянного цента».
#   • Без побочных эффектов: можно звать сколько угодно раз для превью.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from crystal_bot.core.system_locks import LockViolation, assert_pricing_consistent
from crystal_bot.core.utils_core import clamp, decimal_from, format_number, format_usd, money
from crystal_bot.models.coupon_models import COUPON_KIND_FIXED, COUPON_KIND_PERCENT
from crystal_bot.schemas.coupons_schemas import CouponSnapshot

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class Pricing:
    original: Decimal
    discount: Decimal
    total: Decimal
    label: Optional[str] = None


def apply(base_amount: object, coupon: Optional[CouponSnapshot]) -> Pricing:
    """Считает цену заказа; купон None - цена без скидки."""
    base = decimal_from(base_amount)  # type: ignore[arg-type]
    if base < 0:
        raise LockViolation(f"Negative base price: {base}")

    if coupon is None:
        original = money(base)
        return Pricing(original=original, discount=money(_ZERO), total=original)

    value = decimal_from(coupon.value)
    if coupon.kind == COUPON_KIND_FIXED:
        raw_discount = clamp(value, _ZERO, base)
        label = f"{coupon.code} (-{format_usd(raw_discount)})"
    elif coupon.kind == COUPON_KIND_PERCENT:
        pct = clamp(value, _ZERO, _HUNDRED)
        raw_discount = base * pct / _HUNDRED
        label = f"{coupon.code} (-{format_number(pct)}%)"
    else:
        raise LockViolation(f"Unknown coupon kind: {coupon.kind!r}")

    original = money(base)
    discount = money(raw_discount)
    total = original - discount
    assert_pricing_consistent(original, discount, total)
    return Pricing(original=original, discount=discount, total=total, label=label)


__all__ = ["Pricing", "apply"]
