# -*- coding: utf-8 -*-
# crystal_bot/schemas/coupons_schemas.py
# =============================================================================
# Назначение кода:
# • CouponSnapshot - неизменяемый снимок параметров купона (для цены,
#   ожидающего купона и заказа).
# • DTO админ-API купонов. Правила формата кода проверяет сервис
#   (ValidationError с текстом для пользователя), а не эти схемы.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common_schemas import MoneyOut


@dataclass(frozen=True, slots=True)
class CouponSnapshot:
    code: str
    kind: str
    value: Decimal
    max_uses: int = 0

    @classmethod
    def of(cls, coupon: Any) -> "CouponSnapshot":
        """Снимок с любой записи, у которой есть code/kind/value/max_uses."""
        return cls(
            code=coupon.code,
            kind=coupon.kind,
            value=Decimal(coupon.value),
            max_uses=int(coupon.max_uses or 0),
        )


class CouponCreateIn(BaseModel):
    code: str = Field(..., description="Код купона (2-32 символа A-Z, 0-9, _ или -)")
    kind: str = Field(..., description="fixed | percent")
    value: Any = Field(..., description="Скидка: USD для fixed, проценты для percent")
    max_uses: int = Field(0, description="Лимит использований, 0 = без лимита")


class CouponActiveIn(BaseModel):
    active: bool


class CouponOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    kind: str
    value: MoneyOut
    max_uses: int
    uses: int
    active: bool
    created_at: Optional[datetime] = None


__all__ = ["CouponSnapshot", "CouponCreateIn", "CouponActiveIn", "CouponOut"]
