# -*- coding: utf-8 -*-
# crystal_bot/schemas/orders_schemas.py
# =============================================================================
# Назначение кода:
# Выходные DTO заказа для админ-API (GET /admin/orders/{id}).
# Поля плоские, как в таблице orders; деньги строкой с 2 знаками.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .common_schemas import MoneyOut


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    channel_id: str
    buyer_id: int
    buyer_tag: Optional[str] = None

    product_id: str
    product_name: str
    product_price: MoneyOut

    original_amount: MoneyOut
    discount_amount: MoneyOut
    total_amount: MoneyOut
    pricing_label: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_kind: Optional[str] = None
    coupon_usage_recorded: bool

    payment_method: Optional[str] = None
    payment_provider: Optional[str] = None
    payment_url: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_amount: Optional[str] = None

    created_at: datetime
    paid_at: Optional[datetime] = None


__all__ = ["OrderOut"]
