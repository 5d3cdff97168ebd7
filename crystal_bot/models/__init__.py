# -*- coding: utf-8 -*-
# crystal_bot/models/__init__.py
# =============================================================================
# Единая точка входа слоя моделей: импорт всех моделей регистрирует их таблицы
# в Base.metadata (нужно Alembic и create_all()).
# =============================================================================

from __future__ import annotations

from ..core.database_core import Base
from .coupon_models import (
    COUPON_KIND_FIXED,
    COUPON_KIND_PERCENT,
    COUPON_KINDS,
    Coupon,
    PendingCoupon,
)
from .order_models import Order
from .ticket_models import (
    TICKET_STATUS_CLOSED,
    TICKET_STATUS_OPEN,
    Ticket,
    TicketMessage,
)

__all__ = [
    "Base",
    "COUPON_KIND_FIXED",
    "COUPON_KIND_PERCENT",
    "COUPON_KINDS",
    "Coupon",
    "PendingCoupon",
    "Order",
    "TICKET_STATUS_OPEN",
    "TICKET_STATUS_CLOSED",
    "Ticket",
    "TicketMessage",
]
