# -*- coding: utf-8 -*-
# crystal_bot/crud/__init__.py
# CRUD-слой: только доступ к данным, commit делает сервис.

from .coupon_crud import CouponCRUD
from .order_crud import OrderCRUD
from .pending_coupon_crud import PendingCouponCRUD
from .ticket_crud import TicketCRUD

__all__ = ["CouponCRUD", "OrderCRUD", "PendingCouponCRUD", "TicketCRUD"]
