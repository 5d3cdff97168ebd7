"""Роутеры aiogram бота Crystal Store."""

from . import admin_handlers, coupon_handlers, start_handlers, ticket_handlers

__all__ = ["admin_handlers", "coupon_handlers", "start_handlers", "ticket_handlers"]
