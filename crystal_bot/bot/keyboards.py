"""
==============================================================================
== Crystal Store Bot - keyboards
------------------------------------------------------------------------------
Назначение: InlineKeyboard-разметки панели, тикета, каталога и оплаты.

Канон/инварианты:
  • Только UI-слой: без БД и сетевых вызовов.
  • callback_data короткие (лимит Telegram - 64 байта): префикс + id.
==============================================================================
"""

from __future__ import annotations

from typing import Iterable

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from crystal_bot.schemas.catalog_schemas import Product
from crystal_bot.services.orders_service import PAYMENT_METHOD_CRYPTO, PAYMENT_METHOD_STRIPE

CB_OPEN_TICKET = "ticket:open"
CB_PRODUCTS = "ticket:products"
CB_COUPON = "coupon:apply"
CB_PRODUCT_PREFIX = "prod:"
CB_PAY_PREFIX = "pay:"

_METHOD_LABELS = {
    PAYMENT_METHOD_CRYPTO: "🪙 Crypto",
    PAYMENT_METHOD_STRIPE: "💳 Stripe",
}


def panel_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="🎫 Open Ticket", callback_data=CB_OPEN_TICKET)]]
    )


def coupon_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="🏷️ Use Coupon", callback_data=CB_COUPON)]]
    )


def products_keyboard(products: Iterable[Product]) -> InlineKeyboardMarkup:
    """Один товар - одна кнопка."""
    rows = [
        [InlineKeyboardButton(text=p.button_label, callback_data=f"{CB_PRODUCT_PREFIX}{p.id}")]
        for p in products
    ]
    return InlineKeyboardMarkup(inline_keyboard=rows)


def payment_methods_keyboard(order_id: str, methods: Iterable[str]) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(
            text=_METHOD_LABELS.get(method, method),
            callback_data=f"{CB_PAY_PREFIX}{method}:{order_id}",
        )
        for method in methods
    ]
    return InlineKeyboardMarkup(inline_keyboard=[buttons])


def pay_link_keyboard(url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[[InlineKeyboardButton(text="Pay Now", url=url)]])


def parse_pay_callback(data: str) -> tuple[str, str]:
    """'pay:crypto:<order_id>' → ('crypto', '<order_id>')."""
    _, method, order_id = data.split(":", 2)
    return method, order_id
