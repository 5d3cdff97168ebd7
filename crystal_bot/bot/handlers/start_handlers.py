"""Стартовые команды бота Crystal Store."""

from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from crystal_bot.bot.keyboards import panel_keyboard
from crystal_bot.core.config_core import get_settings

router = Router(name="start")


def panel_text() -> str:
    store = get_settings().STORE_NAME
    return "\n".join(
        [
            f"<b>{store} - Ticket Panel</b>",
            "Open a ticket to order or get support.",
            "",
            "✅ Fast delivery",
            "✅ Secure payments (Crypto/Stripe)",
            "✅ Invoice PDF after delivery",
        ]
    )


@router.message(CommandStart())
async def handle_start(message: Message) -> None:
    """Панель магазина с кнопкой открытия тикета."""

    await message.answer(panel_text(), reply_markup=panel_keyboard())


@router.message(Command("help"))
async def handle_help(message: Message) -> None:
    await message.answer(
        "Use /start to open the ticket panel. Inside a ticket pick a product,"
        " apply a coupon with /coupon CODE and choose a payment method."
    )
