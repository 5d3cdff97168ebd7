"""Ввод купона покупателем: кнопка «Use Coupon» (FSM) или /coupon CODE."""

from __future__ import annotations

from html import escape

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from crystal_bot.bot.keyboards import CB_COUPON
from crystal_bot.bot.states import CouponStates
from crystal_bot.core.database_core import lifespan_session
from crystal_bot.services.coupons_service import submit_coupon_code
from crystal_bot.services.tickets_service import get_open_ticket

router = Router(name="coupons")
router.message.filter(F.chat.type == "private")


async def _apply(message: Message, raw_code: str) -> None:
    channel_id = str(message.chat.id)
    async with lifespan_session() as session:
        if await get_open_ticket(session, channel_id) is None:
            await message.answer("Open a ticket first: /start")
            return
        snapshot = await submit_coupon_code(session, channel_id, raw_code)
    if snapshot is None:
        await message.answer("❌ Invalid / expired coupon code.")
        return
    await message.answer(
        f"✅ Coupon saved for your next product: <b>{escape(snapshot.code)}</b>\n"
        "Now select a product and it will be applied automatically."
    )


@router.callback_query(F.data == CB_COUPON)
async def handle_coupon_button(callback: CallbackQuery, state: FSMContext) -> None:
    await state.set_state(CouponStates.waiting_for_code)
    if callback.message is not None:
        await callback.message.answer("Send your coupon code (or /cancel).")
    await callback.answer()


@router.message(Command("cancel"), CouponStates.waiting_for_code)
async def handle_coupon_cancel(message: Message, state: FSMContext) -> None:
    await state.clear()
    await message.answer("Coupon entry cancelled.")


@router.message(CouponStates.waiting_for_code, F.text)
async def handle_coupon_code(message: Message, state: FSMContext) -> None:
    await state.clear()
    await _apply(message, message.text or "")


@router.message(Command("coupon"))
async def handle_coupon_command(message: Message, command: CommandObject) -> None:
    if not command.args:
        await message.answer("Usage: /coupon CODE")
        return
    await _apply(message, command.args.strip())
