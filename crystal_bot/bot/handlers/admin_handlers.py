"""
==============================================================================
== Crystal Store Bot - команды владельца/админов
------------------------------------------------------------------------------
  /coupon_add CODE fixed|percent VALUE [MAX_USES]
  /coupon_del CODE
  /coupons
  /ticket <user_id>     - открыть тикет в личке пользователя
  /dn <channel_id>      - выдать заказ и закрыть тикет
  /close <channel_id>   - закрыть тикет без инвойса
  /reply <channel_id> TEXT - ответ покупателю в тикет

Доступ: OWNER_ID и ADMIN_IDS (фильтр роутера). Ошибки ввода показываются
текстом ValidationError через SafeMiddleware.
==============================================================================
"""

from __future__ import annotations

from html import escape

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from crystal_bot.bot.handlers.start_handlers import panel_text
from crystal_bot.bot.keyboards import panel_keyboard
from crystal_bot.bot.middlewares import user_tag
from crystal_bot.core.config_core import get_settings
from crystal_bot.core.database_core import lifespan_session
from crystal_bot.core.utils_core import format_number, format_usd
from crystal_bot.integrations.chat_gateway import ChatGateway
from crystal_bot.models.coupon_models import COUPON_KIND_PERCENT
from crystal_bot.services.coupons_service import (
    add_coupon,
    describe_coupon,
    list_coupons,
    normalize_code,
    remove_coupon,
)
from crystal_bot.services.tickets_service import (
    close_silently,
    deliver_and_close,
    get_open_ticket,
    open_ticket_for_user,
    record_message,
)

router = Router(name="admin")
settings = get_settings()
router.message.filter(F.from_user.func(lambda user: settings.is_admin(user.id)))


def _first_arg(command: CommandObject) -> str | None:
    if not command.args:
        return None
    return command.args.split()[0]


@router.message(Command("coupon_add"))
async def handle_coupon_add(message: Message, command: CommandObject) -> None:
    parts = (command.args or "").split()
    if len(parts) < 3:
        await message.answer("Usage: /coupon_add CODE fixed|percent VALUE [MAX_USES]")
        return
    code, kind, value = parts[0], parts[1], parts[2]
    max_uses = parts[3] if len(parts) > 3 else 0
    async with lifespan_session() as session:
        coupon = await add_coupon(session, code=code, kind=kind, value=value, max_uses=max_uses)
    amount = f"{format_number(coupon.value)}%" if coupon.kind == COUPON_KIND_PERCENT else format_usd(coupon.value)
    await message.answer(
        f"✅ Added coupon <b>{escape(coupon.code)}</b> ({coupon.kind} - {amount}, "
        f"maxUses: {coupon.max_uses or 'unlimited'})"
    )


@router.message(Command("coupon_del"))
async def handle_coupon_del(message: Message, command: CommandObject) -> None:
    code = _first_arg(command)
    if not code:
        await message.answer("Usage: /coupon_del CODE")
        return
    async with lifespan_session() as session:
        removed = await remove_coupon(session, code)
    if removed:
        await message.answer(f"✅ Deleted coupon <b>{escape(normalize_code(code))}</b>")
    else:
        await message.answer("⚠️ Coupon not found.")


@router.message(Command("coupons"))
async def handle_coupons(message: Message) -> None:
    async with lifespan_session() as session:
        coupons = await list_coupons(session)
    if not coupons:
        await message.answer("No coupons yet.")
        return
    lines = ["<b>Coupons</b>"] + [f"• {escape(describe_coupon(c))}" for c in coupons]
    await message.answer("\n".join(lines))


@router.message(Command("ticket"))
async def handle_open_for_user(message: Message, command: CommandObject, gateway: ChatGateway) -> None:
    user_arg = _first_arg(command)
    if not user_arg or not user_arg.isdigit():
        await message.answer("Usage: /ticket USER_ID")
        return
    async with lifespan_session() as session:
        ticket, created = await open_ticket_for_user(session, int(user_arg), gateway)
    if created:
        await gateway.send_message(ticket.channel_id, panel_text(), reply_markup=panel_keyboard())
        await message.answer(f"✅ Ticket opened for {escape(ticket.buyer_tag or user_arg)}: {escape(ticket.channel_id)}")
    else:
        await message.answer(f"ℹ️ Ticket {escape(ticket.channel_id)} is already open.")


@router.message(Command("dn"))
async def handle_deliver(message: Message, command: CommandObject, gateway: ChatGateway) -> None:
    channel_id = _first_arg(command)
    if not channel_id:
        await message.answer("Usage: /dn CHANNEL_ID")
        return
    async with lifespan_session() as session:
        result = await deliver_and_close(session, channel_id, gateway)
    if not result.closed:
        await message.answer(
            f"⚠️ Order not marked paid. Send /dn {escape(channel_id)} again to force close "
            f"({result.confirmations}/{result.required})."
        )
        return
    invoice = "invoice sent" if result.invoice_sent else "no invoice sent"
    await message.answer(f"✅ Ticket {escape(channel_id)} delivered and closed ({invoice}).")


@router.message(Command("close"))
async def handle_close(message: Message, command: CommandObject, gateway: ChatGateway) -> None:
    channel_id = _first_arg(command)
    if not channel_id:
        await message.answer("Usage: /close CHANNEL_ID")
        return
    async with lifespan_session() as session:
        await close_silently(session, channel_id, gateway)
    await message.answer(f"✅ Ticket {escape(channel_id)} closed.")


@router.message(Command("reply"))
async def handle_reply(message: Message, command: CommandObject, gateway: ChatGateway) -> None:
    parts = (command.args or "").split(maxsplit=1)
    if len(parts) < 2:
        await message.answer("Usage: /reply CHANNEL_ID TEXT")
        return
    channel_id, text = parts
    async with lifespan_session() as session:
        if await get_open_ticket(session, channel_id) is None:
            await message.answer("⚠️ No open ticket for this chat.")
            return
        await record_message(
            session,
            channel_id=channel_id,
            author_id=message.from_user.id,
            author_tag=user_tag(message.from_user),
            text=text,
        )
    sent = await gateway.send_message(channel_id, f"💬 <b>{escape(settings.STORE_NAME)}</b>: {escape(text)}")
    await message.answer("✅ Sent." if sent else "⚠️ Could not deliver the message.")
