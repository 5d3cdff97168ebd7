"""
==============================================================================
== Crystal Store Bot - тикеты покупателя
------------------------------------------------------------------------------
Назначение: открытие тикета, каталог, выбор товара (создание заказа),
выбор способа оплаты и выдача ссылки на оплату; пересылка сообщений
покупателя владельцу.

Канон/инварианты:
  • Тикет = приватный чат покупателя с ботом (channel_id = chat.id).
  • Цена и купон считаются только сервисом заказов; хэндлер лишь показывает.
  • Ошибки сервисов (NotFound/Provider/Validation) превращает в ответ
    SafeMiddleware.
==============================================================================
"""

from __future__ import annotations

from html import escape
from typing import Mapping

from aiogram import F, Router
from aiogram.filters import StateFilter
from aiogram.types import CallbackQuery, Message

from crystal_bot.bot.keyboards import (
    CB_OPEN_TICKET,
    CB_PAY_PREFIX,
    CB_PRODUCT_PREFIX,
    CB_PRODUCTS,
    coupon_keyboard,
    parse_pay_callback,
    pay_link_keyboard,
    payment_methods_keyboard,
    products_keyboard,
)
from crystal_bot.bot.middlewares import user_tag
from crystal_bot.core.config_core import get_settings
from crystal_bot.core.database_core import lifespan_session
from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.utils_core import format_usd
from crystal_bot.integrations.chat_gateway import ChatGateway
from crystal_bot.integrations.providers import PaymentProvider
from crystal_bot.models.order_models import Order
from crystal_bot.services.catalog_service import get_product, list_products
from crystal_bot.services.orders_service import PAYMENT_METHOD_CRYPTO, create_order
from crystal_bot.services.payments_service import issue_payment_link
from crystal_bot.services.tickets_service import get_open_ticket, open_ticket

router = Router(name="tickets")
router.message.filter(F.chat.type == "private")
logger = get_logger(__name__)
settings = get_settings()


def products_text() -> str:
    lines = ["<b>Products</b>"]
    for p in list_products():
        eta = f" <i>(ETA: {escape(p.delivery)})</i>" if p.delivery else ""
        lines.append(f"{p.emoji} <b>{escape(p.name)}</b> - {format_usd(p.price)}{eta}")
    lines.append("")
    lines.append("Select one product to continue.")
    return "\n".join(lines)


def payment_methods_text(order: Order) -> str:
    lines = [
        "<b>Choose Payment Method</b>",
        f"<b>Product:</b> {escape(order.product_name)}",
        f"<b>Total:</b> {format_usd(order.total_amount)}",
    ]
    if order.coupon_code and order.discount_amount:
        lines.append(f"<b>Discount:</b> -{format_usd(order.discount_amount)} ({escape(order.coupon_code)})")
    return "\n".join(lines)


def payment_instructions_text(method: str, order: Order) -> str:
    lines = [
        "<b>Payment</b>",
        f"<b>Order ID:</b> <code>{escape(order.id)}</code>",
        f"<b>Product:</b> {escape(order.product_name)}",
        f"<b>Total:</b> {format_usd(order.total_amount)}",
    ]
    if order.coupon_code:
        lines.append(f"<b>Coupon:</b> <code>{escape(order.coupon_code)}</code>")
    lines.append("")
    lines.append("<b>Crypto (Cryptomus)</b>" if method == PAYMENT_METHOD_CRYPTO else "<b>Stripe (Card)</b>")
    lines.append("1) Click <b>Pay Now</b>")
    lines.append("2) Complete " + ("payment" if method == PAYMENT_METHOD_CRYPTO else "checkout"))
    lines.append("3) Wait for confirmation here")
    return "\n".join(lines)


@router.callback_query(F.data == CB_OPEN_TICKET)
async def handle_open_ticket(callback: CallbackQuery, gateway: ChatGateway) -> None:
    if callback.message is None:
        await callback.answer()
        return
    channel_id = str(callback.message.chat.id)
    async with lifespan_session() as session:
        _, created = await open_ticket(
            session,
            buyer_id=callback.from_user.id,
            buyer_tag=user_tag(callback.from_user),
            channel_id=channel_id,
        )
    if not created:
        await callback.answer("⚠️ You already have an open ticket here.", show_alert=True)
        return

    await callback.message.answer(
        f"<b>Welcome 👋</b>\nHello {escape(user_tag(callback.from_user))}!\n\n"
        "Choose your product below. After payment you will get confirmation here."
    )
    await callback.message.answer(products_text(), reply_markup=products_keyboard(list_products()))
    await callback.message.answer("Have a discount code? Apply it here:", reply_markup=coupon_keyboard())
    for admin_id in settings.admin_ids:
        await gateway.send_message(
            admin_id,
            f"🎫 New ticket <code>{channel_id}</code> from {escape(user_tag(callback.from_user))}",
        )
    await callback.answer("✅ Ticket created")


@router.callback_query(F.data == CB_PRODUCTS)
async def handle_products(callback: CallbackQuery) -> None:
    if callback.message is not None:
        await callback.message.answer(products_text(), reply_markup=products_keyboard(list_products()))
    await callback.answer()


@router.callback_query(F.data.startswith(CB_PRODUCT_PREFIX))
async def handle_choose_product(
    callback: CallbackQuery,
    providers: Mapping[str, PaymentProvider],
) -> None:
    if callback.message is None or callback.data is None:
        await callback.answer()
        return
    product = get_product(callback.data[len(CB_PRODUCT_PREFIX):])
    channel_id = str(callback.message.chat.id)

    async with lifespan_session() as session:
        if await get_open_ticket(session, channel_id) is None:
            await callback.answer("Open a ticket first: /start", show_alert=True)
            return
        created = await create_order(
            session,
            channel_id=channel_id,
            buyer_id=callback.from_user.id,
            product=product,
            buyer_tag=user_tag(callback.from_user),
        )

    order = created.order
    if created.coupon_applied:
        await callback.message.answer(
            f"🏷️ Coupon <b>{escape(order.coupon_code or '')}</b> applied to this order. "
            f"New total: <b>{format_usd(order.total_amount)}</b>"
        )
    if not providers:
        await callback.message.answer("⚠️ Payments are temporarily unavailable. The owner will contact you.")
    else:
        await callback.message.answer(
            payment_methods_text(order),
            reply_markup=payment_methods_keyboard(order.id, providers.keys()),
        )
    await callback.answer("✅ Choose payment method below.")


@router.callback_query(F.data.startswith(CB_PAY_PREFIX))
async def handle_pay(callback: CallbackQuery, providers: Mapping[str, PaymentProvider]) -> None:
    if callback.message is None or callback.data is None:
        await callback.answer()
        return
    method, order_id = parse_pay_callback(callback.data)
    async with lifespan_session() as session:
        issued = await issue_payment_link(session, order_id, method, providers)

    if issued.already_paid or issued.link is None:
        await callback.answer("✅ Already paid.", show_alert=True)
        return
    await callback.message.answer(
        payment_instructions_text(method, issued.order),
        reply_markup=pay_link_keyboard(issued.link.external_url),
    )
    await callback.answer("✅ Payment link sent.")


@router.message(StateFilter(None), F.text, ~F.text.startswith("/"))
async def handle_ticket_message(message: Message, gateway: ChatGateway) -> None:
    """Свободный текст покупателя в открытом тикете уходит владельцу."""
    channel_id = str(message.chat.id)
    async with lifespan_session() as session:
        ticket = await get_open_ticket(session, channel_id)
    if ticket is None:
        await message.answer("Use /start to open a ticket.")
        return
    for admin_id in settings.admin_ids:
        await gateway.send_message(
            admin_id,
            f"💬 <code>{channel_id}</code> {escape(user_tag(message.from_user))}:\n{escape(message.text or '')}\n\n"
            f"Reply with /reply {channel_id} TEXT",
        )
