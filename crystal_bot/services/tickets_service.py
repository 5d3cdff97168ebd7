# -*- coding: utf-8 -*-
# crystal_bot/services/tickets_service.py
# =============================================================================
# Назначение кода:
#   Тикеты покупателей:
#     • open_ticket - открыть (или переоткрыть) тикет в приватном чате;
#     • open_ticket_for_user - то же по Telegram id (команда админа /ticket);
#     • record_message / build_transcript - журнал переписки и транскрипт;
#     • deliver_and_close - выдача заказа владельцем (/dn): инвойс в личку,
#       сводка в LOG_CHANNEL_ID, транскрипт в LOG_TRANSCRIPT_CHANNEL_ID;
#     • close_silently - закрытие без инвойса и сводки (/close).
#
# Канон/инварианты:
#   • Неоплаченный заказ выдаётся только после FORCE_CLOSE_CONFIRMATIONS
#     подтверждений подряд; счётчик хранится в строке тикета и растёт
#     атомарно, сбрасывается при закрытии.
#   • Транскрипт ограничен TRANSCRIPT_MAX_MESSAGES последними сообщениями.
#   • Сетевые вызовы чата - вне транзакций БД; их сбой не мешает закрытию.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from html import escape
from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.database_core import unit_of_work
from crystal_bot.core.errors_core import NotFoundError
from crystal_bot.core.logging_core import get_logger, set_request_context
from crystal_bot.core.system_locks import ORDER_STATUS_PAID
from crystal_bot.core.utils_core import format_usd, utcnow
from crystal_bot.crud.order_crud import OrderCRUD
from crystal_bot.crud.ticket_crud import TicketCRUD
from crystal_bot.integrations.chat_gateway import ChatGateway
from crystal_bot.integrations.invoice_pdf import invoice_path, render_invoice
from crystal_bot.models.order_models import Order
from crystal_bot.models.ticket_models import TICKET_STATUS_OPEN, Ticket, TicketMessage

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    closed: bool
    order: Optional[Order] = None
    confirmations: int = 0
    required: int = 0
    invoice_sent: bool = False


# -----------------------------------------------------------------------------
# Открытие / закрытие
# -----------------------------------------------------------------------------
async def open_ticket(
    session: AsyncSession,
    *,
    buyer_id: int,
    buyer_tag: Optional[str],
    channel_id: str,
) -> Tuple[Ticket, bool]:
    """(ticket, created): created=False, если тикет в этом чате уже открыт."""
    channel_id = str(channel_id)
    tickets = TicketCRUD(session)
    async with unit_of_work(session, "open_ticket"):
        ticket = await tickets.get(channel_id)
        if ticket is None:
            ticket = await tickets.create(
                Ticket(
                    channel_id=channel_id,
                    buyer_id=int(buyer_id),
                    buyer_tag=buyer_tag,
                    status=TICKET_STATUS_OPEN,
                    force_close_confirmations=0,
                    created_at=utcnow(),
                )
            )
            created = True
        elif ticket.is_open:
            created = False
        else:
            created = await tickets.reopen(channel_id, buyer_tag=buyer_tag)
            ticket = await tickets.get(channel_id)
    assert ticket is not None  # для mypy
    if created:
        logger.info("Ticket opened", extra={"details": {"channel_id": channel_id, "buyer_id": buyer_id}})
    return ticket, created


async def get_open_ticket(session: AsyncSession, channel_id: str) -> Ticket | None:
    ticket = await TicketCRUD(session).get(str(channel_id))
    if ticket is None or not ticket.is_open:
        return None
    return ticket


async def open_ticket_for_user(
    session: AsyncSession,
    user_id: int,
    gateway: ChatGateway,
) -> Tuple[Ticket, bool]:
    """Тикет в личном чате пользователя; NotFoundError, если бот ему писать не может."""
    channel_id = await gateway.create_private_channel(int(user_id))
    if channel_id is None:
        raise NotFoundError(
            "User is not reachable. They must /start the bot first.",
            details={"user_id": int(user_id)},
        )
    user = await gateway.fetch_user(int(user_id))
    return await open_ticket(
        session,
        buyer_id=int(user_id),
        buyer_tag=user.tag if user else None,
        channel_id=channel_id,
    )


async def register_force_close(session: AsyncSession, channel_id: str) -> int:
    """Атомарный +1 к счётчику подтверждений; NotFoundError без открытого тикета."""
    async with unit_of_work(session, "register_force_close"):
        count = await TicketCRUD(session).increment_force_close(str(channel_id))
    if count is None:
        raise NotFoundError("No open ticket for this chat.", details={"channel_id": str(channel_id)})
    return int(count)


async def close_ticket(session: AsyncSession, channel_id: str) -> Ticket | None:
    """Закрывает открытый тикет (счётчик сбрасывается); None, если закрывать нечего."""
    tickets = TicketCRUD(session)
    async with unit_of_work(session, "close_ticket"):
        closed = await tickets.close(str(channel_id))
        ticket = await tickets.get(str(channel_id)) if closed else None
    if ticket is not None:
        logger.info("Ticket closed", extra={"details": {"channel_id": str(channel_id)}})
    return ticket


# -----------------------------------------------------------------------------
# Журнал и транскрипт
# -----------------------------------------------------------------------------
async def record_message(
    session: AsyncSession,
    *,
    channel_id: str,
    author_id: int,
    author_tag: Optional[str],
    text: str,
) -> bool:
    """Пишет сообщение в журнал открытого тикета; False, если тикета нет."""
    tickets = TicketCRUD(session)
    async with unit_of_work(session, "record_message"):
        ticket = await tickets.get(str(channel_id))
        if ticket is None or not ticket.is_open:
            return False
        await tickets.add_message(
            TicketMessage(
                channel_id=str(channel_id),
                author_id=int(author_id),
                author_tag=author_tag,
                text=text,
                created_at=utcnow(),
            )
        )
    return True


def _iso(dt) -> str:
    return dt.isoformat(timespec="seconds").replace("+00:00", "Z")


async def build_transcript(session: AsyncSession, channel_id: str) -> str:
    channel_id = str(channel_id)
    tickets = TicketCRUD(session)
    ticket = await tickets.get(channel_id)
    if ticket is None:
        raise NotFoundError("Ticket not found.", details={"channel_id": channel_id})

    limit = settings.TRANSCRIPT_MAX_MESSAGES
    rows = await tickets.list_messages(channel_id, since=ticket.created_at, limit=limit + 1)
    truncated = len(rows) > limit
    if truncated:
        rows = rows[1:]

    lines = [
        "Ticket Transcript",
        f"Chat: {channel_id}",
        f"Buyer: {ticket.buyer_tag or '-'} ({ticket.buyer_id})",
        f"Opened at: {_iso(ticket.created_at)}",
        f"Closed at: {_iso(utcnow())}",
        "-" * 40,
    ]
    for msg in rows:
        content = (msg.text or "").replace("\n", "\\n")
        lines.append(f"[{_iso(msg.created_at)}] {msg.author_tag or 'unknown'} ({msg.author_id}): {content}")
    if truncated:
        lines.append(f"(Transcript truncated at {limit} messages)")
    return "\n".join(lines)


async def _send_transcript(session: AsyncSession, channel_id: str, gateway: ChatGateway) -> bool:
    target = settings.LOG_TRANSCRIPT_CHANNEL_ID
    if not target:
        return False
    async with unit_of_work(session, "build_transcript"):
        text = await build_transcript(session, channel_id)
    return await gateway.send_document(
        target,
        content=text.encode("utf-8"),
        filename=f"transcript-{channel_id}.txt",
        caption=f"🧾 Transcript for chat {channel_id}",
    )


# -----------------------------------------------------------------------------
# Выдача заказа
# -----------------------------------------------------------------------------
def order_summary(order: Order) -> str:
    lines = [
        "🧾 <b>New Completed Order</b>",
        f"<b>Buyer:</b> {escape(order.buyer_tag or '-')} ({order.buyer_id})",
        f"<b>Order ID:</b> <code>{escape(order.id)}</code>",
        f"<b>Product:</b> {escape(order.product_name)}",
    ]
    if order.coupon_code:
        lines.append(f"<b>Coupon:</b> <code>{escape(order.coupon_code)}</code>")
    lines.append(f"<b>Payment:</b> {escape(order.payment_method or '-')}")
    lines.append(f"<b>Amount:</b> {format_usd(order.total_amount)}")
    return "\n".join(lines)


async def _ensure_invoice(order: Order) -> Optional[Path]:
    path = invoice_path(order.id, settings.invoices_path)
    if path.exists():
        return path
    try:
        return await asyncio.to_thread(render_invoice, order, settings.STORE_NAME, settings.invoices_path)
    except OSError as exc:
        logger.error("Invoice render failed: %s", exc, extra={"details": {"order_id": order.id}})
        return None


async def deliver_and_close(
    session: AsyncSession,
    channel_id: str,
    gateway: ChatGateway,
) -> DeliveryResult:
    """
    /dn: если последний заказ чата не оплачен, требуется
    FORCE_CLOSE_CONFIRMATIONS повторов команды. Затем инвойс покупателю,
    сводка в лог-канал, транскрипт и закрытие тикета.
    """
    channel_id = str(channel_id)
    required = settings.FORCE_CLOSE_CONFIRMATIONS
    async with unit_of_work(session, "deliver_and_close.read"):
        ticket = await get_open_ticket(session, channel_id)
        order = await OrderCRUD(session).get_latest_by_channel(channel_id)
    if ticket is None:
        raise NotFoundError("No open ticket for this chat.", details={"channel_id": channel_id})
    if order is not None:
        set_request_context(order_id=order.id)

    if order is not None and order.status != ORDER_STATUS_PAID:
        count = await register_force_close(session, channel_id)
        if count < required:
            logger.info(
                "Force close requested for unpaid order",
                extra={"details": {"confirmations": count, "required": required}},
            )
            return DeliveryResult(closed=False, order=order, confirmations=count, required=required)

    invoice_sent = False
    if order is not None:
        path = await _ensure_invoice(order)
        if path is not None:
            invoice_sent = await gateway.send_document(
                order.buyer_id,
                path=path,
                caption=f"🧾 Your invoice from {settings.STORE_NAME} (Order: {order.id}). Thank you!",
            )
        if settings.LOG_CHANNEL_ID:
            await gateway.send_message(settings.LOG_CHANNEL_ID, order_summary(order))

    await _send_transcript(session, channel_id, gateway)
    await close_ticket(session, channel_id)
    await gateway.send_message(channel_id, "✅ Order delivered. This ticket is now closed.")
    return DeliveryResult(closed=True, order=order, required=required, invoice_sent=invoice_sent)


async def close_silently(session: AsyncSession, channel_id: str, gateway: ChatGateway) -> bool:
    """/close: транскрипт + закрытие, без инвойса и сводки заказа."""
    channel_id = str(channel_id)
    async with unit_of_work(session, "close_silently.read"):
        ticket = await get_open_ticket(session, channel_id)
    if ticket is None:
        raise NotFoundError("No open ticket for this chat.", details={"channel_id": channel_id})
    await _send_transcript(session, channel_id, gateway)
    closed = await close_ticket(session, channel_id)
    await gateway.send_message(channel_id, "✅ This ticket is now closed.")
    return closed is not None


__all__ = [
    "DeliveryResult",
    "open_ticket",
    "open_ticket_for_user",
    "get_open_ticket",
    "register_force_close",
    "close_ticket",
    "record_message",
    "build_transcript",
    "order_summary",
    "deliver_and_close",
    "close_silently",
]
