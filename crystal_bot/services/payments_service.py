# -*- coding: utf-8 -*-
# crystal_bot/services/payments_service.py
# =============================================================================
# Назначение кода:
#   Граница между заказами и платёжными провайдерами:
#     • issue_payment_link - выдача ссылки на оплату (Crypto/Stripe);
#     • normalize_cryptomus / normalize_stripe - приведение вебхуков к
#       единому WebhookEvent;
#     • reconcile_webhook - подтверждение оплаты по событию + однократное
#       уведомление (PaidNotifier).
#
# Канон/инварианты:
#   • Ошибка провайдера (ProviderError) оставляет заказ pending без ссылки.
#   • Повторный вебхук по оплаченному заказу → outcome "duplicate", без
#     уведомлений и без повторного учёта купона.
#   • Уведомление и рендер инвойса ограничены DOWNSTREAM_TIMEOUT_SEC и
#     никогда не влияют на ответ провайдеру: ошибки только в лог.
#
# Запреты:
#   • Никакого HTTP-ответа здесь: его формирует routes/webhook_routes.
#   • Никаких блокировок в памяти процесса: идемпотентность даёт
#     confirm_payment на уровне БД.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from html import escape
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.database_core import unit_of_work
from crystal_bot.core.errors_core import NotFoundError, ProviderError
from crystal_bot.core.logging_core import get_logger, set_request_context
from crystal_bot.core.system_locks import ORDER_STATUS_PAID
from crystal_bot.core.utils_core import format_usd
from crystal_bot.integrations.chat_gateway import ChatGateway
from crystal_bot.integrations.cryptomus_api import PAID_STATUSES
from crystal_bot.integrations.cryptomus_api import PROVIDER_NAME as CRYPTOMUS
from crystal_bot.integrations.invoice_pdf import render_invoice
from crystal_bot.integrations.providers import PaymentLink, PaymentProvider
from crystal_bot.integrations.stripe_api import CHECKOUT_COMPLETED
from crystal_bot.integrations.stripe_api import PROVIDER_NAME as STRIPE
from crystal_bot.models.order_models import Order
from crystal_bot.services.orders_service import (
    PAYMENT_METHOD_CRYPTO,
    PAYMENT_METHOD_STRIPE,
    confirm_payment,
    get_order,
    record_payment_link_issued,
)

logger = get_logger(__name__)
settings = get_settings()


class WebhookOutcome(str, Enum):
    IGNORED_NO_ORDER_ID = "ignored_no_order_id"
    IGNORED_NOT_PAID = "ignored_not_paid"
    IGNORED_UNKNOWN_ORDER = "ignored_unknown_order"
    DUPLICATE = "duplicate"
    CONFIRMED = "confirmed"
    UNTRUSTED = "untrusted"


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    """Вебхук провайдера в независимом от провайдера виде."""

    order_id: Optional[str]
    is_paid_status: bool
    transaction_id: Optional[str]
    paid_amount: Optional[str]
    provider_name: str
    method: str


@dataclass(frozen=True, slots=True)
class IssuedLink:
    order: Order
    link: Optional[PaymentLink] = None
    already_paid: bool = False


class PaidNotifierProtocol(Protocol):
    async def notify_paid(self, order: Order) -> None:
        ...


# -----------------------------------------------------------------------------
# Выдача ссылки на оплату
# -----------------------------------------------------------------------------
def _description(order: Order) -> str:
    return f"{settings.STORE_NAME} | {order.product_name}"


async def issue_payment_link(
    session: AsyncSession,
    order_id: str,
    method: str,
    providers: Mapping[str, PaymentProvider],
) -> IssuedLink:
    """
    Запрашивает у провайдера ссылку на оплату заказа и записывает её.

      • заказа нет → NotFoundError;
      • заказ уже оплачен → IssuedLink(already_paid=True), провайдер не вызывается;
      • провайдер не настроен или упал → ProviderError, заказ не меняется.
    """
    set_request_context(order_id=order_id)
    async with unit_of_work(session, "issue_payment_link.read"):
        order = await get_order(session, order_id)
    if order is None:
        raise NotFoundError("Order not found.", details={"order_id": order_id})
    if order.status == ORDER_STATUS_PAID:
        return IssuedLink(order=order, already_paid=True)

    provider = providers.get(method)
    if provider is None:
        raise ProviderError("This payment method is not available.", details={"method": method})

    callback_url = settings.callback_url("/webhook/cryptomus") if method == PAYMENT_METHOD_CRYPTO else None
    link = await provider.request_payment_link(
        order.id,
        order.total_amount,
        _description(order),
        callback_url,
    )
    order = await record_payment_link_issued(
        session,
        order.id,
        method=method,
        provider=provider.name,
        url=link.external_url,
        transaction_id=link.transaction_id,
    )
    return IssuedLink(order=order, link=link, already_paid=order.status == ORDER_STATUS_PAID)


# -----------------------------------------------------------------------------
# Нормализация вебхуков
# -----------------------------------------------------------------------------
def normalize_cryptomus(payload: Any) -> WebhookEvent | None:
    """Cryptomus: order_id, status ∈ PAID_STATUSES, uuid|txid|payment_uuid, amount."""
    if not isinstance(payload, Mapping):
        return None
    order_id = payload.get("order_id")
    status = str(payload.get("status") or "").lower()
    txid = payload.get("uuid") or payload.get("txid") or payload.get("payment_uuid")
    amount = payload.get("amount")
    return WebhookEvent(
        order_id=str(order_id) if order_id else None,
        is_paid_status=status in PAID_STATUSES,
        transaction_id=str(txid) if txid else None,
        paid_amount=str(amount) if amount is not None else None,
        provider_name=CRYPTOMUS,
        method=PAYMENT_METHOD_CRYPTO,
    )


def normalize_stripe(event: Any) -> WebhookEvent | None:
    """Stripe: только checkout.session.completed; orderId из metadata."""
    if not isinstance(event, Mapping):
        return None
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        return None
    metadata = obj.get("metadata") or {}
    order_id = metadata.get("orderId") if isinstance(metadata, Mapping) else None
    txid = obj.get("payment_intent") or obj.get("id")
    amount_total = obj.get("amount_total")
    paid_amount = format_usd(Decimal(amount_total) / 100) if isinstance(amount_total, int) and amount_total else None
    return WebhookEvent(
        order_id=str(order_id) if order_id else None,
        is_paid_status=event.get("type") == CHECKOUT_COMPLETED,
        transaction_id=str(txid) if txid else None,
        paid_amount=paid_amount,
        provider_name=STRIPE,
        method=PAYMENT_METHOD_STRIPE,
    )


# -----------------------------------------------------------------------------
# Сверка вебхука с заказом
# -----------------------------------------------------------------------------
async def _notify_safely(notifier: Optional[PaidNotifierProtocol], order: Order) -> None:
    if notifier is None:
        return
    try:
        await asyncio.wait_for(notifier.notify_paid(order), timeout=settings.DOWNSTREAM_TIMEOUT_SEC)
    except asyncio.TimeoutError:
        logger.warning("Paid notification timed out", extra={"details": {"order_id": order.id}})
    except Exception:  # noqa: BLE001
        logger.exception("Paid notification failed", extra={"details": {"order_id": order.id}})


async def reconcile_webhook(
    session_factory: async_sessionmaker[AsyncSession],
    event: WebhookEvent | None,
    notifier: Optional[PaidNotifierProtocol] = None,
) -> WebhookOutcome:
    """
    Применяет нормализованный вебхук к заказу.

    Уведомление уходит только при outcome == CONFIRMED, то есть ровно один
    раз на заказ, сколько бы раз провайдер ни повторил доставку.
    PersistenceError пробрасывается: маршрут всё равно ответит 200.
    """
    if event is None or not event.order_id:
        return WebhookOutcome.IGNORED_NO_ORDER_ID
    set_request_context(order_id=event.order_id)
    if not event.is_paid_status:
        return WebhookOutcome.IGNORED_NOT_PAID

    async with session_factory() as session:
        confirmation = await confirm_payment(
            session,
            event.order_id,
            method=event.method,
            provider=event.provider_name,
            transaction_id=event.transaction_id,
            paid_amount=event.paid_amount,
        )

    if confirmation is None:
        return WebhookOutcome.IGNORED_UNKNOWN_ORDER
    if not confirmation.transitioned:
        return WebhookOutcome.DUPLICATE

    await _notify_safely(notifier, confirmation.order)
    return WebhookOutcome.CONFIRMED


# -----------------------------------------------------------------------------
# Уведомление об оплате
# -----------------------------------------------------------------------------
def paid_message(order: Order, owner_id: Optional[int] = None) -> str:
    lines = [
        "✅ <b>Payment Received</b>",
        f"<b>Order ID:</b> <code>{escape(order.id)}</code>",
        f"<b>Product:</b> {escape(order.product_name)}",
        f"<b>Amount:</b> {format_usd(order.total_amount)}",
    ]
    if order.coupon_code:
        lines.append(f"<b>Coupon:</b> <code>{escape(order.coupon_code)}</code>")
    lines.append(f"<b>Method:</b> {escape(order.payment_method or '-')}")
    lines.append("")
    lines.append("The owner will deliver your order shortly.")
    if owner_id:
        lines.append(f'<a href="tg://user?id={owner_id}">Owner</a>: deliver with /dn {escape(order.channel_id)}')
    return "\n".join(lines)


class PaidNotifier:
    """
    Действия после подтверждённой оплаты: PDF-инвойс (в рабочем потоке)
    и сообщения в канал тикета и в LOG_CHANNEL_ID.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        *,
        store_name: Optional[str] = None,
        invoices_dir: Optional[Path] = None,
        owner_id: Optional[int] = None,
        log_channel_id: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.store_name = store_name or settings.STORE_NAME
        self.invoices_dir = Path(invoices_dir or settings.invoices_path)
        self.owner_id = owner_id if owner_id is not None else settings.OWNER_ID
        self.log_channel_id = log_channel_id if log_channel_id is not None else settings.LOG_CHANNEL_ID

    async def render(self, order: Order) -> Optional[Path]:
        try:
            return await asyncio.to_thread(render_invoice, order, self.store_name, self.invoices_dir)
        except OSError as exc:
            logger.error("Invoice render failed: %s", exc, extra={"details": {"order_id": order.id}})
            return None

    async def notify_paid(self, order: Order) -> None:
        await self.render(order)
        await self.gateway.send_message(order.channel_id, paid_message(order, self.owner_id))
        if self.log_channel_id:
            await self.gateway.send_message(
                self.log_channel_id,
                f"💰 Order <code>{escape(order.id)}</code> paid: {escape(order.product_name)}, "
                f"{format_usd(order.total_amount)} via {escape(order.payment_provider or '-')}",
            )


__all__ = [
    "WebhookOutcome",
    "WebhookEvent",
    "IssuedLink",
    "PaidNotifier",
    "paid_message",
    "issue_payment_link",
    "normalize_cryptomus",
    "normalize_stripe",
    "reconcile_webhook",
]
