# -*- coding: utf-8 -*-
# crystal_bot/routes/webhook_routes.py
# =============================================================================
# Назначение кода:
#   Приём вебхуков платёжных провайдеров и страницы возврата Stripe:
#     • POST /webhook/cryptomus - JSON-тело с полем sign;
#     • POST /webhook/stripe    - сырое тело + заголовок Stripe-Signature;
#     • GET  /success, /cancel  - куда Stripe возвращает покупателя.
#
# Канон / инварианты:
#   • Провайдер ВСЕГДА получает 200 {"ok": true, "status": <outcome>}:
#     неизвестный заказ, неоплаченный статус, неподлинная подпись и
#     внутренняя ошибка - это причина в status, а не код ответа.
#   • Идемпотентность и однократное уведомление - в payments_service.
#
# Запреты:
#   • Никакой бизнес-логики заказов в роуте.
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.errors_core import CrystalError
from crystal_bot.core.logging_core import get_logger
from crystal_bot.deps import get_db_factory, get_notifier
from crystal_bot.integrations import cryptomus_api
from crystal_bot.integrations.stripe_api import StripeCheckoutClient, StripeWebhookError
from crystal_bot.schemas.common_schemas import WebhookAckOut
from crystal_bot.services.payments_service import (
    PaidNotifierProtocol,
    WebhookEvent,
    WebhookOutcome,
    normalize_cryptomus,
    normalize_stripe,
    reconcile_webhook,
)

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["webhooks"])


def _ack(outcome: WebhookOutcome | str) -> WebhookAckOut:
    status = outcome.value if isinstance(outcome, WebhookOutcome) else outcome
    return WebhookAckOut(ok=True, status=status)


async def _reconcile(
    provider: str,
    event: Optional[WebhookEvent],
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Optional[PaidNotifierProtocol],
) -> WebhookAckOut:
    try:
        outcome = await reconcile_webhook(session_factory, event, notifier)
    except CrystalError as exc:
        logger.error(
            "Webhook reconciliation failed",
            extra={"details": {"provider": provider, "error": exc.code}},
        )
        return _ack("error")
    except Exception:  # noqa: BLE001
        # провайдер повторяет неподтверждённые вебхуки: ack даже при сбое
        logger.exception("Webhook reconciliation crashed", extra={"details": {"provider": provider}})
        return _ack("error")
    logger.info(
        "Webhook processed",
        extra={"details": {"provider": provider, "outcome": outcome.value}},
    )
    return _ack(outcome)


@router.post("/webhook/cryptomus", response_model=WebhookAckOut)
async def cryptomus_webhook(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
    notifier: Optional[PaidNotifierProtocol] = Depends(get_notifier),
) -> WebhookAckOut:
    raw = await request.body()
    try:
        payload: Any = json.loads(raw or b"{}")
    except ValueError:
        logger.warning("Cryptomus webhook: body is not JSON")
        return _ack(WebhookOutcome.IGNORED_NO_ORDER_ID)
    if not isinstance(payload, dict):
        return _ack(WebhookOutcome.IGNORED_NO_ORDER_ID)

    if not cryptomus_api.verify_webhook(payload):
        logger.warning("Cryptomus webhook: signature mismatch")
        return _ack(WebhookOutcome.UNTRUSTED)

    return await _reconcile("cryptomus", normalize_cryptomus(payload), session_factory, notifier)


@router.post("/webhook/stripe", response_model=WebhookAckOut)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_factory),
    notifier: Optional[PaidNotifierProtocol] = Depends(get_notifier),
) -> WebhookAckOut:
    raw = await request.body()
    try:
        event = StripeCheckoutClient().parse_webhook(raw, stripe_signature)
    except StripeWebhookError as exc:
        logger.warning("Stripe webhook rejected: %s", exc)
        return _ack(WebhookOutcome.UNTRUSTED)

    return await _reconcile("stripe", normalize_stripe(event), session_factory, notifier)


# -----------------------------------------------------------------------------
# Страницы возврата после Checkout
# -----------------------------------------------------------------------------
_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family:sans-serif;text-align:center;margin-top:15vh">
<h1>{title}</h1><p>{text}</p></body></html>"""


@router.get("/success", response_class=HTMLResponse, include_in_schema=False)
async def checkout_success() -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(
            title="Payment received",
            text=f"Thank you! Return to Telegram: {settings.STORE_NAME} will confirm your order there.",
        )
    )


@router.get("/cancel", response_class=HTMLResponse, include_in_schema=False)
async def checkout_cancel() -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(
            title="Payment cancelled",
            text="No charge was made. You can pick a payment method again in your ticket.",
        )
    )


__all__ = ["router"]
