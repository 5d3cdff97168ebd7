# -*- coding: utf-8 -*-
# crystal_bot/integrations/stripe_api.py
# =============================================================================
# Назначение кода:
#   Клиент Stripe Checkout для Crystal Store Bot:
#     • создание Checkout Session (mode=payment, USD, одна позиция);
#     • разбор и проверка подписи вебхука (Stripe-Signature).
#
# Канон/инварианты:
#   • metadata.orderId - единственная связь сессии с заказом.
#   • Синхронный SDK stripe вызывается в рабочем потоке (asyncio.to_thread),
#     event loop бота/API не блокируется.
#   • Подпись вебхука проверяет stripe.Webhook.construct_event, если задан
#     STRIPE_WEBHOOK_SECRET; без секрета тело принимается как есть (warning).
#
# Запреты:
#   • Модуль не меняет заказы и не логирует ключи/подписи.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.errors_core import ProviderError
from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.utils_core import to_cents
from crystal_bot.integrations.providers import PaymentLink

logger = get_logger(__name__)
settings = get_settings()

PROVIDER_NAME = "stripe"
CHECKOUT_COMPLETED = "checkout.session.completed"


class StripeWebhookError(ValueError):
    """Тело вебхука не прошло проверку подписи или не является JSON."""


def _as_dict(obj: Any) -> Dict[str, Any]:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeCheckoutClient:
    """Обёртка над stripe.checkout.Session с ключом из настроек."""

    name = PROVIDER_NAME

    def __init__(
        self,
        *,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ) -> None:
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY or ""
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def _create_session(self, order_id: str, amount: Decimal, description: str) -> Any:
        return stripe.checkout.Session.create(
            api_key=self.secret_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {"name": description},
                        "unit_amount": to_cents(amount),
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{self.public_base_url}/success?order={order_id}",
            cancel_url=f"{self.public_base_url}/cancel?order={order_id}",
            metadata={"orderId": order_id},
        )

    async def request_payment_link(
        self,
        order_id: str,
        amount: Decimal,
        description: str,
        callback_url: Optional[str] = None,
    ) -> PaymentLink:
        """
        Создаёт Checkout Session. callback_url не используется: Stripe шлёт
        вебхуки на endpoint, настроенный в дашборде.
        """
        if not self.secret_key:
            raise ProviderError("Card payments are not configured.", provider=self.name)
        try:
            session = await asyncio.to_thread(self._create_session, order_id, amount, description)
        except stripe.StripeError as exc:
            logger.warning(
                "[Stripe] checkout failed",
                extra={"details": {"order_id": order_id, "error": type(exc).__name__}},
            )
            raise ProviderError("Card payment provider rejected the checkout.", provider=self.name) from exc

        url = getattr(session, "url", None)
        if not url:
            raise ProviderError("Card payment provider returned no checkout URL.", provider=self.name)
        logger.info("[Stripe] checkout created", extra={"details": {"order_id": order_id}})
        return PaymentLink(external_url=str(url), transaction_id=getattr(session, "id", None))

    def parse_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Проверяет подпись и возвращает событие как dict.
        Исключения: StripeWebhookError (подпись/JSON).
        """
        if self.webhook_secret:
            try:
                event = stripe.Webhook.construct_event(raw_body, signature or "", self.webhook_secret)
            except stripe.SignatureVerificationError as exc:
                raise StripeWebhookError("Invalid Stripe signature") from exc
            except ValueError as exc:
                raise StripeWebhookError("Malformed Stripe payload") from exc
            return _as_dict(event)

        logger.warning("Stripe webhook accepted without signature check")
        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise StripeWebhookError("Malformed Stripe payload") from exc
        if not isinstance(event, dict):
            raise StripeWebhookError("Malformed Stripe payload")
        return event


__all__ = [
    "PROVIDER_NAME",
    "CHECKOUT_COMPLETED",
    "StripeWebhookError",
    "StripeCheckoutClient",
]
