# ==============================================================================
# Crystal Store Bot - FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение магазина: вебхуки
# платёжных провайдеров, страницы возврата Stripe, админ-API и /health.
#
# Канон/инварианты:
#   • Вебхуки провайдеров всегда получают 200-ack (WebhookAckMiddleware +
#     обработка в роутах).
#   • Платёжные провайдеры, чат-шлюз и уведомитель об оплате кладутся в
#     app.state; тесты передают свои фейки аргументами create_app().
#   • create_app() можно вызывать многократно: каждый вызов - новое
#     независимое приложение.
#
# Запреты:
#   • Не запускает бота и не создаёт таблицы - это делает run.py/Alembic.
# ==============================================================================
from __future__ import annotations

from typing import Mapping, Optional

from fastapi import FastAPI

from .core.config_core import get_settings
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .core.system_locks import init_system_locks
from .integrations.chat_gateway import ChatGateway
from .integrations.cryptomus_api import CryptomusClient
from .integrations.providers import PaymentProvider
from .integrations.stripe_api import StripeCheckoutClient
from .routes import register
from .services.orders_service import PAYMENT_METHOD_CRYPTO, PAYMENT_METHOD_STRIPE
from .services.payments_service import PaidNotifier, PaidNotifierProtocol

logger = get_logger(__name__)


def default_providers() -> dict[str, PaymentProvider]:
    """Провайдеры, для которых заданы ключи в окружении."""
    settings = get_settings()
    providers: dict[str, PaymentProvider] = {}
    if settings.cryptomus_enabled:
        providers[PAYMENT_METHOD_CRYPTO] = CryptomusClient()
    if settings.stripe_enabled:
        providers[PAYMENT_METHOD_STRIPE] = StripeCheckoutClient()
    return providers


def create_app(
    *,
    chat_gateway: Optional[ChatGateway] = None,
    providers: Optional[Mapping[str, PaymentProvider]] = None,
    notifier: Optional[PaidNotifierProtocol] = None,
) -> FastAPI:
    """Создать FastAPI-приложение с middleware, обработчиками ошибок и роутерами."""

    settings = get_settings()
    app = FastAPI(title=settings.STORE_NAME, version=settings.APP_VERSION)

    app.state.chat_gateway = chat_gateway
    app.state.providers = dict(providers) if providers is not None else default_providers()
    if notifier is None and chat_gateway is not None:
        notifier = PaidNotifier(chat_gateway)
    app.state.notifier = notifier

    setup_exception_handlers(app)
    init_system_locks(app)
    app.add_middleware(CorrelationIdMiddleware)
    register(app)

    logger.info(
        "FastAPI app initialised",
        extra={"details": {"providers": sorted(app.state.providers), "notifier": notifier is not None}},
    )
    return app


__all__ = ["create_app", "default_providers"]

# ==============================================================================
# Пояснения «для чайника»:
#   • Этот модуль ничего не пишет в БД - только собирает API.
#   • Без BOT_TOKEN чат-шлюза нет: оплаты подтверждаются, но уведомления
#     об оплате не отправляются (это видно в логе при старте).
# ==============================================================================
