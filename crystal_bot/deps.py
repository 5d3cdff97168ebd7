# -*- coding: utf-8 -*-
# crystal_bot/deps.py
# =============================================================================
# Crystal Store Bot - общие зависимости FastAPI: БД-сессия, фабрика сессий,
#                     платёжные провайдеры, уведомитель и админ-гейт.
# -----------------------------------------------------------------------------
# Канон:
#   • Провайдеры, чат-шлюз и уведомитель живут в app.state (их кладёт
#     create_app), тесты подменяют их фейками.
#   • Админ-API закрыт заголовком X-Admin-Api-Key; сравнение за постоянное
#     время. Без ADMIN_API_KEY админ-API выключено (403).
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру/валидацию.
# =============================================================================
from __future__ import annotations

from typing import AsyncGenerator, Mapping, Optional

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.database_core import get_session_factory, lifespan_session
from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.utils_core import safe_equals
from crystal_bot.integrations.providers import PaymentProvider
from crystal_bot.services.payments_service import PaidNotifierProtocol

logger = get_logger(__name__)
settings = get_settings()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Выдаёт AsyncSession для роутов.
    Коммит делает сервис (unit_of_work); закрытие - здесь.
    """
    async with lifespan_session() as session:
        yield session


def get_db_factory() -> async_sessionmaker[AsyncSession]:
    """Фабрика сессий: вебхуку нужна своя короткая сессия на подтверждение."""
    return get_session_factory()


def get_providers(request: Request) -> Mapping[str, PaymentProvider]:
    return getattr(request.app.state, "providers", None) or {}


def get_notifier(request: Request) -> Optional[PaidNotifierProtocol]:
    return getattr(request.app.state, "notifier", None)


async def require_admin_api_key(
    x_admin_api_key: Optional[str] = Header(default=None, alias="X-Admin-Api-Key"),
) -> None:
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is disabled")
    if not safe_equals(x_admin_api_key, expected):
        logger.warning("Admin API: invalid key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


__all__ = [
    "get_db",
    "get_db_factory",
    "get_providers",
    "get_notifier",
    "require_admin_api_key",
]
