"""
===============================================================================
== Crystal Store Bot - bot.py (aiogram entrypoint)
-------------------------------------------------------------------------------
Назначение:
  • Сборка Telegram-бота магазина (aiogram v3): Bot, Dispatcher, middlewares,
    роутеры покупателя и админов.
  • Запуск через polling или Telegram-webhook (aiohttp) по настройкам.

Канон/инварианты:
  • Бот и HTTP-API работают в одном event loop (run.py) и делят один Bot:
    уведомления об оплате из вебхуков уходят через тот же TelegramChatGateway.
  • Платёжные провайдеры и чат-шлюз передаются хэндлерам через
    workflow_data диспетчера (providers, gateway).

ИИ-защиты/самовосстановление:
  • SafeMiddleware перехватывает исключения хэндлеров, бот не падает.
  • Если webhook не настроен, бот переключается на polling.

Запреты:
  • Нет денежной логики: цены, купоны и подтверждения живут в сервисах.
===============================================================================
"""

from __future__ import annotations

import asyncio
from typing import Mapping, Optional, Sequence

from aiogram import Bot, Dispatcher, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application
from aiohttp import web

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.logging_core import get_logger
from crystal_bot.integrations.chat_gateway import ChatGateway, TelegramChatGateway
from crystal_bot.integrations.providers import PaymentProvider

from .handlers import admin_handlers, coupon_handlers, start_handlers, ticket_handlers
from .middlewares import LoggingMiddleware, SafeMiddleware, TranscriptMiddleware

logger = get_logger(__name__)
settings = get_settings()


def _routers() -> Sequence[Router]:
    """Порядок важен: админ-команды и купоны раньше общего текста тикета."""

    return (
        start_handlers.router,
        admin_handlers.router,
        coupon_handlers.router,
        ticket_handlers.router,
    )


def create_bot() -> Bot:
    if not settings.TELEGRAM_BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN is not set")
    return Bot(
        token=settings.TELEGRAM_BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )


def build_dispatcher(
    *,
    gateway: ChatGateway,
    providers: Mapping[str, PaymentProvider],
) -> Dispatcher:
    """Dispatcher с памятью FSM, роутерами, middlewares и workflow_data."""

    dp = Dispatcher(storage=MemoryStorage())
    for router in _routers():
        dp.include_router(router)
    dp.update.outer_middleware(LoggingMiddleware())
    dp.update.middleware(SafeMiddleware())
    dp.message.outer_middleware(TranscriptMiddleware())
    dp["gateway"] = gateway
    dp["providers"] = dict(providers)
    return dp


def _bot_commands() -> Sequence[BotCommand]:
    return (
        BotCommand(command="start", description="Ticket panel"),
        BotCommand(command="coupon", description="Apply a coupon: /coupon CODE"),
        BotCommand(command="help", description="How to order"),
    )


async def _start_polling(bot: Bot, dp: Dispatcher) -> None:
    """Polling; вебхук удаляется заранее, чтобы не было двойной доставки."""

    await bot.delete_webhook(drop_pending_updates=False)
    await bot.set_my_commands(list(_bot_commands()))
    logger.info("Starting bot polling")
    await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types(), handle_signals=False)


async def _start_webhook(bot: Bot, dp: Dispatcher) -> None:
    """aiohttp-сервер для Telegram-вебхука на BOT_WEBHOOK_PORT."""

    webhook_url = settings.build_tg_webhook_url()
    if not webhook_url:
        logger.warning("Telegram webhook not configured; falling back to polling")
        await _start_polling(bot, dp)
        return

    secret = settings.TELEGRAM_WEBHOOK_SECRET or None
    await bot.set_webhook(url=webhook_url, secret_token=secret, allowed_updates=dp.resolve_used_update_types())
    await bot.set_my_commands(list(_bot_commands()))

    app = web.Application()
    SimpleRequestHandler(dispatcher=dp, bot=bot, secret_token=secret).register(
        app, path=settings.TELEGRAM_WEBHOOK_PATH
    )
    setup_application(app, dp, bot=bot)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=settings.APP_HOST, port=settings.BOT_WEBHOOK_PORT)
    logger.info("Starting bot webhook server", extra={"details": {"port": settings.BOT_WEBHOOK_PORT}})
    await site.start()
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


async def run_bot(
    bot: Bot,
    *,
    providers: Mapping[str, PaymentProvider],
    gateway: Optional[ChatGateway] = None,
) -> None:
    """Запуск бота в текущем event loop (вызывает run.py)."""

    dp = build_dispatcher(gateway=gateway or TelegramChatGateway(bot), providers=providers)
    if settings.TELEGRAM_WEBHOOK_ENABLED:
        await _start_webhook(bot, dp)
    else:
        await _start_polling(bot, dp)


__all__ = ["create_bot", "build_dispatcher", "run_bot"]

# ===========================================================================
# Пояснения «для чайника»:
#   • Этот файл настраивает aiogram-бот: токен, middlewares, роутеры,
#     webhook/polling. Денег не считает и в БД напрямую не пишет.
#   • Owner/админы управляют купонами и тикетами командами из личного чата
#     с ботом: /coupon_add, /coupons, /dn <id>, /close <id>, /reply <id>.
# ===========================================================================
