"""Application entry point for Crystal Store Bot.

HTTP-API (вебхуки провайдеров, админ-API, /health) и Telegram-бот работают
в одном event loop и делят один aiogram.Bot.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import uvicorn

from crystal_bot import create_app, default_providers
from crystal_bot.core import boot_core, get_settings
from crystal_bot.core.database_core import create_all, dispose_engine, init_engine
from crystal_bot.core.logging_core import get_logger
from crystal_bot.integrations.chat_gateway import TelegramChatGateway

logger = get_logger(__name__)


async def _serve() -> None:
    settings = get_settings()
    boot_core()
    init_engine()
    if not settings.is_prod:
        # В prod схему ведёт Alembic (alembic upgrade head).
        await create_all()

    bot = None
    gateway: Optional[TelegramChatGateway] = None
    if settings.TELEGRAM_BOT_TOKEN:
        from crystal_bot.bot.bot import create_bot

        bot = create_bot()
        gateway = TelegramChatGateway(bot)

    providers = default_providers()
    app = create_app(chat_gateway=gateway, providers=providers)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.APP_HOST, port=settings.APP_PORT, log_config=None)
    )

    tasks = [server.serve()]
    if bot is not None:
        from crystal_bot.bot.bot import run_bot

        tasks.append(run_bot(bot, providers=providers, gateway=gateway))
    try:
        await asyncio.gather(*tasks)
    finally:
        if bot is not None:
            await bot.session.close()
        await dispose_engine()
        logger.info("Crystal Store Bot stopped")


def main() -> None:
    """Run the HTTP server and the Telegram bot."""

    asyncio.run(_serve())


if __name__ == "__main__":
    main()
