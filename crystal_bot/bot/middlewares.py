"""Middleware aiogram: логирование, защита от падений, журнал тикетов."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import Message, TelegramObject, Update

from ..core.database_core import lifespan_session
from ..core.errors_core import CrystalError, user_message
from ..core.logging_core import clear_request_context, get_logger, set_request_context
from ..services.tickets_service import record_message

logger = get_logger(__name__)

Handler = Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]]


def _user_of(update: Update) -> Any:
    if update.message:
        return update.message.from_user
    if update.callback_query:
        return update.callback_query.from_user
    return None


def user_tag(user: Any) -> str:
    if user is None:
        return "unknown"
    if getattr(user, "username", None):
        return f"@{user.username}"
    return user.full_name or str(user.id)


class LoggingMiddleware(BaseMiddleware):
    """Контекст корреляции (uid, rid=update_id) и строка лога на апдейт."""

    async def __call__(self, handler: Handler, event: TelegramObject, data: Dict[str, Any]) -> Any:
        user = _user_of(event) if isinstance(event, Update) else None
        set_request_context(
            request_id=f"tg-{event.update_id}" if isinstance(event, Update) else None,
            user_id=user.id if user else None,
        )
        logger.info("bot update", extra={"details": {"type": getattr(event, "event_type", None)}})
        try:
            return await handler(event, data)
        finally:
            clear_request_context()


class SafeMiddleware(BaseMiddleware):
    """
    Бот не падает из-за хэндлера: доменная ошибка → её текст пользователю,
    прочее → лог со stack trace и нейтральный ответ.
    """

    async def __call__(self, handler: Handler, event: TelegramObject, data: Dict[str, Any]) -> Any:
        try:
            return await handler(event, data)
        except CrystalError as exc:
            logger.info("bot domain error: %s", exc)
            await self._reply(event, user_message(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("bot handler crashed")
            await self._reply(event, user_message(exc))
        return None

    @staticmethod
    async def _reply(event: TelegramObject, text: str) -> None:
        if not isinstance(event, Update):
            return
        if event.callback_query is not None:
            await event.callback_query.answer(f"❌ {text}", show_alert=True)
        elif event.message is not None:
            await event.message.answer(f"❌ {text}")


class TranscriptMiddleware(BaseMiddleware):
    """Пишет текст сообщений покупателя в журнал открытого тикета (для транскрипта)."""

    async def __call__(self, handler: Handler, event: TelegramObject, data: Dict[str, Any]) -> Any:
        if isinstance(event, Message) and event.chat.type == "private" and event.from_user:
            text = event.text or event.caption
            if text:
                async with lifespan_session() as session:
                    await record_message(
                        session,
                        channel_id=str(event.chat.id),
                        author_id=event.from_user.id,
                        author_tag=user_tag(event.from_user),
                        text=text,
                    )
        return await handler(event, data)


__all__ = ["LoggingMiddleware", "SafeMiddleware", "TranscriptMiddleware", "user_tag"]
