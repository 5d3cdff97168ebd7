# -*- coding: utf-8 -*-
# crystal_bot/integrations/chat_gateway.py
# =============================================================================
# Назначение кода:
#   Шлюз к чат-платформе: отправка сообщений и документов в «канал» тикета,
#   в лог-каналы и в личку покупателю.
#
# Канон/инварианты:
#   • Канал тикета в Telegram - приватный чат покупателя с ботом,
#     channel_id = str(chat_id).
#   • Все методы best-effort: ошибка Telegram логируется и превращается в
#     False/None, наружу не пробрасывается. Денежная логика не зависит от
#     доставки уведомлений.
#
# Запреты:
#   • Никаких обращений к БД.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BufferedInputFile, FSInputFile, InlineKeyboardMarkup

from crystal_bot.core.logging_core import get_logger

logger = get_logger(__name__)

ChatId = Union[int, str]


@dataclass(frozen=True, slots=True)
class ChatUser:
    id: int
    tag: str


class ChatGateway(Protocol):
    async def send_message(
        self,
        channel_id: ChatId,
        text: str,
        *,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        ...

    async def send_document(
        self,
        channel_id: ChatId,
        *,
        path: Optional[Path] = None,
        content: Optional[bytes] = None,
        filename: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> bool:
        ...

    async def fetch_user(self, user_id: int) -> Optional[ChatUser]:
        ...

    async def create_private_channel(self, user_id: int) -> Optional[str]:
        ...


class TelegramChatGateway:
    """Реализация ChatGateway поверх aiogram.Bot."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send_message(
        self,
        channel_id: ChatId,
        text: str,
        *,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        try:
            await self.bot.send_message(chat_id=channel_id, text=text, reply_markup=reply_markup)
            return True
        except TelegramAPIError as exc:
            logger.warning(
                "Telegram send_message failed",
                extra={"details": {"chat_id": str(channel_id), "error": str(exc)}},
            )
            return False

    async def send_document(
        self,
        channel_id: ChatId,
        *,
        path: Optional[Path] = None,
        content: Optional[bytes] = None,
        filename: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> bool:
        if path is not None:
            document: Union[FSInputFile, BufferedInputFile] = FSInputFile(path, filename=filename)
        elif content is not None:
            document = BufferedInputFile(content, filename=filename or "document.txt")
        else:
            raise ValueError("send_document needs path or content")
        try:
            await self.bot.send_document(chat_id=channel_id, document=document, caption=caption)
            return True
        except (TelegramAPIError, OSError) as exc:
            logger.warning(
                "Telegram send_document failed",
                extra={"details": {"chat_id": str(channel_id), "error": str(exc)}},
            )
            return False

    async def fetch_user(self, user_id: int) -> Optional[ChatUser]:
        try:
            chat = await self.bot.get_chat(user_id)
        except TelegramAPIError as exc:
            logger.info("Telegram user %s not reachable: %s", user_id, exc)
            return None
        tag = f"@{chat.username}" if chat.username else (chat.full_name or str(user_id))
        return ChatUser(id=int(chat.id), tag=tag)

    async def create_private_channel(self, user_id: int) -> Optional[str]:
        # личный чат с ботом существует, только если пользователь нажал /start
        user = await self.fetch_user(user_id)
        return str(user.id) if user else None


__all__ = ["ChatId", "ChatUser", "ChatGateway", "TelegramChatGateway"]
