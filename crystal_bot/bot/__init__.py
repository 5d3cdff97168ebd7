"""Telegram-бот Crystal Store (aiogram v3)."""
