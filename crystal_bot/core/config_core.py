# -*- coding: utf-8 -*-
# crystal_bot/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль Crystal Store Bot
#     (FastAPI + aiogram + SQLAlchemy async).
#   • Канонический источник всех настроек: магазин, Telegram, БД,
#     платёжные провайдеры (Cryptomus, Stripe), инвойсы, таймауты.
#
# Канон / инварианты:
#   1) Валюта магазина одна - USD. Мультивалютности нет.
#   2) Деньги считаются только в Decimal (2 знака, ROUND_HALF_UP на финале).
#   3) Секреты (BOT_TOKEN, ключи провайдеров) берутся только из ENV/.env.
#   4) Принудительное закрытие неоплаченного тикета требует
#      FORCE_CLOSE_CONFIRMATIONS подтверждений (по умолчанию 2).
#
# ИИ-защита / самодиагностика:
#   • initialize_runtime() проверяет DSN, создаёт каталог инвойсов и выводит
#     предупреждения по отсутствующим секретам провайдеров.
#   • debug_dump() никогда не раскрывает значения секретов.
# =============================================================================

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Вспомогательные утилиты (локальные, без сетевых вызовов)
# =============================================================================


def _parse_csv(value: object) -> List[str]:
    """Преобразует CSV-строку 'a,b,c' в ['a', 'b', 'c'] (пробелы обрезаются)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


# =============================================================================
# Док-описания полей
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя сервиса (логи, /health)."
    STORE_NAME = "Название магазина (тексты бота, инвойсы)."
    ENV = "Окружение: production/dev/local (нормализуется в prod/dev/local)."
    DEBUG = "Расширенные логи и трассировки (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт HTTP-сервера (вебхуки провайдеров, /health)."

    # БД
    DATABASE_URL = (
        "DSN базы. postgres:// приводится к postgresql+asyncpg://, "
        "sqlite:// к sqlite+aiosqlite://."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике."
    DB_ECHO = "Эхо SQL-запросов в лог."

    # Telegram
    TELEGRAM_BOT_TOKEN = "Токен бота (env: BOT_TOKEN)."
    OWNER_ID = "Telegram-ID владельца (упоминается в уведомлениях об оплате)."
    ADMIN_IDS = "Дополнительные админы (CSV Telegram-ID)."
    LOG_CHANNEL_ID = "Чат для логов заказов (сводка при выдаче)."
    LOG_TRANSCRIPT_CHANNEL_ID = "Чат для транскриптов закрытых тикетов."
    TELEGRAM_WEBHOOK_ENABLED = "Включить Telegram webhook (иначе polling)."
    TELEGRAM_WEBHOOK_BASE_URL = "Публичный базовый URL Telegram webhook."
    TELEGRAM_WEBHOOK_PATH = "Путь Telegram webhook (например, /tg/webhook)."
    TELEGRAM_WEBHOOK_SECRET = "Секрет заголовка x-telegram-bot-api-secret-token."
    BOT_WEBHOOK_PORT = "Порт aiohttp-сервера Telegram webhook."

    # Платежи
    PUBLIC_BASE_URL = "Публичный URL сервиса (callback/success/cancel)."
    CRYPTOMUS_MERCHANT_UUID = "UUID мерчанта Cryptomus."
    CRYPTOMUS_API_KEY = "Платёжный API-ключ Cryptomus (подпись запросов)."
    CRYPTOMUS_API_URL = "Базовый URL API Cryptomus."
    CRYPTOMUS_INVOICE_LIFETIME_SEC = "Время жизни счёта Cryptomus (сек)."
    STRIPE_SECRET_KEY = "Секретный ключ Stripe."
    STRIPE_WEBHOOK_SECRET = "Секрет подписи вебхуков Stripe (whsec_...)."

    # Магазин
    PRODUCTS_FILE = "JSON-файл каталога товаров."
    INVOICES_DIR = "Каталог для PDF-инвойсов."
    FORCE_CLOSE_CONFIRMATIONS = "Сколько раз подтвердить выдачу неоплаченного."
    TRANSCRIPT_MAX_MESSAGES = "Максимум сообщений в транскрипте тикета."

    # Таймауты / безопасность
    HTTP_TIMEOUT_SEC = "Таймаут запросов к платёжным провайдерам (сек)."
    DOWNSTREAM_TIMEOUT_SEC = "Таймаут уведомлений/рендера инвойса (сек)."
    ADMIN_API_KEY = "Ключ админ-API (заголовок X-Admin-Api-Key)."

    # Logging
    LOG_LEVEL = "Уровень логирования (INFO/DEBUG/WARNING/ERROR)."
    LOG_JSON = "Лог в JSON (true/false); по умолчанию JSON только в prod."


# =============================================================================
# Настройки приложения (единственный источник истины)
# =============================================================================


class Settings(BaseSettings):
    """
    Контейнер переменных окружения Crystal Store Bot.

    Важное:
      • Секреты берём только из ENV - в код не шьём.
      • Провайдер считается включённым, только если заданы его ключи.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("crystal-bot", description=_Doc.PROJECT_NAME)
    STORE_NAME: str = Field("Crystal Store", description=_Doc.STORE_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)
    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(20180, description=_Doc.APP_PORT)

    # --------------------------------- БАЗА ----------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)
    DB_ECHO: bool = Field(False, description=_Doc.DB_ECHO)

    # ------------------------------- TELEGRAM --------------------------------
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("TELEGRAM_BOT_TOKEN", "BOT_TOKEN"),
        description=_Doc.TELEGRAM_BOT_TOKEN,
    )
    OWNER_ID: Optional[int] = Field(None, description=_Doc.OWNER_ID)
    ADMIN_IDS: str = Field("", description=_Doc.ADMIN_IDS)
    LOG_CHANNEL_ID: Optional[str] = Field(None, description=_Doc.LOG_CHANNEL_ID)
    LOG_TRANSCRIPT_CHANNEL_ID: Optional[str] = Field(
        None,
        description=_Doc.LOG_TRANSCRIPT_CHANNEL_ID,
    )

    TELEGRAM_WEBHOOK_ENABLED: bool = Field(
        False,
        description=_Doc.TELEGRAM_WEBHOOK_ENABLED,
    )
    TELEGRAM_WEBHOOK_BASE_URL: Optional[str] = Field(
        None,
        description=_Doc.TELEGRAM_WEBHOOK_BASE_URL,
    )
    TELEGRAM_WEBHOOK_PATH: str = Field(
        "/tg/webhook",
        description=_Doc.TELEGRAM_WEBHOOK_PATH,
    )
    TELEGRAM_WEBHOOK_SECRET: Optional[str] = Field(
        None,
        description=_Doc.TELEGRAM_WEBHOOK_SECRET,
    )
    BOT_WEBHOOK_PORT: int = Field(8081, description=_Doc.BOT_WEBHOOK_PORT)

    # ------------------------------- ПЛАТЕЖИ ---------------------------------
    PUBLIC_BASE_URL: str = Field(
        "http://localhost:20180",
        description=_Doc.PUBLIC_BASE_URL,
    )
    CRYPTOMUS_MERCHANT_UUID: Optional[str] = Field(
        None,
        description=_Doc.CRYPTOMUS_MERCHANT_UUID,
    )
    CRYPTOMUS_API_KEY: Optional[str] = Field(
        None,
        description=_Doc.CRYPTOMUS_API_KEY,
    )
    CRYPTOMUS_API_URL: str = Field(
        "https://api.cryptomus.com",
        description=_Doc.CRYPTOMUS_API_URL,
    )
    CRYPTOMUS_INVOICE_LIFETIME_SEC: int = Field(
        3600,
        description=_Doc.CRYPTOMUS_INVOICE_LIFETIME_SEC,
    )
    STRIPE_SECRET_KEY: Optional[str] = Field(
        None,
        description=_Doc.STRIPE_SECRET_KEY,
    )
    STRIPE_WEBHOOK_SECRET: Optional[str] = Field(
        None,
        description=_Doc.STRIPE_WEBHOOK_SECRET,
    )

    # -------------------------------- МАГАЗИН --------------------------------
    PRODUCTS_FILE: str = Field("products.json", description=_Doc.PRODUCTS_FILE)
    INVOICES_DIR: str = Field("invoices", description=_Doc.INVOICES_DIR)
    FORCE_CLOSE_CONFIRMATIONS: int = Field(
        2,
        description=_Doc.FORCE_CLOSE_CONFIRMATIONS,
    )
    TRANSCRIPT_MAX_MESSAGES: int = Field(
        2000,
        description=_Doc.TRANSCRIPT_MAX_MESSAGES,
    )

    # ------------------------- ТАЙМАУТЫ / БЕЗОПАСНОСТЬ -----------------------
    HTTP_TIMEOUT_SEC: float = Field(20.0, description=_Doc.HTTP_TIMEOUT_SEC)
    DOWNSTREAM_TIMEOUT_SEC: float = Field(
        15.0,
        description=_Doc.DOWNSTREAM_TIMEOUT_SEC,
    )
    ADMIN_API_KEY: Optional[str] = Field(None, description=_Doc.ADMIN_API_KEY)

    # -------------------------------- LOGGING --------------------------------
    LOG_LEVEL: str = Field("INFO", description=_Doc.LOG_LEVEL)
    LOG_JSON: Optional[bool] = Field(None, description=_Doc.LOG_JSON)

    # =========================== ВАЛИДАТОРЫ (ИИ-защита) ======================

    @field_validator("FORCE_CLOSE_CONFIRMATIONS")
    @classmethod
    def _v_force_close(cls, value: int) -> int:
        """Меньше одного подтверждения не бывает: 0 превратил бы /dn в «молча»."""
        if value < 1:
            raise ValueError("FORCE_CLOSE_CONFIRMATIONS должен быть >= 1")
        return value

    @field_validator("PUBLIC_BASE_URL")
    @classmethod
    def _v_public_base_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("LOG_LEVEL")
    @classmethod
    def _v_log_level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Неизвестный LOG_LEVEL: {value}")
        return level

    # =========================== Удобные свойства/методы =====================

    # ---- ENV флаги ----
    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc") or value.startswith("test"):
            return "local"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    @property
    def log_json_effective(self) -> bool:
        if self.LOG_JSON is not None:
            return bool(self.LOG_JSON)
        return self.is_prod

    # ---- Админы ----
    @property
    def admin_ids(self) -> List[int]:
        """OWNER_ID + ADMIN_IDS без повторов."""
        out: List[int] = []
        if self.OWNER_ID:
            out.append(int(self.OWNER_ID))
        for raw in _parse_csv(self.ADMIN_IDS):
            try:
                uid = int(raw)
            except ValueError:
                continue
            if uid not in out:
                out.append(uid)
        return out

    def is_admin(self, user_id: Optional[int]) -> bool:
        return user_id is not None and int(user_id) in self.admin_ids

    # ---- Провайдеры ----
    @property
    def cryptomus_enabled(self) -> bool:
        return bool(self.CRYPTOMUS_MERCHANT_UUID and self.CRYPTOMUS_API_KEY)

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    def callback_url(self, path: str) -> str:
        """Абсолютный URL на нашем публичном хосте: PUBLIC_BASE_URL + path."""
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.PUBLIC_BASE_URL}{path}"

    # ---- Telegram webhook ----
    def build_tg_webhook_url(self) -> Optional[str]:
        """Формирует URL вебхука: <TELEGRAM_WEBHOOK_BASE_URL><TELEGRAM_WEBHOOK_PATH>."""
        if not self.TELEGRAM_WEBHOOK_ENABLED or not self.TELEGRAM_WEBHOOK_BASE_URL:
            return None
        base = self.TELEGRAM_WEBHOOK_BASE_URL.rstrip("/")
        path = (self.TELEGRAM_WEBHOOK_PATH or "/tg/webhook").strip()
        if not path.startswith("/"):
            path = "/" + path
        return f"{base}{path}"

    # ---- База данных / DSN ----
    def database_url_async(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии драйвера;
          sqlite://     → sqlite+aiosqlite://.
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL не задан.")
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # ---- Файлы ----
    @property
    def invoices_path(self) -> Path:
        return Path(self.INVOICES_DIR)

    # ---- Health/диагностика ----
    def assert_required_secrets(self) -> None:
        """
        Мягкая самодиагностика критичных секретов.
        Печатает WARN, но не падает: логирование ещё не поднято.
        """
        if not self.TELEGRAM_BOT_TOKEN:
            print("[WARN] BOT_TOKEN не задан - Telegram-бот не стартует.")
        if not self.DATABASE_URL:
            print("[WARN] DATABASE_URL не задан - БД будет недоступна.")
        if not self.cryptomus_enabled:
            print("[WARN] Cryptomus не настроен - оплата криптой недоступна.")
        elif not self.CRYPTOMUS_API_KEY:
            print("[WARN] CRYPTOMUS_API_KEY пуст - вебхуки не проверяются.")
        if not self.stripe_enabled:
            print("[WARN] STRIPE_SECRET_KEY не задан - оплата картой недоступна.")
        elif not self.STRIPE_WEBHOOK_SECRET:
            print("[WARN] STRIPE_WEBHOOK_SECRET не задан - подпись не проверяется.")

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "storeName": self.STORE_NAME,
            "version": self.APP_VERSION,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "botTokenSet": "yes" if bool(self.TELEGRAM_BOT_TOKEN) else "no",
            "cryptomusEnabled": str(self.cryptomus_enabled),
            "stripeEnabled": str(self.stripe_enabled),
            "stripeWebhookSigned": "yes" if self.STRIPE_WEBHOOK_SECRET else "no",
            "tgWebhookEnabled": str(self.TELEGRAM_WEBHOOK_ENABLED),
            "publicBaseUrl": self.PUBLIC_BASE_URL,
        }

    # ---- Инициализация рантайма ----
    def initialize_runtime(self) -> None:
        """
        Единая точка инициализации конфигурации при старте приложения:
          • проверка/приведение DSN к async-формату;
          • каталог инвойсов;
          • мягкая самодиагностика секретов.
        """
        if self.DATABASE_URL:
            _ = self.database_url_async()
        self.invoices_path.mkdir(parents=True, exist_ok=True)
        self.assert_required_secrets()


# =============================================================================
# Синглтон настроек для всего приложения
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings, выполняя initialize_runtime()."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


# Удобный глобальный экспорт:
# from crystal_bot.core.config_core import settings
settings: Settings = get_settings()

__all__ = ["Settings", "get_settings", "settings"]
