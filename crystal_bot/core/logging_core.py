# -*- coding: utf-8 -*-
# crystal_bot/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Централизованная настройка логирования Crystal Store Bot:
#   • формат и хэндлеры;
#   • контекст корреляции (request_id, order_id, user_id);
#   • защита от утечек секретов (токены, ключи провайдеров, подписи).
#
# Канон / инварианты:
#   • prod - JSON (python-json-logger), dev/local - человекочитаемый формат.
#   • Значимые операции сопровождаем полями: env, svc, rid, oid, uid.
#   • Логи не имеют права «ронять» приложение.
#
# Запреты:
#   • Никакого логирования секретов провайдеров и платёжных подписей.
#   • Никаких сетевых/блокирующих операций в форматерах/фильтрах.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from crystal_bot.core.config_core import get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Контекст корреляции (contextvars) - безопасно для асинхронного кода
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)  # request_id
_oid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "oid",
    default=None,
)  # order_id
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "uid",
    default=None,
)  # telegram user_id


def set_request_context(
    *,
    request_id: Optional[str] = None,
    order_id: Optional[str] = None,
    user_id: Optional[int | str] = None,
) -> None:
    """
    Присвоить контекст корреляции текущему асинхронному потоку.

    Вызывается middleware (HTTP и бот) и сервисом платежей, чтобы все логи
    обработки автоматически включали request_id / order_id / user_id.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if order_id is not None:
        _oid_var.set(str(order_id))
    if user_id is not None:
        _uid_var.set(str(user_id))


def clear_request_context() -> None:
    """Очистить контекст корреляции (после завершения запроса/апдейта)."""
    _rid_var.set(None)
    _oid_var.set(None)
    _uid_var.set(None)


# -----------------------------------------------------------------------------
# Фильтры логирования
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """Впрыскивает в запись env/svc и поля корреляции rid/oid/uid."""

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "oid"):
            record.oid = _oid_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Маскирует реальные значения секретов (взятые из настроек) в сообщении
    и аргументах записи.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "TELEGRAM_BOT_TOKEN",
        "DATABASE_URL",
        "CRYPTOMUS_API_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "TELEGRAM_WEBHOOK_SECRET",
        "ADMIN_API_KEY",
    )

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                self._secrets.append(val)

    def _redact_text(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        if isinstance(record.msg, str):
            record.msg = self._redact_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Человекочитаемый формат для local/dev-окружений.

    2026-01-01 12:00:00 | INFO     | crystal-bot | crystal_bot.x | rid=- oid=- uid=- | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s oid=%(oid)s uid=%(uid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class _StructuredJsonFormatter(JsonFormatter):
    """Переименовывает стандартные поля в короткие ключи агрегатора."""

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_record)
        out: Dict[str, Any] = {
            "time": base.pop("asctime", None),
            "level": base.pop("levelname", None),
            "service": base.pop("svc", None),
            "logger": base.pop("name", None),
            "env": base.pop("env", None),
            "rid": base.pop("rid", None),
            "oid": base.pop("oid", None),
            "uid": base.pop("uid", None),
            "msg": base.pop("message", None),
        }
        # extra-поля вызова (details, outcome, ...) сохраняем как есть
        out.update(base)
        return out


def _make_json_formatter() -> logging.Formatter:
    fmt = (
        "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s "
        "%(rid)s %(oid)s %(uid)s %(message)s"
    )
    return _StructuredJsonFormatter(fmt=fmt)


# -----------------------------------------------------------------------------
# Инициализация логирования
# -----------------------------------------------------------------------------
_configured = False


def setup_logging(force: bool = False) -> None:
    """
    Настраивает root-логгер: уровень, stdout-хэндлер, фильтры контекста
    и редактирования; uvicorn/aiogram-логгеры пробрасываются в root.
    Повторный вызов без force ничего не делает.
    """
    global _configured
    if _configured and not force:
        return

    settings = get_settings()
    env = settings.env_normalized
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json_effective:
        handler.setFormatter(_make_json_formatter())
    else:
        handler.setFormatter(DevFormatter())
    handler.addFilter(ContextFilter(env=env, service=settings.PROJECT_NAME))
    handler.addFilter(RedactingFilter(settings_obj=settings))
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "aiogram"):
        lib_logger = logging.getLogger(name)
        lib_logger.handlers.clear()
        lib_logger.setLevel(level)
        lib_logger.propagate = True

    if settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    _configured = True
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"details": {"env": env, "level": logging.getLevelName(level)}},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Получить логгер по имени и (опционально) привязать дополнительные поля
    через LoggerAdapter:

        log = get_logger(__name__, component="webhooks")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI-middleware для корреляции
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Берёт X-Request-ID из заголовков (или генерирует UUID4 hex), кладёт в
    contextvars и возвращает клиенту в ответе.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers: Dict[str, str] = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in (scope.get("headers") or [])
        }
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list = list(message.get("headers") or [])
                headers_list.append((b"x-request-id", rid.encode("utf-8")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


# Автоконфигурация при импорте
setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "CorrelationIdMiddleware",
    "RedactingFilter",
]
# =============================================================================
# Пояснения «для чайника»:
#   • В dev/local вы увидите читаемые строки; в prod - JSON с ключами
#     env/rid/oid/uid, удобными для поиска по заказу (oid).
#   • Секреты провайдеров в логах автоматически заменяются на "****".
# =============================================================================
