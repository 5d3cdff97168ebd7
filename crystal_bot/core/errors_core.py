# -*- coding: utf-8 -*-
# crystal_bot/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой доменных ошибок Crystal Store Bot.
#   • Стабильные коды ошибок для бота, админ-API и логов.
#   • Унифицированные JSON-ответы для FastAPI.
#
# Канон / инварианты:
#   • Сервисы бросают ТОЛЬКО доменные исключения из этого модуля
#     (или LockViolation из system_locks).
#   • ValidationError - ошибка ввода (сообщение показывается как есть).
#   • NotFoundError - мягкое «не найдено», никогда не падение.
#   • ProviderError - платёжный провайдер не выдал ссылку; заказ остаётся
#     pending без платёжной ссылки.
#   • PersistenceError - хранилище недоступно; НИКОГДА не глушится.
#   • Клиенту не утекают технические детали (stack trace, DSN, ключи).
#
# Запреты:
#   • Никакой бизнес-логики здесь.
#   • Вебхуки провайдеров НЕ используют эти хендлеры для ответа: там всегда
#     200-ack (см. system_locks.WebhookAckMiddleware и routes/webhook_routes).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.system_locks import LockViolation

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class CrystalError(Exception):
    """
    Базовое доменное исключение.

    Поля:
      • code         - стабильный машинный код ошибки (snake_case).
      • message      - короткое безопасное сообщение для пользователя.
      • http_status  - HTTP код по умолчанию.
      • details      - безопасные детали (без секретов), опционально.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Таксономия доменных ошибок
# -----------------------------------------------------------------------------
class ValidationError(CrystalError):
    """Некорректное определение купона или иной пользовательский ввод."""

    def __init__(
        self,
        message: str = "Invalid data.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="validation_error",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class NotFoundError(CrystalError):
    """Неизвестный заказ/купон/товар/тикет."""

    def __init__(
        self,
        message: str = "Not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class ProviderError(CrystalError):
    """Платёжный провайдер вернул ошибку или нечитаемый ответ."""

    def __init__(
        self,
        message: str = "Payment provider error.",
        *,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if provider:
            merged.setdefault("provider", provider)
        super().__init__(
            code="provider_error",
            message=message,
            http_status=status.HTTP_502_BAD_GATEWAY,
            details=merged,
        )


class PersistenceError(CrystalError):
    """Хранилище недоступно или транзакция не зафиксирована."""

    def __init__(
        self,
        message: str = "Storage unavailable.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="persistence_error",
            message=message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

      • CrystalError   → свой http_status + to_payload().
      • LockViolation  → 500 + {"error": "lock_violation"} (нарушен инвариант).
      • HTTPException  → status_code + {"error": "http_error", ...}.
      • Любая другая   → 500 + {"error": "internal_error"} без деталей.
    """
    if isinstance(exc, CrystalError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, LockViolation):
        logger.error("LockViolation occurred: %s", str(exc))
        return (
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"error": "lock_violation", "message": "Invariant violated."},
        )

    if isinstance(exc, HTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
        payload: Dict[str, Any] = {"error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.exception("Unhandled exception", extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "internal_error", "message": "Internal server error."},
    )


def user_message(exc: BaseException) -> str:
    """Короткий текст для ответа в чате (без технических деталей)."""
    if isinstance(exc, CrystalError):
        return exc.message
    return "Something went wrong. Please try again later."


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def crystal_error_handler(request: Request, exc: CrystalError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "CrystalError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content={"ok": False, **payload})


async def lock_violation_handler(request: Request, exc: LockViolation) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(status_code=status_code, content={"ok": False, **payload})


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Клиенту отдаём только безопасный internal_error, stack trace - в лог."""
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={"path": request.url.path, "exc_type": type(exc).__name__},
    )
    return JSONResponse(status_code=status_code, content={"ok": False, **payload})


def setup_exception_handlers(app: FastAPI) -> None:
    """Подключает обработчики; вызывать один раз в create_app()."""
    app.add_exception_handler(CrystalError, crystal_error_handler)
    app.add_exception_handler(LockViolation, lock_violation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered")


__all__ = [
    "CrystalError",
    "ValidationError",
    "NotFoundError",
    "ProviderError",
    "PersistenceError",
    "normalize_exception",
    "user_message",
    "setup_exception_handlers",
]
