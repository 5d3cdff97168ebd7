# -*- coding: utf-8 -*-
# crystal_bot/core/system_locks.py
# =============================================================================
# Назначение кода:
#   «Замки» инвариантов Crystal Store Bot - проверки, которые сервисы вызывают
#   перед записью, и middleware страховки вебхуков провайдеров:
#   • арифметика цены: total == original - discount, 0 <= total <= original;
#   • статус заказа меняется только pending → paid;
#   • вебхук провайдера ВСЕГДА получает 2xx-ack, даже при падении обработчика.
#
# Канон / инварианты:
#   • Денежные значения - Decimal с 2 знаками (Q2).
#   • paid - терминальный статус в рамках этого сервиса.
#   • Ответ провайдеру не зависит от успеха уведомлений/инвойса:
#     иначе провайдер начнёт ретраить уже принятое событие.
#
# Запреты:
#   • Здесь нет бизнес-логики заказов. Только проверки и middleware.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Tuple

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()

Q2 = Decimal("0.01")

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"
ORDER_STATUSES: Tuple[str, ...] = (ORDER_STATUS_PENDING, ORDER_STATUS_PAID)

_ALLOWED_TRANSITIONS = {(ORDER_STATUS_PENDING, ORDER_STATUS_PAID)}


class LockViolation(RuntimeError):
    """
    Нарушение инварианта проекта (ошибка кода, а не пользователя).
    Логируется верхним слоем и никогда не показывается покупателю как есть.
    """


# -----------------------------------------------------------------------------
# Публичные проверки - импортируются сервисами
# -----------------------------------------------------------------------------
def assert_pricing_consistent(
    original: Decimal,
    discount: Decimal,
    total: Decimal,
) -> None:
    """total == original - discount и 0 <= total <= original (всё в Q2)."""
    if original < 0:
        raise LockViolation(f"Отрицательная базовая цена: {original}")
    if discount < 0:
        raise LockViolation(f"Отрицательная скидка: {discount}")
    if total != original - discount:
        raise LockViolation(
            f"Цена не сходится: {original} - {discount} != {total}",
        )
    if total < 0 or total > original:
        raise LockViolation(f"Итог вне диапазона [0, {original}]: {total}")
    for value in (original, discount, total):
        if value != value.quantize(Q2):
            raise LockViolation(f"Сумма не округлена до центов: {value}")


def assert_status_transition(current: str, new: str) -> None:
    """Единственный допустимый переход - pending → paid."""
    if current not in ORDER_STATUSES or new not in ORDER_STATUSES:
        raise LockViolation(f"Неизвестный статус заказа: {current!r} → {new!r}")
    if (current, new) not in _ALLOWED_TRANSITIONS:
        raise LockViolation(f"Запрещённый переход статуса: {current} → {new}")


# -----------------------------------------------------------------------------
# Страховка вебхуков провайдеров
# -----------------------------------------------------------------------------
class WebhookAckMiddleware(BaseHTTPMiddleware):
    """
    Если обработчик вебхука провайдера упал с исключением, провайдер всё равно
    получает 200 {"ok": true, "status": "error"}; исключение уходит в лог.
    Провайдеры ретраят не-2xx ответы, а заказ при этом уже мог быть оплачен.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        path_prefixes: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(app)
        self.prefixes = tuple(path_prefixes or ("/webhook",))

    async def dispatch(  # type: ignore[override]
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Any:
        path = request.url.path or "/"
        if request.method != "POST" or not path.startswith(self.prefixes):
            return await call_next(request)
        try:
            return await call_next(request)
        except Exception:  # noqa: BLE001
            logger.exception("Webhook handler crashed, acknowledging", extra={"path": path})
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content={"ok": True, "status": "error"},
            )


def init_system_locks(app: Any) -> None:
    """
    Подключает страховочный middleware и пишет предупреждения о
    непроверяемых вебхуках. Вызывать один раз в create_app().
    """
    app.add_middleware(WebhookAckMiddleware)
    logger.info("SystemLocks: WebhookAckMiddleware installed.")

    if settings.cryptomus_enabled and not settings.CRYPTOMUS_API_KEY:
        logger.warning("Cryptomus webhooks are accepted without signature check")
    if settings.stripe_enabled and not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("Stripe webhooks are accepted without signature check")


__all__ = [
    "Q2",
    "ORDER_STATUS_PENDING",
    "ORDER_STATUS_PAID",
    "ORDER_STATUSES",
    "LockViolation",
    "assert_pricing_consistent",
    "assert_status_transition",
    "WebhookAckMiddleware",
    "init_system_locks",
]

# =============================================================================
# Пояснения «для чайника»:
#   • Сервис цены вызывает assert_pricing_consistent(...) перед тем как
#     положить заказ в БД; если арифметика не сошлась - это баг, а не ввод
#     пользователя, поэтому LockViolation, а не ValidationError.
#   • Вебхуки: даже если внутри что-то упало, провайдер получит 200, а мы -
#     полный stack trace в логах.
# =============================================================================
