# -*- coding: utf-8 -*-
# crystal_bot/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/SQLAlchemy.
#   • Денежные Decimal-хелперы (USD, 2 знака, ROUND_HALF_UP).
#   • Время, идентификаторы заказов, номера инвойсов.
#
# Канон:
#   • Округление денег только здесь: money() = quantize(0.01, ROUND_HALF_UP).
#     Для положительных сумм это «half away from zero».
#   • Все функции чистые: без сетевых вызовов и побочных эффектов.
# =============================================================================

from __future__ import annotations

import hmac
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

NumberLike = Union[str, int, float, Decimal]

CENT = Decimal("0.01")


# -----------------------------------------------------------------------------
# Decimal helpers
# -----------------------------------------------------------------------------
def decimal_from(value: NumberLike) -> Decimal:
    """
    Приводит значение к Decimal; float - через str(), чтобы не тащить
    бинарные артефакты (0.1 + 0.2).
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a number")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(str(value).strip())


def parse_decimal(value: object) -> Optional[Decimal]:
    """Мягкий разбор пользовательского ввода; None для мусора/NaN/inf."""
    try:
        d = decimal_from(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not d.is_finite():
        return None
    return d


def money(value: NumberLike) -> Decimal:
    """Округление суммы до центов (ROUND_HALF_UP)."""
    return decimal_from(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    if value < low:
        return low
    if value > high:
        return high
    return value


def format_usd(value: NumberLike) -> str:
    """12.5 → '$12.50'."""
    return f"${money(value):.2f}"


def format_amount(value: NumberLike) -> str:
    """12.5 → '12.50' (строка для API провайдеров)."""
    return f"{money(value):.2f}"


def format_number(value: NumberLike) -> str:
    """Число без хвостовых нулей: 20.00 → '20', 12.50 → '12.5'."""
    d = decimal_from(value)
    s = f"{d:f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s


def to_cents(value: NumberLike) -> int:
    return int((money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


# -----------------------------------------------------------------------------
# Время / идентификаторы
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Текущее время в UTC с tzinfo=UTC."""
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return str(uuid.uuid4())


def new_token() -> str:
    return uuid.uuid4().hex


def invoice_number(order_id: str) -> str:
    """Номер инвойса: INV-<первые 8 символов id в верхнем регистре>."""
    return f"INV-{order_id[:8].upper()}"


def safe_equals(a: Optional[str], b: Optional[str]) -> bool:
    """Сравнение подписей/ключей за постоянное время."""
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


__all__ = [
    "NumberLike",
    "CENT",
    "decimal_from",
    "parse_decimal",
    "money",
    "clamp",
    "format_usd",
    "format_amount",
    "format_number",
    "to_cents",
    "utcnow",
    "new_order_id",
    "new_token",
    "invoice_number",
    "safe_equals",
]
