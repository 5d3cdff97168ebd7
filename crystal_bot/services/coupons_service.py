# -*- coding: utf-8 -*-
# crystal_bot/services/coupons_service.py
# =============================================================================
# Назначение кода:
#   Реестр купонов (Coupon Ledger) и ожидающие купоны каналов:
#     • find_coupon / add_coupon / remove_coupon / record_coupon_use / list_coupons;
#     • set_pending_coupon / get_pending_coupon / clear_pending_coupon.
#
# Канон/инварианты:
#   • Код нормализуется: trim + upper; формат ^[A-Z0-9_-]{2,32}$.
#   • find_coupon() не возвращает выключенные и исчерпанные купоны.
#   • record_coupon_use() - повторная проверка годности и инкремент одной
#     атомарной командой БД (никакого «прочитал uses → записал uses+1»).
#   • Каждая изменяющая операция - своя транзакция (unit_of_work).
#
# Запреты:
#   • Ожидающий купон не перепроверяется до потребления (create_order):
#     там код снова ищется через find_coupon() и тихо отбрасывается.
# =============================================================================

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.database_core import unit_of_work
from crystal_bot.core.errors_core import ValidationError
from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.utils_core import format_number, format_usd, money, new_token, parse_decimal
from crystal_bot.crud.coupon_crud import CouponCRUD
from crystal_bot.crud.pending_coupon_crud import PendingCouponCRUD
from crystal_bot.models.coupon_models import (
    COUPON_KIND_FIXED,
    COUPON_KIND_PERCENT,
    COUPON_KINDS,
    Coupon,
    PendingCoupon,
)
from crystal_bot.schemas.coupons_schemas import CouponSnapshot

logger = get_logger(__name__)

CODE_RE = re.compile(r"^[A-Z0-9_-]{2,32}$")
# потолок Numeric(12, 2)
MAX_COUPON_VALUE = Decimal("9999999999.99")


def normalize_code(raw: object) -> str:
    return str(raw or "").strip().upper()


def _parse_max_uses(raw: object) -> Optional[int]:
    if raw is None or raw == "":
        return 0
    d = parse_decimal(raw)
    if d is None or d != d.to_integral_value():
        return None
    return int(d)


# -----------------------------------------------------------------------------
# Coupon Ledger
# -----------------------------------------------------------------------------
async def find_coupon(session: AsyncSession, code: object) -> Coupon | None:
    """Годный купон по коду (регистр не важен) или None."""
    norm = normalize_code(code)
    if not norm:
        return None
    coupon = await CouponCRUD(session).get(norm)
    if coupon is None or not coupon.is_usable:
        return None
    return coupon


async def add_coupon(
    session: AsyncSession,
    *,
    code: object,
    kind: object,
    value: object,
    max_uses: object = 0,
) -> Coupon:
    """
    Создаёт купон (uses=0, active=True).
    ValidationError с текстом для администратора при любой ошибке ввода.
    """
    if code is None or not str(code).strip():
        raise ValidationError("Missing code")
    norm = normalize_code(code)
    if not CODE_RE.fullmatch(norm):
        raise ValidationError("Code must be 2-32 chars (A-Z, 0-9, _ or -)")

    kind_norm = str(kind or "").strip().lower()
    if kind_norm not in COUPON_KINDS:
        raise ValidationError("Type must be fixed or percent")

    amount = parse_decimal(value)
    if amount is None:
        raise ValidationError("Value must be > 0")
    try:
        amount = money(amount)
    except InvalidOperation as exc:
        raise ValidationError("Value is too large") from exc
    if amount <= 0:
        raise ValidationError("Value must be > 0")
    if amount > MAX_COUPON_VALUE:
        raise ValidationError("Value is too large")
    if kind_norm == COUPON_KIND_PERCENT and amount > 100:
        raise ValidationError("Percent cannot exceed 100")

    limit = _parse_max_uses(max_uses)
    if limit is None or limit < 0:
        raise ValidationError("maxUses must be >= 0 (0 = unlimited)")

    crud = CouponCRUD(session)
    async with unit_of_work(session, "add_coupon"):
        if await crud.exists(norm):
            raise ValidationError("Coupon already exists")
        coupon = Coupon(
            code=norm,
            kind=kind_norm,
            value=amount,
            max_uses=limit,
            uses=0,
            active=True,
        )
        try:
            await crud.create(coupon)
        except IntegrityError as exc:
            # параллельное создание того же кода
            raise ValidationError("Coupon already exists") from exc

    logger.info("Coupon added: %s", norm, extra={"details": {"kind": kind_norm}})
    return coupon


async def remove_coupon(session: AsyncSession, code: object) -> bool:
    norm = normalize_code(code)
    if not norm:
        return False
    async with unit_of_work(session, "remove_coupon"):
        removed = await CouponCRUD(session).delete(norm)
    if removed:
        logger.info("Coupon removed: %s", norm)
    return removed


async def record_coupon_use(session: AsyncSession, code: object) -> bool:
    """Атомарно +1 к uses, если купон ещё годен. False - без изменений."""
    norm = normalize_code(code)
    if not norm:
        return False
    async with unit_of_work(session, "record_coupon_use"):
        return await CouponCRUD(session).record_use(norm)


async def set_coupon_active(session: AsyncSession, code: object, active: bool) -> bool:
    norm = normalize_code(code)
    async with unit_of_work(session, "set_coupon_active"):
        return await CouponCRUD(session).set_active(norm, active)


async def get_coupon(session: AsyncSession, code: object) -> Coupon | None:
    """Купон по коду в любом состоянии (для админки)."""
    norm = normalize_code(code)
    return await CouponCRUD(session).get(norm) if norm else None


async def list_coupons(session: AsyncSession) -> list[Coupon]:
    return await CouponCRUD(session).list_all()


def describe_coupon(coupon: Coupon) -> str:
    """Строка списка: 'SAVE10 | percent 10% | uses 3/∞ | active'."""
    if coupon.kind == COUPON_KIND_FIXED:
        amount = format_usd(coupon.value)
    else:
        amount = f"{format_number(coupon.value)}%"
    cap = str(coupon.max_uses) if coupon.max_uses else "∞"
    state = "active" if coupon.active else "inactive"
    return f"{coupon.code} | {coupon.kind} {amount} | uses {coupon.uses}/{cap} | {state}"


# -----------------------------------------------------------------------------
# Pending-Coupon Association
# -----------------------------------------------------------------------------
async def set_pending_coupon(
    session: AsyncSession,
    channel_id: str,
    snapshot: CouponSnapshot,
) -> None:
    """Запоминает купон канала; прежний ожидающий купон перезаписывается."""
    async with unit_of_work(session, "set_pending_coupon"):
        await PendingCouponCRUD(session).upsert(
            str(channel_id),
            code=snapshot.code,
            kind=snapshot.kind,
            value=Decimal(snapshot.value),
            max_uses=snapshot.max_uses,
            token=new_token(),
        )


async def get_pending_coupon(session: AsyncSession, channel_id: str) -> PendingCoupon | None:
    return await PendingCouponCRUD(session).get(str(channel_id))


async def clear_pending_coupon(session: AsyncSession, channel_id: str) -> bool:
    async with unit_of_work(session, "clear_pending_coupon"):
        return await PendingCouponCRUD(session).delete(str(channel_id))


async def submit_coupon_code(
    session: AsyncSession,
    channel_id: str,
    raw_code: object,
) -> CouponSnapshot | None:
    """
    Ввод купона покупателем до выбора товара: годный код → снимок сохранён
    и возвращён; иначе None (ожидающий купон канала не трогаем).
    """
    coupon = await find_coupon(session, raw_code)
    if coupon is None:
        return None
    snapshot = CouponSnapshot.of(coupon)
    await set_pending_coupon(session, channel_id, snapshot)
    return snapshot


__all__ = [
    "CODE_RE",
    "normalize_code",
    "find_coupon",
    "add_coupon",
    "remove_coupon",
    "record_coupon_use",
    "set_coupon_active",
    "get_coupon",
    "list_coupons",
    "describe_coupon",
    "set_pending_coupon",
    "get_pending_coupon",
    "clear_pending_coupon",
    "submit_coupon_code",
]
