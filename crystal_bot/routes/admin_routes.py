# -*- coding: utf-8 -*-
# crystal_bot/routes/admin_routes.py
# =============================================================================
# Назначение кода:
#   Админ-API магазина (тот же реестр купонов, что и команды бота):
#     • GET    /admin/coupons            - список купонов;
#     • POST   /admin/coupons            - добавить купон;
#     • DELETE /admin/coupons/{code}     - удалить купон;
#     • PATCH  /admin/coupons/{code}     - включить/выключить купон;
#     • GET    /admin/orders             - последние заказы (limit);
#     • GET    /admin/orders/{order_id}  - карточка заказа.
#
# Канон:
#   • Доступ только с X-Admin-Api-Key (require_admin_api_key).
#   • Ошибки ввода купона возвращаются тем же текстом, что видит админ в боте
#     (ValidationError → 422).
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.errors_core import NotFoundError
from crystal_bot.deps import get_db, require_admin_api_key
from crystal_bot.schemas.common_schemas import OkMeta
from crystal_bot.schemas.coupons_schemas import CouponActiveIn, CouponCreateIn, CouponOut
from crystal_bot.schemas.orders_schemas import OrderOut
from crystal_bot.services.coupons_service import (
    add_coupon,
    get_coupon,
    list_coupons,
    remove_coupon,
    set_coupon_active,
)
from crystal_bot.services.orders_service import get_order, list_recent_orders

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/coupons", response_model=List[CouponOut])
async def admin_list_coupons(db: AsyncSession = Depends(get_db)) -> List[CouponOut]:
    coupons = await list_coupons(db)
    return [CouponOut.model_validate(c) for c in coupons]


@router.post("/coupons", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
async def admin_add_coupon(payload: CouponCreateIn, db: AsyncSession = Depends(get_db)) -> CouponOut:
    coupon = await add_coupon(
        db,
        code=payload.code,
        kind=payload.kind,
        value=payload.value,
        max_uses=payload.max_uses,
    )
    return CouponOut.model_validate(coupon)


@router.delete("/coupons/{code}", response_model=OkMeta)
async def admin_delete_coupon(code: str, db: AsyncSession = Depends(get_db)) -> OkMeta:
    if not await remove_coupon(db, code):
        raise NotFoundError("Coupon not found.", details={"code": code})
    return OkMeta()


@router.patch("/coupons/{code}", response_model=CouponOut)
async def admin_toggle_coupon(
    code: str, payload: CouponActiveIn, db: AsyncSession = Depends(get_db)
) -> CouponOut:
    if not await set_coupon_active(db, code, payload.active):
        raise NotFoundError("Coupon not found.", details={"code": code})
    coupon = await get_coupon(db, code)
    return CouponOut.model_validate(coupon)


@router.get("/orders", response_model=List[OrderOut])
async def admin_recent_orders(
    limit: int = Query(50, ge=1, le=200), db: AsyncSession = Depends(get_db)
) -> List[OrderOut]:
    orders = await list_recent_orders(db, limit=limit)
    return [OrderOut.model_validate(o) for o in orders]


@router.get("/orders/{order_id}", response_model=OrderOut)
async def admin_get_order(order_id: str, db: AsyncSession = Depends(get_db)) -> OrderOut:
    order = await get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found.", details={"order_id": order_id})
    return OrderOut.model_validate(order)


__all__ = ["router"]
