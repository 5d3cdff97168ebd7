"""CRUD layer for the coupon ledger with an atomic usage counter."""

from __future__ import annotations

# ============================================================================
# Crystal Store Bot - crud/coupon_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Операции с таблицей coupons без бизнес-валидации ввода
#     (формат кода, диапазоны - в services/coupons_service.py).
#   • record_use(): атомарный «проверил годность + увеличил uses» одним
#     условным UPDATE.
#
# Канон/инварианты:
#   • uses никогда не превышает max_uses (> 0), даже при параллельных
#     подтверждениях оплат разных заказов с одним купоном: условие годности
#     проверяет сама БД в момент инкремента.
#   • commit выполняет вызывающий код (unit_of_work сервиса).
# ============================================================================

from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.database_core import rowcount
from crystal_bot.core.logging_core import get_logger
from crystal_bot.models.coupon_models import Coupon

logger = get_logger(__name__)


class CouponCRUD:
    """CRUD-обёртка для coupons."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, code: str) -> Coupon | None:
        """Чтение по нормализованному коду; всегда свежие значения из БД."""
        stmt = (
            select(Coupon)
            .where(Coupon.code == code)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def create(self, coupon: Coupon) -> Coupon:
        self.session.add(coupon)
        await self.session.flush()
        return coupon

    async def delete(self, code: str) -> bool:
        result = await self.session.execute(delete(Coupon).where(Coupon.code == code))
        return rowcount(result) > 0

    async def list_all(self) -> list[Coupon]:
        stmt = select(Coupon).order_by(Coupon.created_at, Coupon.code)
        return list((await self.session.scalars(stmt)).all())

    async def set_active(self, code: str, active: bool) -> bool:
        result = await self.session.execute(
            update(Coupon)
            .where(Coupon.code == code)
            .values(active=active)
            .execution_options(synchronize_session=False)
        )
        return rowcount(result) > 0

    async def record_use(self, code: str) -> bool:
        """
        uses = uses + 1, только если купон всё ещё годен.

        Возвращает False без изменений, если купона нет, он выключен или
        лимит уже исчерпан.
        """
        result = await self.session.execute(
            update(Coupon)
            .where(
                Coupon.code == code,
                Coupon.active.is_(True),
                or_(Coupon.max_uses == 0, Coupon.uses < Coupon.max_uses),
            )
            .values(uses=Coupon.uses + 1)
            .execution_options(synchronize_session=False)
        )
        changed = rowcount(result) > 0
        if not changed:
            logger.info("Coupon use not recorded: %s is missing or exhausted", code)
        return changed

    async def exists(self, code: str) -> bool:
        found: Optional[str] = await self.session.scalar(
            select(Coupon.code).where(Coupon.code == code)
        )
        return found is not None
