"""CRUD layer for orders with compare-and-swap status transitions."""

from __future__ import annotations

# ============================================================================
# Crystal Store Bot - crud/order_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Атомарные операции с заказами (orders) без бизнес-логики.
#   • Переход pending → paid и «захват» учёта купона - условные UPDATE
#     (compare-and-swap): из двух параллельных подтверждений одного заказа
#     ровно одно получит rowcount = 1.
#
# Канон/инварианты:
#   • mark_paid_if_pending() - единственное место, где status становится paid.
#   • claim_coupon_usage() - единственное место, где
#     coupon_usage_recorded становится true.
#   • Ссылка на оплату перезаписывается только у pending-заказа: данные
#     подтверждённой оплаты не затираются поздней выдачей ссылки.
#   • commit выполняет вызывающий код (unit_of_work сервиса).
# ============================================================================

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.database_core import rowcount
from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.system_locks import ORDER_STATUS_PAID, ORDER_STATUS_PENDING
from crystal_bot.core.utils_core import utcnow
from crystal_bot.models.order_models import Order

logger = get_logger(__name__)


class OrderCRUD:
    """CRUD-обёртка для orders."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, order_id: str) -> Order | None:
        """Чтение без блокировок; значения всегда перечитываются из БД."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def create(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def get_latest_by_channel(self, channel_id: str) -> Order | None:
        stmt = (
            select(Order)
            .where(Order.channel_id == channel_id)
            .order_by(Order.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def list_recent(self, *, limit: int = 50) -> list[Order]:
        stmt = select(Order).order_by(Order.created_at.desc()).limit(limit)
        return list((await self.session.scalars(stmt)).all())

    async def update_payment_link_if_pending(
        self,
        order_id: str,
        *,
        method: str,
        provider: str,
        url: str,
        transaction_id: Optional[str],
    ) -> bool:
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == ORDER_STATUS_PENDING)
            .values(
                payment_method=method,
                payment_provider=provider,
                payment_url=url,
                transaction_id=transaction_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return rowcount(result) > 0

    async def mark_paid_if_pending(
        self,
        order_id: str,
        *,
        method: str,
        provider: str,
        transaction_id: Optional[str],
        paid_amount: Optional[str],
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        CAS pending → paid. True - этот вызов совершил переход;
        False - заказа нет или он уже оплачен.
        """
        now = paid_at or utcnow()
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == ORDER_STATUS_PENDING)
            .values(
                status=ORDER_STATUS_PAID,
                payment_method=method,
                payment_provider=provider,
                transaction_id=transaction_id,
                paid_amount=paid_amount,
                paid_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return rowcount(result) == 1

    async def claim_coupon_usage(self, order_id: str) -> bool:
        """CAS coupon_usage_recorded false → true (только для заказов с купоном)."""
        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.coupon_code.is_not(None),
                Order.coupon_usage_recorded.is_(False),
            )
            .values(coupon_usage_recorded=True)
            .execution_options(synchronize_session=False)
        )
        return rowcount(result) == 1
