"""CRUD layer for per-channel pending coupon snapshots."""

from __future__ import annotations

# ============================================================================
# Crystal Store Bot - crud/pending_coupon_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Хранилище «купон введён, товар ещё не выбран» (PK channel_id).
#
# Канон/инварианты:
#   • upsert(): одна запись на канал, новая отправка перезаписывает старую
#     одной командой INSERT ... ON CONFLICT DO UPDATE (без гонки
#     «прочитал - вставил» между двумя параллельными вводами).
#   • delete_if_token(): потребление ровно того снимка, который прочитали;
#     если за это время купон перезаписали, новый снимок остаётся.
# ============================================================================

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.database_core import rowcount
from crystal_bot.core.system_locks import LockViolation
from crystal_bot.core.utils_core import utcnow
from crystal_bot.models.coupon_models import PendingCoupon

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class PendingCouponCRUD:
    """CRUD-обёртка для pending_coupons."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self,
        channel_id: str,
        *,
        code: str,
        kind: str,
        value: object,
        max_uses: int,
        token: str,
    ) -> None:
        dialect = self.session.bind.dialect.name
        insert_fn = _INSERTS.get(dialect)
        if insert_fn is None:
            raise LockViolation(f"Upsert is not supported for dialect {dialect}")

        values = {
            "code": code,
            "kind": kind,
            "value": value,
            "max_uses": max_uses,
            "token": token,
            "created_at": utcnow(),
        }
        stmt = insert_fn(PendingCoupon).values(channel_id=channel_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[PendingCoupon.channel_id],
            set_=values,
        )
        await self.session.execute(stmt)

    async def get(self, channel_id: str) -> PendingCoupon | None:
        stmt = (
            select(PendingCoupon)
            .where(PendingCoupon.channel_id == channel_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def delete(self, channel_id: str) -> bool:
        result = await self.session.execute(
            delete(PendingCoupon).where(PendingCoupon.channel_id == channel_id)
        )
        return rowcount(result) > 0

    async def delete_if_token(self, channel_id: str, token: str) -> bool:
        result = await self.session.execute(
            delete(PendingCoupon).where(
                PendingCoupon.channel_id == channel_id,
                PendingCoupon.token == token,
            )
        )
        return rowcount(result) > 0
