"""CRUD layer for tickets and their message log."""

from __future__ import annotations

# ============================================================================
# Crystal Store Bot - crud/ticket_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Тикеты покупателей (tickets) и журнал сообщений (ticket_messages).
#   • Счётчик подтверждений принудительного закрытия растёт условным
#     UPDATE, без чтения-изменения-записи в памяти процесса.
# ============================================================================

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.database_core import rowcount
from crystal_bot.core.utils_core import utcnow
from crystal_bot.models.ticket_models import (
    TICKET_STATUS_CLOSED,
    TICKET_STATUS_OPEN,
    Ticket,
    TicketMessage,
)


class TicketCRUD:
    """CRUD-обёртка для tickets/ticket_messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, channel_id: str) -> Ticket | None:
        stmt = (
            select(Ticket)
            .where(Ticket.channel_id == channel_id)
            .execution_options(populate_existing=True)
        )
        return await self.session.scalar(stmt)

    async def create(self, ticket: Ticket) -> Ticket:
        self.session.add(ticket)
        await self.session.flush()
        return ticket

    async def reopen(self, channel_id: str, *, buyer_tag: Optional[str]) -> bool:
        """Повторное открытие закрытого тикета в том же чате."""
        result = await self.session.execute(
            update(Ticket)
            .where(Ticket.channel_id == channel_id, Ticket.status == TICKET_STATUS_CLOSED)
            .values(
                status=TICKET_STATUS_OPEN,
                buyer_tag=buyer_tag,
                force_close_confirmations=0,
                created_at=utcnow(),
                closed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return rowcount(result) > 0

    async def increment_force_close(self, channel_id: str) -> Optional[int]:
        """+1 к счётчику открытого тикета; новое значение или None."""
        result = await self.session.execute(
            update(Ticket)
            .where(Ticket.channel_id == channel_id, Ticket.status == TICKET_STATUS_OPEN)
            .values(force_close_confirmations=Ticket.force_close_confirmations + 1)
            .execution_options(synchronize_session=False)
        )
        if rowcount(result) == 0:
            return None
        return await self.session.scalar(
            select(Ticket.force_close_confirmations).where(Ticket.channel_id == channel_id)
        )

    async def close(self, channel_id: str) -> bool:
        result = await self.session.execute(
            update(Ticket)
            .where(Ticket.channel_id == channel_id, Ticket.status == TICKET_STATUS_OPEN)
            .values(
                status=TICKET_STATUS_CLOSED,
                force_close_confirmations=0,
                closed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return rowcount(result) > 0

    async def add_message(self, message: TicketMessage) -> None:
        self.session.add(message)
        await self.session.flush()

    async def list_messages(
        self,
        channel_id: str,
        *,
        since: datetime,
        limit: int,
    ) -> list[TicketMessage]:
        """Последние limit сообщений тикета начиная с since, по возрастанию."""
        stmt = (
            select(TicketMessage)
            .where(TicketMessage.channel_id == channel_id, TicketMessage.created_at >= since)
            .order_by(TicketMessage.id.desc())
            .limit(limit)
        )
        rows = list((await self.session.scalars(stmt)).all())
        rows.reverse()
        return rows
