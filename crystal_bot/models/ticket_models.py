# -*- coding: utf-8 -*-
# crystal_bot/models/ticket_models.py
# =============================================================================
# Назначение кода:
#   • Ticket        - тикет покупателя (приватный чат с ботом);
#   • TicketMessage - сообщения тикета для транскрипта при закрытии.
#
# Канон/инварианты:
#   • У покупателя не больше одного открытого тикета.
#   • force_close_confirmations - счётчик подтверждений принудительной
#     выдачи неоплаченного заказа; растёт атомарно, сбрасывается при закрытии.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base
from ..core.utils_core import utcnow

TICKET_STATUS_OPEN = "open"
TICKET_STATUS_CLOSED = "closed"


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (Index("ix_tickets_buyer_status", "buyer_id", "status"),)

    channel_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    buyer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buyer_tag: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TICKET_STATUS_OPEN)
    force_close_confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status == TICKET_STATUS_OPEN

    def __repr__(self) -> str:
        return f"<Ticket channel={self.channel_id} buyer={self.buyer_id} status={self.status}>"


class TicketMessage(Base):
    __tablename__ = "ticket_messages"
    __table_args__ = (Index("ix_ticket_messages_channel_id", "channel_id", "id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    author_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    author_tag: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


__all__ = ["TICKET_STATUS_OPEN", "TICKET_STATUS_CLOSED", "Ticket", "TicketMessage"]
