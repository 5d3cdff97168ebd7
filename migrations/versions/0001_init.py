# -*- coding: utf-8 -*-
"""Initial migration for Crystal Store Bot.

Назначение:
    • Создать таблицы купонов, отложенных купонов, заказов и тикетов.

Канон/инварианты:
    • CHECK-ограничения повторяют инварианты ORM-моделей: kind/status
      enum, value > 0, percent <= 100, 0 <= total <= original.
    • Денежные поля - NUMERIC(12, 2).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "coupons",
        sa.Column("code", sa.String(32), primary_key=True),
        sa.Column("kind", sa.String(8), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("kind IN ('fixed','percent')", name="ck_coupons_kind_enum"),
        sa.CheckConstraint("value > 0", name="ck_coupons_value_positive"),
        sa.CheckConstraint("kind <> 'percent' OR value <= 100", name="ck_coupons_percent_le_100"),
        sa.CheckConstraint("max_uses >= 0", name="ck_coupons_max_uses_nonneg"),
        sa.CheckConstraint("uses >= 0", name="ck_coupons_uses_nonneg"),
    )

    op.create_table(
        "pending_coupons",
        sa.Column("channel_id", sa.String(64), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("kind", sa.String(8), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("token", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("channel_id", sa.String(64), nullable=False),
        sa.Column("buyer_id", sa.BigInteger(), nullable=False),
        sa.Column("buyer_tag", sa.String(128), nullable=True),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(256), nullable=False),
        sa.Column("product_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("original_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("pricing_label", sa.String(64), nullable=True),
        sa.Column("coupon_code", sa.String(32), nullable=True),
        sa.Column("coupon_kind", sa.String(8), nullable=True),
        sa.Column("coupon_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("coupon_max_uses", sa.Integer(), nullable=True),
        sa.Column("coupon_usage_recorded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_method", sa.String(16), nullable=True),
        sa.Column("payment_provider", sa.String(32), nullable=True),
        sa.Column("payment_url", sa.String(1024), nullable=True),
        sa.Column("transaction_id", sa.String(256), nullable=True),
        sa.Column("paid_amount", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('pending','paid')", name="ck_orders_status_enum"),
        sa.CheckConstraint(
            "payment_method IS NULL OR payment_method IN ('crypto','stripe')",
            name="ck_orders_payment_method_enum",
        ),
        sa.CheckConstraint("original_amount >= 0", name="ck_orders_original_nonneg"),
        sa.CheckConstraint("discount_amount >= 0", name="ck_orders_discount_nonneg"),
        sa.CheckConstraint(
            "total_amount >= 0 AND total_amount <= original_amount",
            name="ck_orders_total_range",
        ),
    )
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_channel_created", "orders", ["channel_id", "created_at"])

    op.create_table(
        "tickets",
        sa.Column("channel_id", sa.String(64), primary_key=True),
        sa.Column("buyer_id", sa.BigInteger(), nullable=False),
        sa.Column("buyer_tag", sa.String(128), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("force_close_confirmations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_tickets_buyer_status", "tickets", ["buyer_id", "status"])

    op.create_table(
        "ticket_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("channel_id", sa.String(64), nullable=False),
        sa.Column("author_id", sa.BigInteger(), nullable=False),
        sa.Column("author_tag", sa.String(128), nullable=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_messages_channel_id", "ticket_messages", ["channel_id", "id"])


def downgrade() -> None:
    op.drop_index("ix_ticket_messages_channel_id", table_name="ticket_messages")
    op.drop_table("ticket_messages")
    op.drop_index("ix_tickets_buyer_status", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("ix_orders_channel_created", table_name="orders")
    op.drop_index("ix_orders_buyer_id", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
    op.drop_table("pending_coupons")
    op.drop_table("coupons")


# ============================================================================
# Пояснения «для чайника»:
#   • Миграция создаёт все таблицы магазина; данные не заполняет.
#   • Купоны добавляет админ (/coupon_add или POST /admin/coupons).
# ============================================================================
