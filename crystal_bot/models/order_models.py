# -*- coding: utf-8 -*-
# crystal_bot/models/order_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Заказ» Crystal Store Bot. Путь заказа: pending → paid.
#
# Канон/инварианты:
#   • id - uuid4 строкой, неизменяем; channel_id/buyer_id неизменяемы.
#   • Снимок товара (product_*) фиксируется при выборе и не следует за
#     правками каталога.
#   • total_amount = original_amount - discount_amount, 0 <= total <= original
#     (CHECK в БД + assert_pricing_consistent в сервисе).
#   • status меняется pending → paid ровно один раз: только условным
#     UPDATE ... WHERE status = 'pending' (OrderCRUD.mark_paid_if_pending).
#   • coupon_usage_recorded переходит false → true не более одного раза и
#     только вместе с оплатой заказа с купоном. Это единственные «ворота»
#     инкремента счётчика купона для заказа.
#   • Денежные поля - Numeric(12, 2).
#
# Запреты:
#   • Модель не удаляется этим сервисом (закрытие тикета - отдельная сущность).
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base
from ..core.system_locks import ORDER_STATUS_PENDING
from ..core.utils_core import utcnow


class Order(Base):
    """
    Заказ.

    Группы полей:
      • product_*   - снимок товара {id, name, price};
      • *_amount, coupon_* - расчёт цены и снимок купона (nullable);
      • payment_*, transaction_id, paid_amount - данные оплаты, заполняются
        при выдаче ссылки и повторно при подтверждении оплаты.
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("status IN ('pending','paid')", name="ck_orders_status_enum"),
        CheckConstraint(
            "payment_method IS NULL OR payment_method IN ('crypto','stripe')",
            name="ck_orders_payment_method_enum",
        ),
        CheckConstraint("original_amount >= 0", name="ck_orders_original_nonneg"),
        CheckConstraint("discount_amount >= 0", name="ck_orders_discount_nonneg"),
        CheckConstraint(
            "total_amount >= 0 AND total_amount <= original_amount",
            name="ck_orders_total_range",
        ),
        Index("ix_orders_channel_created", "channel_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True
    )

    # Тикет и покупатель
    channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    buyer_tag: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Снимок товара
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(256), nullable=False)
    product_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Цена
    original_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    pricing_label: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Снимок купона
    coupon_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    coupon_kind: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    coupon_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    coupon_max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    coupon_usage_recorded: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Оплата
    payment_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    payment_provider: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    paid_amount: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Таймстемпы
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} status={self.status} channel={self.channel_id} "
            f"product={self.product_id} total={self.total_amount}>"
        )


__all__ = ["Order"]
