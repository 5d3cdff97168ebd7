# -*- coding: utf-8 -*-
# crystal_bot/models/coupon_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели купонов:
#   • Coupon         - запись реестра скидочных кодов со счётчиком использований;
#   • PendingCoupon  - купон, введённый в тикете ДО выбора товара
#                      (снимок параметров купона на момент ввода).
#
# Канон/инварианты:
#   • code нормализован (trim + upper), 2–32 символа [A-Z0-9_-], UNIQUE.
#   • kind ∈ {fixed, percent}; value > 0; для percent value <= 100.
#   • max_uses >= 0 (0 = без лимита); uses >= 0 и только растёт.
#   • Купон «годен» ⇔ active AND (max_uses = 0 OR uses < max_uses).
#     Проверка повторяется атомарно в момент инкремента (CouponCRUD.record_use).
#   • PendingCoupon: не больше одной записи на канал (PK channel_id);
#     token меняется при каждой перезаписи - по нему потребление отличает
#     «свой» снимок от более нового.
#
# Запреты:
#   • PendingCoupon - снимок, а НЕ внешняя ссылка на Coupon: купон могут
#     удалить, а снимок при этом просто отбрасывается при потреблении.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base
from ..core.utils_core import utcnow

COUPON_KIND_FIXED = "fixed"
COUPON_KIND_PERCENT = "percent"
COUPON_KINDS = (COUPON_KIND_FIXED, COUPON_KIND_PERCENT)


class Coupon(Base):
    """Скидочный код."""

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("kind IN ('fixed','percent')", name="ck_coupons_kind_enum"),
        CheckConstraint("value > 0", name="ck_coupons_value_positive"),
        CheckConstraint(
            "kind <> 'percent' OR value <= 100",
            name="ck_coupons_percent_le_100",
        ),
        CheckConstraint("max_uses >= 0", name="ck_coupons_max_uses_nonneg"),
        CheckConstraint("uses >= 0", name="ck_coupons_uses_nonneg"),
    )

    code: Mapped[str] = mapped_column(String(32), primary_key=True)
    kind: Mapped[str] = mapped_column(String(8), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def is_usable(self) -> bool:
        return bool(self.active) and (self.max_uses == 0 or self.uses < self.max_uses)

    def __repr__(self) -> str:
        return (
            f"<Coupon code={self.code} kind={self.kind} value={self.value} "
            f"uses={self.uses}/{self.max_uses or '∞'} active={self.active}>"
        )


class PendingCoupon(Base):
    """Купон, ожидающий выбора товара в канале/тикете."""

    __tablename__ = "pending_coupons"

    channel_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    token: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<PendingCoupon channel={self.channel_id} code={self.code}>"


__all__ = [
    "COUPON_KIND_FIXED",
    "COUPON_KIND_PERCENT",
    "COUPON_KINDS",
    "Coupon",
    "PendingCoupon",
]
