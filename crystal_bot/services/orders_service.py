# -*- coding: utf-8 -*-
# crystal_bot/services/orders_service.py
# =============================================================================
# Назначение кода:
#   Жизненный цикл заказа (Order Lifecycle Controller):
#     • create_order - заказ из выбранного товара + ожидающего купона канала;
#     • record_payment_link_issued - фиксация выданной ссылки на оплату;
#     • confirm_payment - подтверждение оплаты по вебхуку провайдера.
#
# Канон/инварианты:
#   • Автомат состояний: pending → paid, и только так. paid - терминальный.
#   • confirm_payment идемпотентен: повторная доставка вебхука по тому же
#     заказу (с тем же или другим transaction_id) ничего не меняет.
#     Гарантия - условный UPDATE ... WHERE status = 'pending' в БД:
#     из N параллельных подтверждений переход совершает ровно одно.
#   • Счётчик купона увеличивается не более одного раза на заказ: «ворота» -
#     coupon_usage_recorded (тоже условный UPDATE). Флаг ставится, даже если
#     купон к моменту оплаты исчерпан или удалён: оплата не блокируется,
#     а повторный вебхук не пытается снова.
#   • Ожидающий купон канала потребляется при создании заказа ВСЕГДА -
#     и когда он применился, и когда оказался негодным.
#   • Никаких блокировок в памяти процесса; каждая операция - одна
#     транзакция, зафиксированная до возврата.
#
# Запреты:
#   • Сервис не шлёт уведомлений и не рендерит инвойсы - это делает вызывающий
#     код ровно один раз, когда PaymentConfirmation.transitioned == True.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from crystal_bot.core.database_core import unit_of_work
from crystal_bot.core.errors_core import NotFoundError, ValidationError
from crystal_bot.core.logging_core import get_logger, set_request_context
from crystal_bot.core.system_locks import (
    ORDER_STATUS_PENDING,
    assert_pricing_consistent,
    assert_status_transition,
)
from crystal_bot.core.utils_core import new_order_id
from crystal_bot.crud.coupon_crud import CouponCRUD
from crystal_bot.crud.order_crud import OrderCRUD
from crystal_bot.crud.pending_coupon_crud import PendingCouponCRUD
from crystal_bot.models.order_models import Order
from crystal_bot.schemas.catalog_schemas import Product
from crystal_bot.schemas.coupons_schemas import CouponSnapshot
from crystal_bot.services import pricing_service
from crystal_bot.services.coupons_service import find_coupon

logger = get_logger(__name__)

PAYMENT_METHOD_CRYPTO = "crypto"
PAYMENT_METHOD_STRIPE = "stripe"
PAYMENT_METHODS = (PAYMENT_METHOD_CRYPTO, PAYMENT_METHOD_STRIPE)


@dataclass(frozen=True, slots=True)
class CreatedOrder:
    order: Order
    coupon_applied: bool = False
    coupon_dropped: bool = False


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    order: Order
    transitioned: bool
    coupon_use_recorded: bool = False


def _check_method(method: str) -> str:
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {method}")
    return method


# -----------------------------------------------------------------------------
# Создание заказа
# -----------------------------------------------------------------------------
async def create_order(
    session: AsyncSession,
    *,
    channel_id: str,
    buyer_id: int,
    product: Product,
    buyer_tag: Optional[str] = None,
) -> CreatedOrder:
    """
    Создаёт pending-заказ на товар.

    Ожидающий купон канала перепроверяется по живому реестру (find_coupon):
    годный - цена считается по нему; негодный - тихо отбрасывается.
    В обоих случаях прочитанный снимок удаляется из хранилища (до расчёта
    цены); более новый ввод купона в этом канале остаётся для следующего товара.
    """
    channel_id = str(channel_id)
    orders = OrderCRUD(session)
    pending_crud = PendingCouponCRUD(session)

    async with unit_of_work(session, "create_order"):
        pending = await pending_crud.get(channel_id)
        snapshot: Optional[CouponSnapshot] = None
        dropped = False
        # снимок сначала забирается условным DELETE: из параллельных заказов
        # канала купон получит только тот, чей DELETE удалил строку
        claimed = pending is not None and await pending_crud.delete_if_token(channel_id, pending.token)
        if claimed:
            live = await find_coupon(session, pending.code)
            if live is None:
                dropped = True
                logger.info(
                    "Pending coupon %s dropped: no longer valid",
                    pending.code,
                    extra={"details": {"channel_id": channel_id}},
                )
            else:
                snapshot = CouponSnapshot.of(live)

        pricing = pricing_service.apply(product.price, snapshot)
        assert_pricing_consistent(pricing.original, pricing.discount, pricing.total)

        order = Order(
            id=new_order_id(),
            status=ORDER_STATUS_PENDING,
            channel_id=channel_id,
            buyer_id=int(buyer_id),
            buyer_tag=buyer_tag,
            product_id=product.id,
            product_name=product.name,
            product_price=product.price,
            original_amount=pricing.original,
            discount_amount=pricing.discount,
            total_amount=pricing.total,
            pricing_label=pricing.label,
            coupon_code=snapshot.code if snapshot else None,
            coupon_kind=snapshot.kind if snapshot else None,
            coupon_value=snapshot.value if snapshot else None,
            coupon_max_uses=snapshot.max_uses if snapshot else None,
            coupon_usage_recorded=False,
        )
        await orders.create(order)

    set_request_context(order_id=order.id)
    logger.info(
        "Order created",
        extra={
            "details": {
                "channel_id": channel_id,
                "product_id": product.id,
                "total": str(order.total_amount),
                "coupon": order.coupon_code,
            }
        },
    )
    return CreatedOrder(order=order, coupon_applied=snapshot is not None, coupon_dropped=dropped)


# -----------------------------------------------------------------------------
# Выдача ссылки на оплату
# -----------------------------------------------------------------------------
async def record_payment_link_issued(
    session: AsyncSession,
    order_id: str,
    *,
    method: str,
    provider: str,
    url: str,
    transaction_id: Optional[str],
) -> Order:
    """
    Записывает payment_* заказа, статус не трогает. Повторная выдача
    перезаписывает ссылку. У уже оплаченного заказа данные оплаты не
    затираются (ссылка просто не записывается).
    """
    _check_method(method)
    orders = OrderCRUD(session)
    async with unit_of_work(session, "record_payment_link_issued"):
        order = await orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        updated = await orders.update_payment_link_if_pending(
            order_id,
            method=method,
            provider=provider,
            url=url,
            transaction_id=transaction_id,
        )
        if not updated:
            logger.info("Payment link not recorded: order %s is already paid", order_id)
        order = await orders.get_by_id(order_id)
    assert order is not None  # для mypy
    return order


# -----------------------------------------------------------------------------
# Подтверждение оплаты (граница идемпотентности)
# -----------------------------------------------------------------------------
async def confirm_payment(
    session: AsyncSession,
    order_id: str,
    *,
    method: str,
    provider: str,
    transaction_id: Optional[str],
    paid_amount: Optional[str],
) -> PaymentConfirmation | None:
    """
    Переводит заказ в paid ровно один раз.

      • заказа нет → None, без изменений и без исключений;
      • уже paid → PaymentConfirmation(transitioned=False), заказ как есть;
      • иначе → paid + данные оплаты; при купоне - однократный учёт
        использования; PaymentConfirmation(transitioned=True).
    """
    _check_method(method)
    set_request_context(order_id=order_id)
    orders = OrderCRUD(session)
    coupon_recorded = False

    async with unit_of_work(session, "confirm_payment"):
        transitioned = await orders.mark_paid_if_pending(
            order_id,
            method=method,
            provider=provider,
            transaction_id=transaction_id,
            paid_amount=paid_amount,
        )
        if transitioned and await orders.claim_coupon_usage(order_id):
            order = await orders.get_by_id(order_id)
            assert order is not None and order.coupon_code is not None  # для mypy
            coupon_recorded = await CouponCRUD(session).record_use(order.coupon_code)
            if not coupon_recorded:
                logger.warning(
                    "Coupon %s was not usable at payment time; order confirmed anyway",
                    order.coupon_code,
                )
        order = await orders.get_by_id(order_id)

    if order is None:
        logger.info("Payment confirmation for unknown order ignored")
        return None

    if not transitioned:
        logger.info(
            "Duplicate payment confirmation ignored",
            extra={"details": {"provider": provider, "transaction_id": transaction_id}},
        )
        return PaymentConfirmation(order=order, transitioned=False)

    assert_status_transition(ORDER_STATUS_PENDING, order.status)
    logger.info(
        "Order paid",
        extra={
            "details": {
                "provider": provider,
                "method": method,
                "transaction_id": transaction_id,
                "paid_amount": paid_amount,
                "coupon_recorded": coupon_recorded,
            }
        },
    )
    return PaymentConfirmation(order=order, transitioned=True, coupon_use_recorded=coupon_recorded)


# -----------------------------------------------------------------------------
# Чтение
# -----------------------------------------------------------------------------
async def get_order(session: AsyncSession, order_id: str) -> Order | None:
    return await OrderCRUD(session).get_by_id(order_id)


async def get_latest_order_for_channel(session: AsyncSession, channel_id: str) -> Order | None:
    return await OrderCRUD(session).get_latest_by_channel(str(channel_id))


async def list_recent_orders(session: AsyncSession, *, limit: int = 50) -> list[Order]:
    return await OrderCRUD(session).list_recent(limit=max(1, min(int(limit), 200)))


__all__ = [
    "PAYMENT_METHOD_CRYPTO",
    "PAYMENT_METHOD_STRIPE",
    "PAYMENT_METHODS",
    "CreatedOrder",
    "PaymentConfirmation",
    "create_order",
    "record_payment_link_issued",
    "confirm_payment",
    "get_order",
    "get_latest_order_for_channel",
    "list_recent_orders",
]
