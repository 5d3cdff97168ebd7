# -*- coding: utf-8 -*-
# crystal_bot/services/__init__.py
# =============================================================================
# Crystal Store Bot - сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Стабильный вход для доменных сервисов: роуты и хэндлеры бота
#     импортируют отсюда, а не из отдельных файлов.
#   • health_snapshot() - сводка по сервисам для /health.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет - только импорты и тонкие прокси.
#   • Никаких сетевых запросов на уровне импорта.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict

from pydantic import ValidationError as CatalogError

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.logging_core import get_logger

from .catalog_service import get_product, list_products  # noqa: F401
from .coupons_service import (  # noqa: F401
    add_coupon,
    clear_pending_coupon,
    describe_coupon,
    find_coupon,
    get_coupon,
    get_pending_coupon,
    list_coupons,
    normalize_code,
    record_coupon_use,
    remove_coupon,
    set_coupon_active,
    set_pending_coupon,
    submit_coupon_code,
)
from .orders_service import (  # noqa: F401
    PAYMENT_METHOD_CRYPTO,
    PAYMENT_METHOD_STRIPE,
    CreatedOrder,
    PaymentConfirmation,
    confirm_payment,
    create_order,
    get_latest_order_for_channel,
    get_order,
    list_recent_orders,
    record_payment_link_issued,
)
from .payments_service import (  # noqa: F401
    IssuedLink,
    PaidNotifier,
    WebhookEvent,
    WebhookOutcome,
    issue_payment_link,
    normalize_cryptomus,
    normalize_stripe,
    reconcile_webhook,
)
from .pricing_service import Pricing, apply as apply_pricing  # noqa: F401
from .tickets_service import (  # noqa: F401
    DeliveryResult,
    build_transcript,
    close_silently,
    close_ticket,
    deliver_and_close,
    open_ticket,
    open_ticket_for_user,
    record_message,
    register_force_close,
)

logger = get_logger(__name__)


def health_snapshot() -> Dict[str, Any]:
    """Лёгкая сводка без обращений к БД и сети."""
    settings = get_settings()
    try:
        products = len(list_products())
    except (CatalogError, OSError) as exc:
        logger.warning("Catalog is not readable: %s", exc)
        products = 0
    return {
        "products": products,
        "cryptomus": settings.cryptomus_enabled,
        "stripe": settings.stripe_enabled,
    }
