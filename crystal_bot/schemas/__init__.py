# -*- coding: utf-8 -*-
# crystal_bot/schemas/__init__.py
# Pydantic-схемы (DTO) HTTP-слоя и каталога; бизнес-логики здесь нет.

from .catalog_schemas import Product, ProductCatalog
from .common_schemas import ErrorResponse, HealthOut, OkMeta, WebhookAckOut
from .coupons_schemas import CouponCreateIn, CouponOut, CouponSnapshot
from .orders_schemas import OrderOut

__all__ = [
    "Product",
    "ProductCatalog",
    "ErrorResponse",
    "HealthOut",
    "OkMeta",
    "WebhookAckOut",
    "CouponCreateIn",
    "CouponOut",
    "CouponSnapshot",
    "OrderOut",
]
