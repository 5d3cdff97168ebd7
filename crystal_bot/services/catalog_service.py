# -*- coding: utf-8 -*-
# crystal_bot/services/catalog_service.py
# =============================================================================
# Назначение кода:
#   Каталог товаров из PRODUCTS_FILE (JSON-список). Файл читается один раз и
#   кэшируется до рестарта процесса.
#
# Канон/инварианты:
#   • Заказ хранит СНИМОК товара, поэтому правка каталога не меняет уже
#     созданные заказы.
#   • Битый файл каталога - ошибка конфигурации (исключение pydantic),
#     отсутствующий файл - пустой каталог с предупреждением в логе.
# =============================================================================

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.errors_core import NotFoundError
from crystal_bot.core.logging_core import get_logger
from crystal_bot.schemas.catalog_schemas import Product, ProductCatalog

logger = get_logger(__name__)


@lru_cache(maxsize=4)
def _load(path: str) -> Tuple[Product, ...]:
    file = Path(path)
    if not file.exists():
        logger.warning("Products file not found: %s", path)
        return ()
    catalog = ProductCatalog.model_validate_json(file.read_text(encoding="utf-8"))
    logger.info("Catalog loaded", extra={"details": {"products": len(catalog.root)}})
    return tuple(catalog.root)


def list_products(path: Optional[str] = None) -> list[Product]:
    return list(_load(path or get_settings().PRODUCTS_FILE))


def get_product(product_id: str, path: Optional[str] = None) -> Product:
    """Товар по id; NotFoundError, если такого нет."""
    for product in _load(path or get_settings().PRODUCTS_FILE):
        if product.id == product_id:
            return product
    raise NotFoundError("Product not found.", details={"product_id": product_id})


__all__ = ["list_products", "get_product"]
