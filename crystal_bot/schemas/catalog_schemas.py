# -*- coding: utf-8 -*-
# crystal_bot/schemas/catalog_schemas.py
# =============================================================================
# Назначение кода:
# Схема товара каталога (products.json). Файл проверяется целиком при
# загрузке: мусорная цена или дубликат id - ошибка конфигурации, а не
# «тихий» пропуск товара.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator

from crystal_bot.core.utils_core import money


class Product(BaseModel):
    """Карточка товара."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=64, description="ID товара")
    name: str = Field(..., min_length=1, max_length=256, description="Название")
    price: Decimal = Field(..., ge=0, description="Цена в USD")
    emoji: str = Field("", description="Эмодзи кнопки")
    delivery: str = Field("", description="Что и как получает покупатель")

    @field_validator("price", mode="after")
    @classmethod
    def _q2(cls, v: Decimal) -> Decimal:
        return money(v)

    @property
    def button_label(self) -> str:
        prefix = f"{self.emoji} " if self.emoji else ""
        return f"{prefix}{self.name} - ${self.price:.2f}"


class ProductCatalog(RootModel[List[Product]]):
    """Содержимое products.json: список товаров с уникальными id."""

    @model_validator(mode="after")
    def _unique_ids(self) -> "ProductCatalog":
        seen: set[str] = set()
        for product in self.root:
            if product.id in seen:
                raise ValueError(f"Duplicate product id: {product.id}")
            seen.add(product.id)
        return self


__all__ = ["Product", "ProductCatalog"]
