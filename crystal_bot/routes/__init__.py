# -*- coding: utf-8 -*-
# crystal_bot/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения HTTP-роутов Crystal Store Bot:
#     • api_router - агрегатор всех модулей из ROUTERS_EXPECTED;
#     • register(app, prefix="") - подключение в FastAPI.
#
# Канон:
#   • Каждый модуль экспортирует `router: APIRouter` и сам задаёт свой prefix.
#   • Модуль без router - ошибка сборки, а не тихий пропуск.
#
# Запреты:
#   • Нет SQL и вызовов сервисов - только import и include_router.
# =============================================================================

from __future__ import annotations

from importlib import import_module
from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from crystal_bot.core.logging_core import get_logger

logger = get_logger(__name__)

ROUTERS_EXPECTED: Tuple[str, ...] = (
    "health_routes",
    "webhook_routes",
    "admin_routes",
)

api_router = APIRouter()
_ATTACHED: List[str] = []


def _include(module_basename: str) -> None:
    fqmn = f"crystal_bot.routes.{module_basename}"
    mod = import_module(fqmn)
    router = getattr(mod, "router", None)
    if not isinstance(router, APIRouter):
        raise RuntimeError(f"{fqmn} does not export router: APIRouter")
    api_router.include_router(router)
    _ATTACHED.append(module_basename)


for _name in ROUTERS_EXPECTED:
    _include(_name)


def register(app: FastAPI, prefix: str = "") -> None:
    """Регистрирует агрегированный роутер в приложении FastAPI."""
    app.include_router(api_router, prefix=prefix)
    logger.info(
        "routes: registered (prefix=%r): %s",
        prefix,
        ",".join(_ATTACHED) if _ATTACHED else "-",
    )


__all__ = ["api_router", "register", "ROUTERS_EXPECTED"]
