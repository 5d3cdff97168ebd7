# -*- coding: utf-8 -*-
# crystal_bot/routes/health_routes.py
# =============================================================================
# Назначение кода:
#   GET /health - живость процесса, доступность БД и сводка сервисов
#   (включая подключённые к приложению платёжные провайдеры).
#   Ответ 200 даже при недоступной БД: ok=false и db=false в теле.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Mapping

from fastapi import APIRouter, Depends

from crystal_bot.core import CORE_VERSION, core_health
from crystal_bot.core.config_core import get_settings
from crystal_bot.core.database_core import db_ping
from crystal_bot.deps import get_providers
from crystal_bot.integrations.providers import PaymentProvider
from crystal_bot.schemas.common_schemas import HealthOut
from crystal_bot.services import health_snapshot

router = APIRouter(tags=["health"])


class HealthDetailsOut(HealthOut):
    core_version: str = CORE_VERSION
    services: Dict[str, Any] = {}
    warnings: list[str] = []


@router.get("/health", response_model=HealthDetailsOut)
async def health(
    providers: Mapping[str, PaymentProvider] = Depends(get_providers),
) -> HealthDetailsOut:
    """Простая проверка живости сервиса без побочных эффектов."""
    db_ok = await db_ping()
    report = core_health()
    services = health_snapshot()
    services["providers"] = sorted(providers)
    return HealthDetailsOut(
        ok=db_ok and report["ok"],
        db=db_ok,
        version=get_settings().APP_VERSION,
        services=services,
        warnings=report["warnings"],
    )


__all__ = ["router"]
