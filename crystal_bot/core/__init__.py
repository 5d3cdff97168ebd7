# -*- coding: utf-8 -*-
# crystal_bot/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра: настройки, логирование и стартовая самодиагностика
# (core_health), которую вызывают run.py и /health.
#
# Запреты:
# • Никакой бизнес-логики и тяжёлых импортов (CRUD/Services) здесь.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger

CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Проверяет минимально достаточный набор настроек.
    Ошибки - без них сервис не работает; предупреждения - частичная работа.
    """
    settings = get_settings()
    errors: List[str] = []
    warnings: List[str] = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is not set")
    if not settings.TELEGRAM_BOT_TOKEN:
        warnings.append("BOT_TOKEN is not set: bot and notifications are disabled")
    if not (settings.cryptomus_enabled or settings.stripe_enabled):
        warnings.append("No payment provider configured")
    if settings.OWNER_ID is None:
        warnings.append("OWNER_ID is not set: admin commands are disabled")

    return {
        "ok": not errors,
        "core_version": CORE_VERSION,
        "errors": errors,
        "warnings": warnings,
        "settings": settings.debug_dump(),
    }


def boot_core() -> Dict[str, Any]:
    """Стартовая проверка; пишет итог в лог и возвращает отчёт."""
    report = core_health()
    for warning in report["warnings"]:
        logger.warning("core: %s", warning)
    for error in report["errors"]:
        logger.error("core: %s", error)
    logger.info("core booted", extra={"details": {"ok": report["ok"]}})
    return report


__all__ = ["CORE_VERSION", "get_settings", "logger", "core_health", "boot_core"]
