# -*- coding: utf-8 -*-
# crystal_bot/schemas/common_schemas.py
# =============================================================================
# Назначение кода:
# Базовые Pydantic-схемы: денежная сериализация (строка с 2 знаками),
# типовые ответы/ошибки, ack вебхуков провайдеров.
#
# Канон / инварианты:
# • Все суммы - Decimal с 2 знаками; наружу всегда строкой "12.50".
# • Нет бизнес-логики - только декларативные DTO.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, PlainSerializer
from typing_extensions import Annotated

from crystal_bot.core.utils_core import format_amount

MoneyOut = Annotated[
    Decimal,
    PlainSerializer(lambda v: format_amount(v), return_type=str, when_used="json"),
]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ErrorResponse(BaseModel):
    """Стандартная форма ошибки."""

    ok: bool = Field(False)
    error: str = Field(..., description="Короткий код ошибки (snake-case)")
    message: str = Field(..., description="Человеко-читаемое описание проблемы")
    details: Optional[dict[str, Any]] = Field(None)


class OkMeta(BaseModel):
    ok: bool = Field(True, description="Флаг успешной операции")
    server_time: str = Field(default_factory=_now_iso, description="UTC ISO-8601")


class WebhookAckOut(BaseModel):
    """
    Ответ провайдеру. ok всегда True: провайдер ретраит не-2xx, поэтому
    причина игнорирования передаётся в status, а не кодом ответа.
    """

    ok: bool = Field(True)
    status: str = Field(..., description="confirmed/duplicate/ignored_*/untrusted/error")


class HealthOut(BaseModel):
    ok: bool
    db: bool
    version: str
    server_time: str = Field(default_factory=_now_iso)


__all__ = ["MoneyOut", "ErrorResponse", "OkMeta", "WebhookAckOut", "HealthOut"]
