# -*- coding: utf-8 -*-
# crystal_bot/integrations/providers.py
# =============================================================================
# Назначение кода:
#   Общий контракт платёжных провайдеров: PaymentLink и протокол
#   PaymentProvider. Конкретные клиенты: cryptomus_api, stripe_api.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class PaymentLink:
    """Ссылка на оплату, выданная провайдером."""

    external_url: str
    transaction_id: Optional[str] = None


@runtime_checkable
class PaymentProvider(Protocol):
    """Провайдер, умеющий выставить счёт/сессию оплаты на сумму в USD."""

    name: str

    async def request_payment_link(
        self,
        order_id: str,
        amount: Decimal,
        description: str,
        callback_url: Optional[str] = None,
    ) -> PaymentLink:
        ...


__all__ = ["PaymentLink", "PaymentProvider"]
