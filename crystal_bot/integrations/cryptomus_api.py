# -*- coding: utf-8 -*-
# crystal_bot/integrations/cryptomus_api.py
# =============================================================================
# Назначение кода:
#   Клиент Cryptomus для Crystal Store Bot:
#     • выставление счёта в USD (POST /v1/payment) → PaymentLink;
#     • проверка подлинности входящего вебхука по полю sign.
#
# Канон/инварианты:
#   • sign = md5(base64(json_body) + api_key). JSON сериализуется компактно
#     и так же, как это делает PHP json_encode у Cryptomus ("/" → "\/"),
#     и ровно эти байты уходят в теле запроса.
#   • Сравнение подписи - только за постоянное время (safe_equals).
#   • Без CRYPTOMUS_API_KEY вебхук считается подлинным: проверить нечем,
#     это пишется в лог предупреждением.
#   • Любой не-2xx ответ или ответ без result.url → ProviderError.
#
# Запреты:
#   • Модуль не меняет заказы: только HTTP и криптография подписи.
#   • Ключ API и подпись никогда не попадают в логи.
# =============================================================================

from __future__ import annotations

import base64
import hashlib
import json
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.errors_core import ProviderError
from crystal_bot.core.logging_core import get_logger
from crystal_bot.core.utils_core import format_amount, safe_equals
from crystal_bot.integrations.providers import PaymentLink

logger = get_logger(__name__)
settings = get_settings()

PROVIDER_NAME = "cryptomus"
PAID_STATUSES = frozenset({"paid", "paid_over", "paid_partial"})


# -----------------------------------------------------------------------------
# Подпись
# -----------------------------------------------------------------------------
def encode_body(payload: Mapping[str, Any]) -> str:
    """Компактный JSON в формате, который подписывает Cryptomus."""
    raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return raw.replace("/", "\\/")


def make_sign(payload: Mapping[str, Any], api_key: str) -> str:
    encoded = base64.b64encode(encode_body(payload).encode("utf-8")).decode("ascii")
    return hashlib.md5((encoded + api_key).encode("utf-8")).hexdigest()


def verify_webhook(payload: Mapping[str, Any], api_key: Optional[str] = None) -> bool:
    """
    True - вебхук подписан нашим ключом.

    Поле sign исключается из тела, подпись пересчитывается и сравнивается
    за постоянное время. Если ключ не сконфигурирован, проверка пропускается.
    """
    key = api_key if api_key is not None else settings.CRYPTOMUS_API_KEY
    if not key:
        logger.warning("Cryptomus webhook accepted without signature check")
        return True
    received = payload.get("sign")
    if not received or not isinstance(received, str):
        return False
    body = {k: v for k, v in payload.items() if k != "sign"}
    return safe_equals(make_sign(body, key), received)


# -----------------------------------------------------------------------------
# HTTP-клиент
# -----------------------------------------------------------------------------
class CryptomusClient:
    """
    Лёгкий httpx-клиент Cryptomus. Один экземпляр на процесс; соединение
    открывается на каждый запрос (запросов мало: один на нажатие «Crypto»).
    """

    name = PROVIDER_NAME

    def __init__(
        self,
        *,
        merchant_uuid: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        lifetime_seconds: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.merchant_uuid = merchant_uuid or settings.CRYPTOMUS_MERCHANT_UUID or ""
        self.api_key = api_key or settings.CRYPTOMUS_API_KEY or ""
        self.base_url = (base_url or settings.CRYPTOMUS_API_URL).rstrip("/")
        self.lifetime_seconds = lifetime_seconds or settings.CRYPTOMUS_INVOICE_LIFETIME_SEC
        self.timeout_seconds = timeout_seconds or settings.HTTP_TIMEOUT_SEC
        self._transport = transport

    def _build_body(
        self,
        order_id: str,
        amount: Decimal,
        description: str,
        callback_url: Optional[str],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "amount": format_amount(amount),
            "currency": "USD",
            "order_id": order_id,
            "url_return": settings.PUBLIC_BASE_URL,
            "is_payment_multiple": False,
            "lifetime": int(self.lifetime_seconds),
            "additional_data": description or "",
        }
        # url_callback только абсолютный: иначе Cryptomus отклонит счёт
        if callback_url and callback_url.startswith("http"):
            body["url_callback"] = callback_url
        return body

    async def request_payment_link(
        self,
        order_id: str,
        amount: Decimal,
        description: str,
        callback_url: Optional[str] = None,
    ) -> PaymentLink:
        """
        Выставляет счёт и возвращает PaymentLink(url, uuid).
        Исключения: ProviderError (нет ключей, сеть, не-2xx, нет result.url).
        """
        if not self.merchant_uuid:
            raise ProviderError("Crypto payments are not configured.", provider=self.name)
        if not self.api_key:
            raise ProviderError("Crypto payments are not configured.", provider=self.name)

        body = self._build_body(order_id, amount, description, callback_url)
        content = encode_body(body)
        headers = {
            "Content-Type": "application/json",
            "merchant": self.merchant_uuid,
            "sign": make_sign(body, self.api_key),
        }
        url = f"{self.base_url}/v1/payment"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, content=content.encode("utf-8"), headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "[Cryptomus] request failed",
                extra={"details": {"order_id": order_id, "error": type(exc).__name__}},
            )
            raise ProviderError(
                "Crypto payment provider is unavailable.",
                provider=self.name,
            ) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        result = data.get("result") if isinstance(data, dict) else None
        pay_url = result.get("url") if isinstance(result, dict) else None

        if response.status_code >= 400 or not pay_url:
            message = ""
            if isinstance(data, dict):
                message = str(data.get("message") or data.get("error") or "")
            logger.warning(
                "[Cryptomus] invoice rejected",
                extra={
                    "details": {
                        "order_id": order_id,
                        "status": response.status_code,
                        "message": message[:200],
                    }
                },
            )
            raise ProviderError(
                "Crypto payment provider rejected the invoice.",
                provider=self.name,
                details={"status": response.status_code},
            )

        uuid = result.get("uuid") if isinstance(result, dict) else None
        logger.info("[Cryptomus] invoice issued", extra={"details": {"order_id": order_id}})
        return PaymentLink(external_url=str(pay_url), transaction_id=str(uuid) if uuid else None)


__all__ = [
    "PROVIDER_NAME",
    "PAID_STATUSES",
    "encode_body",
    "make_sign",
    "verify_webhook",
    "CryptomusClient",
]
