import base64
import hashlib
import json
from decimal import Decimal

import httpx
import pytest

from crystal_bot.core.errors_core import ProviderError
from crystal_bot.integrations.cryptomus_api import CryptomusClient, encode_body, make_sign, verify_webhook

KEY = "secret-key"


def test_encode_body_escapes_slashes_like_php():
    assert encode_body({"url": "https://a/b"}) == '{"url":"https:\\/\\/a\\/b"}'


def test_make_sign_is_md5_of_base64_body_plus_key():
    body = {"order_id": "o1", "amount": "10.00"}
    encoded = base64.b64encode(json.dumps(body, separators=(",", ":")).encode()).decode()
    assert make_sign(body, KEY) == hashlib.md5((encoded + KEY).encode()).hexdigest()


def test_verify_webhook_accepts_own_signature():
    body = {"order_id": "o1", "status": "paid", "url": "https://x/y"}
    payload = {**body, "sign": make_sign(body, KEY)}
    assert verify_webhook(payload, KEY)


def test_verify_webhook_rejects_tampering():
    body = {"order_id": "o1", "status": "paid"}
    payload = {**body, "sign": make_sign(body, KEY)}
    payload["status"] = "paid_over"
    assert not verify_webhook(payload, KEY)
    assert not verify_webhook({"order_id": "o1"}, KEY)
    assert not verify_webhook({"order_id": "o1", "sign": 123}, KEY)


def test_verify_webhook_without_key_passes():
    assert verify_webhook({"order_id": "o1"}, "")


def _client(handler) -> CryptomusClient:
    return CryptomusClient(
        merchant_uuid="merchant-1",
        api_key=KEY,
        base_url="https://api.test",
        transport=httpx.MockTransport(handler),
    )


async def test_request_payment_link_sends_signed_invoice():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"state": 0, "result": {"url": "https://pay.cryptomus/x", "uuid": "u-1"}})

    link = await _client(handler).request_payment_link(
        "order-1", Decimal("15"), "Crystal Store | Pack", "https://store.test/webhook/cryptomus"
    )

    assert (link.external_url, link.transaction_id) == ("https://pay.cryptomus/x", "u-1")
    assert seen["url"] == "https://api.test/v1/payment"
    assert seen["headers"]["merchant"] == "merchant-1"
    body = json.loads(seen["body"])
    assert body["amount"] == "15.00"
    assert body["currency"] == "USD"
    assert body["order_id"] == "order-1"
    assert body["url_callback"] == "https://store.test/webhook/cryptomus"
    assert seen["headers"]["sign"] == make_sign(body, KEY)


async def test_relative_callback_url_is_not_sent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": {"url": "https://pay/x"}})

    link = await _client(handler).request_payment_link("o", Decimal("1"), "d", "/webhook/cryptomus")
    assert "url_callback" not in seen["body"]
    assert link.transaction_id is None


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(422, json={"message": "bad amount"}),
        httpx.Response(200, json={"result": {}}),
        httpx.Response(200, text="<html>oops</html>"),
    ],
)
async def test_rejected_invoice_raises_provider_error(response):
    with pytest.raises(ProviderError):
        await _client(lambda request: response).request_payment_link("o", Decimal("1"), "d")


async def test_network_failure_raises_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(ProviderError):
        await _client(handler).request_payment_link("o", Decimal("1"), "d")


async def test_missing_credentials():
    client = CryptomusClient(merchant_uuid="", api_key="", base_url="https://api.test")
    with pytest.raises(ProviderError):
        await client.request_payment_link("o", Decimal("1"), "d")
