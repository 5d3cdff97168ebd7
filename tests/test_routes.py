import hashlib
import hmac
import json
import time

import httpx
import pytest

from crystal_bot import create_app
from crystal_bot.core.system_locks import LockViolation
from crystal_bot.integrations import cryptomus_api
from crystal_bot.integrations import stripe_api
from crystal_bot.integrations.cryptomus_api import make_sign
from crystal_bot.routes import webhook_routes
from crystal_bot.services.orders_service import create_order, get_order

ADMIN = {"X-Admin-Api-Key": "test-admin-key"}


@pytest.fixture
async def client(db, gateway, notifier):
    app = create_app(chat_gateway=gateway, providers={}, notifier=notifier)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def order(session, product):
    return (await create_order(session, channel_id="31", buyer_id=31, product=product)).order


# -----------------------------------------------------------------------------
# Cryptomus
# -----------------------------------------------------------------------------
async def test_cryptomus_webhook_confirms_once(client, session, order, notifier):
    payload = {"order_id": order.id, "status": "paid", "uuid": "u-1", "amount": "20.00"}

    first = await client.post("/webhook/cryptomus", json=payload)
    second = await client.post("/webhook/cryptomus", json=payload)

    assert first.status_code == 200 and first.json() == {"ok": True, "status": "confirmed"}
    assert second.status_code == 200 and second.json() == {"ok": True, "status": "duplicate"}
    assert notifier.notified == [order.id]
    paid = await get_order(session, order.id)
    assert (paid.status, paid.transaction_id, paid.paid_amount) == ("paid", "u-1", "20.00")


@pytest.mark.parametrize(
    "body, status",
    [
        ({"status": "paid"}, "ignored_no_order_id"),
        ({"order_id": "unknown", "status": "paid"}, "ignored_unknown_order"),
        ([1, 2, 3], "ignored_no_order_id"),
    ],
)
async def test_cryptomus_webhook_ignored_cases(client, body, status):
    response = await client.post("/webhook/cryptomus", json=body)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": status}


async def test_cryptomus_webhook_not_paid_status(client, session, order):
    response = await client.post("/webhook/cryptomus", json={"order_id": order.id, "status": "check"})
    assert response.json()["status"] == "ignored_not_paid"
    assert (await get_order(session, order.id)).status == "pending"


async def test_cryptomus_webhook_non_json_body(client):
    response = await client.post("/webhook/cryptomus", content=b"not json")
    assert response.status_code == 200
    assert response.json()["status"] == "ignored_no_order_id"


async def test_cryptomus_webhook_signature(client, session, order, monkeypatch):
    monkeypatch.setattr(cryptomus_api.settings, "CRYPTOMUS_API_KEY", "crypto-key")
    body = {"order_id": order.id, "status": "paid", "uuid": "u-9"}

    forged = await client.post("/webhook/cryptomus", json={**body, "sign": "0" * 32})
    assert forged.status_code == 200
    assert forged.json()["status"] == "untrusted"
    assert (await get_order(session, order.id)).status == "pending"

    signed = await client.post("/webhook/cryptomus", json={**body, "sign": make_sign(body, "crypto-key")})
    assert signed.json()["status"] == "confirmed"


# -----------------------------------------------------------------------------
# Stripe
# -----------------------------------------------------------------------------
def _stripe_event(order_id: str) -> dict:
    return {
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "object": "checkout.session",
                "payment_intent": "pi_1",
                "amount_total": 2000,
                "metadata": {"orderId": order_id},
            }
        },
    }


async def test_stripe_webhook_unsigned_mode(client, session, order):
    response = await client.post("/webhook/stripe", json=_stripe_event(order.id))
    assert response.json() == {"ok": True, "status": "confirmed"}
    paid = await get_order(session, order.id)
    assert (paid.payment_method, paid.transaction_id, paid.paid_amount) == ("stripe", "pi_1", "$20.00")


async def test_stripe_webhook_bad_signature_is_untrusted(client, session, order, monkeypatch):
    monkeypatch.setattr(stripe_api.settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    response = await client.post(
        "/webhook/stripe",
        content=json.dumps(_stripe_event(order.id)),
        headers={"Stripe-Signature": "t=1,v1=deadbeef"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "untrusted"
    assert (await get_order(session, order.id)).status == "pending"


async def test_stripe_webhook_valid_signature(client, session, order, monkeypatch):
    secret = "whsec_test"
    monkeypatch.setattr(stripe_api.settings, "STRIPE_WEBHOOK_SECRET", secret)
    payload = json.dumps(_stripe_event(order.id))
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()

    response = await client.post(
        "/webhook/stripe",
        content=payload,
        headers={"Stripe-Signature": f"t={timestamp},v1={signature}"},
    )
    assert response.json()["status"] == "confirmed"


async def test_stripe_other_event_is_ignored(client, order):
    event = _stripe_event(order.id)
    event["type"] = "checkout.session.expired"
    response = await client.post("/webhook/stripe", json=event)
    assert response.json()["status"] == "ignored_not_paid"


@pytest.mark.parametrize("error", [RuntimeError("boom"), LockViolation("status drift")])
async def test_webhook_acks_when_reconciliation_crashes(client, order, monkeypatch, error):
    async def crash(*args, **kwargs):
        raise error

    monkeypatch.setattr(webhook_routes, "reconcile_webhook", crash)
    for path in ("/webhook/cryptomus", "/webhook/stripe"):
        body = {"order_id": order.id, "status": "paid"} if "cryptomus" in path else _stripe_event(order.id)
        response = await client.post(path, json=body)
        assert response.status_code == 200
        assert response.json() == {"ok": True, "status": "error"}


# -----------------------------------------------------------------------------
# Admin API / health / return pages
# -----------------------------------------------------------------------------
async def test_admin_api_requires_key(client):
    assert (await client.get("/admin/coupons")).status_code == 401
    assert (await client.get("/admin/coupons", headers={"X-Admin-Api-Key": "wrong"})).status_code == 401


async def test_admin_coupon_lifecycle(client):
    created = await client.post(
        "/admin/coupons", headers=ADMIN, json={"code": "spring", "kind": "percent", "value": "15", "max_uses": 2}
    )
    assert created.status_code == 201
    assert created.json()["code"] == "SPRING"
    assert created.json()["value"] == "15.00"

    listed = await client.get("/admin/coupons", headers=ADMIN)
    assert [c["code"] for c in listed.json()] == ["SPRING"]

    bad = await client.post("/admin/coupons", headers=ADMIN, json={"code": "X", "kind": "fixed", "value": 1})
    assert bad.status_code == 422
    assert bad.json()["message"] == "Code must be 2-32 chars (A-Z, 0-9, _ or -)"

    assert (await client.delete("/admin/coupons/spring", headers=ADMIN)).status_code == 200
    missing = await client.delete("/admin/coupons/spring", headers=ADMIN)
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


async def test_admin_coupon_toggle(client):
    await client.post("/admin/coupons", headers=ADMIN, json={"code": "flip", "kind": "fixed", "value": "3"})

    off = await client.patch("/admin/coupons/flip", headers=ADMIN, json={"active": False})
    assert off.status_code == 200
    assert off.json()["active"] is False

    on = await client.patch("/admin/coupons/FLIP", headers=ADMIN, json={"active": True})
    assert on.json()["active"] is True

    assert (await client.patch("/admin/coupons/ghost", headers=ADMIN, json={"active": True})).status_code == 404


async def test_admin_recent_orders(client, session, product, other_product):
    first = (await create_order(session, channel_id="41", buyer_id=41, product=product)).order
    second = (await create_order(session, channel_id="42", buyer_id=42, product=other_product)).order

    response = await client.get("/admin/orders", headers=ADMIN, params={"limit": 10})
    assert response.status_code == 200
    ids = [o["id"] for o in response.json()]
    assert set(ids) == {first.id, second.id}

    assert (await client.get("/admin/orders", headers=ADMIN, params={"limit": 0})).status_code == 422


async def test_admin_order_lookup(client, order):
    found = await client.get(f"/admin/orders/{order.id}", headers=ADMIN)
    assert found.status_code == 200
    assert found.json()["total_amount"] == "20.00"
    assert found.json()["status"] == "pending"
    assert (await client.get("/admin/orders/nope", headers=ADMIN)).status_code == 404


async def test_health(client):
    response = await client.get("/health")
    data = response.json()
    assert response.status_code == 200
    assert data["db"] is True
    assert data["services"]["products"] == 2
    assert data["services"]["providers"] == []


async def test_checkout_return_pages(client):
    assert "Payment received" in (await client.get("/success?order=1")).text
    assert "Payment cancelled" in (await client.get("/cancel?order=1")).text
