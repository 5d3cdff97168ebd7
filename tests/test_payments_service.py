import asyncio

import pytest

from crystal_bot.core.errors_core import NotFoundError, ProviderError
from crystal_bot.integrations.invoice_pdf import invoice_path
from crystal_bot.services.coupons_service import add_coupon, submit_coupon_code
from crystal_bot.services.orders_service import confirm_payment, create_order, get_order
from crystal_bot.services.payments_service import (
    PaidNotifier,
    WebhookOutcome,
    issue_payment_link,
    normalize_cryptomus,
    normalize_stripe,
    paid_message,
    reconcile_webhook,
)

from .conftest import FakeNotifier, FakeProvider


def _cryptomus_event(order_id, status="paid", **extra):
    return normalize_cryptomus({"order_id": order_id, "status": status, "uuid": "u-1", "amount": "20.00", **extra})


# -----------------------------------------------------------------------------
# Нормализация
# -----------------------------------------------------------------------------
@pytest.mark.parametrize("status, paid", [("paid", True), ("PAID_OVER", True), ("paid_partial", True),
                                          ("check", False), ("cancel", False), ("", False)])
def test_normalize_cryptomus_status(status, paid):
    event = normalize_cryptomus({"order_id": "o1", "status": status})
    assert event.is_paid_status is paid
    assert event.provider_name == "cryptomus"
    assert event.method == "crypto"


def test_normalize_cryptomus_transaction_fallbacks():
    assert normalize_cryptomus({"order_id": "o1", "txid": "0xabc"}).transaction_id == "0xabc"
    assert normalize_cryptomus({"order_id": "o1", "payment_uuid": "p"}).transaction_id == "p"
    assert normalize_cryptomus({"status": "paid"}).order_id is None
    assert normalize_cryptomus(["not", "a", "dict"]) is None


def test_normalize_stripe_checkout_completed():
    event = normalize_stripe(
        {
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_1",
                    "payment_intent": "pi_1",
                    "amount_total": 1250,
                    "metadata": {"orderId": "o1"},
                }
            },
        }
    )
    assert event.order_id == "o1"
    assert event.is_paid_status
    assert event.transaction_id == "pi_1"
    assert event.paid_amount == "$12.50"
    assert event.method == "stripe"


def test_normalize_stripe_other_events_are_not_paid():
    event = normalize_stripe({"type": "checkout.session.expired", "data": {"object": {"id": "cs_2", "metadata": {}}}})
    assert event.order_id is None
    assert not event.is_paid_status
    assert event.transaction_id == "cs_2"
    assert normalize_stripe({"type": "x"}) is None


# -----------------------------------------------------------------------------
# Выдача ссылки
# -----------------------------------------------------------------------------
async def test_issue_payment_link_records_provider_data(session, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    provider = FakeProvider("cryptomus")

    issued = await issue_payment_link(session, order.id, "crypto", {"crypto": provider})
    assert issued.link.external_url == f"https://pay.test/{order.id}"
    assert issued.order.payment_url == issued.link.external_url
    assert issued.order.payment_provider == "cryptomus"
    assert issued.order.status == "pending"
    call = provider.calls[0]
    assert call["amount"] == order.total_amount
    assert call["callback_url"] == "https://store.test/webhook/cryptomus"
    assert "Crystal Pack" in call["description"]


async def test_stripe_link_gets_no_callback_url(session, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    provider = FakeProvider("stripe")
    await issue_payment_link(session, order.id, "stripe", {"stripe": provider})
    assert provider.calls[0]["callback_url"] is None


async def test_provider_error_leaves_order_without_link(session, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    provider = FakeProvider("cryptomus", error=ProviderError("down", provider="cryptomus"))

    with pytest.raises(ProviderError):
        await issue_payment_link(session, order.id, "crypto", {"crypto": provider})
    reloaded = await get_order(session, order.id)
    assert reloaded.status == "pending"
    assert reloaded.payment_url is None


async def test_unconfigured_method_is_a_provider_error(session, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    with pytest.raises(ProviderError):
        await issue_payment_link(session, order.id, "stripe", {})


async def test_issue_link_for_unknown_order(session):
    with pytest.raises(NotFoundError):
        await issue_payment_link(session, "missing", "crypto", {"crypto": FakeProvider()})


async def test_paid_order_gets_no_new_link(session, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    await confirm_payment(session, order.id, method="crypto", provider="cryptomus", transaction_id="t", paid_amount="20")
    provider = FakeProvider()

    issued = await issue_payment_link(session, order.id, "crypto", {"crypto": provider})
    assert issued.already_paid
    assert issued.link is None
    assert provider.calls == []


# -----------------------------------------------------------------------------
# Сверка вебхуков
# -----------------------------------------------------------------------------
async def test_reconcile_outcomes(session, session_factory, product, notifier):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order

    assert await reconcile_webhook(session_factory, None, notifier) is WebhookOutcome.IGNORED_NO_ORDER_ID
    assert await reconcile_webhook(session_factory, _cryptomus_event(None), notifier) is WebhookOutcome.IGNORED_NO_ORDER_ID
    assert (
        await reconcile_webhook(session_factory, _cryptomus_event(order.id, "check"), notifier)
        is WebhookOutcome.IGNORED_NOT_PAID
    )
    assert (
        await reconcile_webhook(session_factory, _cryptomus_event("unknown"), notifier)
        is WebhookOutcome.IGNORED_UNKNOWN_ORDER
    )
    assert notifier.notified == []

    assert await reconcile_webhook(session_factory, _cryptomus_event(order.id), notifier) is WebhookOutcome.CONFIRMED
    assert await reconcile_webhook(session_factory, _cryptomus_event(order.id), notifier) is WebhookOutcome.DUPLICATE
    assert notifier.notified == [order.id]


async def test_concurrent_webhooks_notify_once(session, session_factory, product, notifier):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, "9", "SAVE5")
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order

    outcomes = await asyncio.gather(
        *(reconcile_webhook(session_factory, _cryptomus_event(order.id), notifier) for _ in range(5))
    )
    assert outcomes.count(WebhookOutcome.CONFIRMED) == 1
    assert outcomes.count(WebhookOutcome.DUPLICATE) == 4
    assert notifier.notified == [order.id]


async def test_notifier_failure_does_not_undo_payment(session, session_factory, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    failing = FakeNotifier(error=RuntimeError("telegram is down"))

    outcome = await reconcile_webhook(session_factory, _cryptomus_event(order.id), failing)
    assert outcome is WebhookOutcome.CONFIRMED
    assert (await get_order(session, order.id)).status == "paid"


async def test_slow_notifier_times_out(session, session_factory, product):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order

    class SlowNotifier:
        async def notify_paid(self, order):
            await asyncio.sleep(10)

    outcome = await reconcile_webhook(session_factory, _cryptomus_event(order.id), SlowNotifier())
    assert outcome is WebhookOutcome.CONFIRMED


# -----------------------------------------------------------------------------
# Уведомление об оплате
# -----------------------------------------------------------------------------
async def test_paid_notifier_renders_invoice_and_posts(session, product, gateway, tmp_path):
    order = (await create_order(session, channel_id="9", buyer_id=9, product=product)).order
    confirmation = await confirm_payment(
        session, order.id, method="crypto", provider="cryptomus", transaction_id="t", paid_amount="20.00"
    )
    notifier = PaidNotifier(gateway, store_name="Test Store", invoices_dir=tmp_path, owner_id=1000, log_channel_id="-1")

    await notifier.notify_paid(confirmation.order)

    assert invoice_path(order.id, tmp_path).exists()
    ticket_messages = gateway.sent_to("9")
    assert len(ticket_messages) == 1
    assert "Payment Received" in ticket_messages[0]
    assert "$20.00" in ticket_messages[0]
    assert "/dn 9" in ticket_messages[0]
    assert len(gateway.sent_to("-1")) == 1


def test_paid_message_escapes_html():
    class _Order:
        id = "o<1>"
        product_name = "A & B"
        total_amount = 5
        coupon_code = None
        payment_method = "stripe"
        channel_id = "9"

    text = paid_message(_Order())
    assert "A &amp; B" in text
    assert "o&lt;1&gt;" in text
    assert "/dn" not in text
