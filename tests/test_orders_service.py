import asyncio
from decimal import Decimal

import pytest

from crystal_bot.core.errors_core import NotFoundError, ValidationError
from crystal_bot.services.coupons_service import (
    add_coupon,
    find_coupon,
    get_pending_coupon,
    remove_coupon,
    submit_coupon_code,
)
from crystal_bot.services.orders_service import (
    confirm_payment,
    create_order,
    get_latest_order_for_channel,
    get_order,
    record_payment_link_issued,
)

CHANNEL = "555"


async def _coupon_uses(session, code: str) -> int:
    from crystal_bot.crud.coupon_crud import CouponCRUD

    coupon = await CouponCRUD(session).get(code)
    return coupon.uses


async def test_order_without_coupon(session, product):
    created = await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product, buyer_tag="@buyer")
    order = created.order
    assert order.status == "pending"
    assert (order.product_id, order.product_name, order.product_price) == ("p1", "Crystal Pack", Decimal("20.00"))
    assert order.total_amount == Decimal("20.00")
    assert order.discount_amount == Decimal("0.00")
    assert order.coupon_code is None
    assert not created.coupon_applied


async def test_pending_coupon_applies_to_first_product_only(session, product, other_product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, CHANNEL, "save5")

    first = await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)
    assert first.coupon_applied
    assert first.order.coupon_code == "SAVE5"
    assert first.order.total_amount == Decimal("15.00")
    assert first.order.pricing_label == "SAVE5 (-$5.00)"
    assert await get_pending_coupon(session, CHANNEL) is None

    second = await create_order(session, channel_id=CHANNEL, buyer_id=7, product=other_product)
    assert not second.coupon_applied
    assert second.order.total_amount == Decimal("49.99")


async def test_pending_coupon_that_became_invalid_is_dropped(session, product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, CHANNEL, "SAVE5")
    await remove_coupon(session, "SAVE5")

    created = await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)
    assert created.coupon_dropped
    assert created.order.total_amount == Decimal("20.00")
    assert await get_pending_coupon(session, CHANNEL) is None


async def test_pending_coupon_is_scoped_to_its_channel(session, product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, "other-chat", "SAVE5")

    created = await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)
    assert created.order.coupon_code is None
    assert await get_pending_coupon(session, "other-chat") is not None


async def test_record_payment_link(session, product):
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)).order
    updated = await record_payment_link_issued(
        session, order.id, method="crypto", provider="cryptomus", url="https://pay/1", transaction_id="u1"
    )
    assert updated.status == "pending"
    assert (updated.payment_method, updated.payment_provider, updated.payment_url) == (
        "crypto",
        "cryptomus",
        "https://pay/1",
    )

    again = await record_payment_link_issued(
        session, order.id, method="stripe", provider="stripe", url="https://pay/2", transaction_id=None
    )
    assert again.payment_url == "https://pay/2"
    assert again.transaction_id is None


async def test_record_payment_link_errors(session, product):
    with pytest.raises(NotFoundError):
        await record_payment_link_issued(
            session, "missing", method="crypto", provider="cryptomus", url="https://x", transaction_id=None
        )
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)).order
    with pytest.raises(ValidationError):
        await record_payment_link_issued(
            session, order.id, method="paypal", provider="paypal", url="https://x", transaction_id=None
        )


async def test_confirm_payment_end_to_end_with_coupon(session, product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5, max_uses=5)
    await submit_coupon_code(session, CHANNEL, "SAVE5")
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)).order
    assert await _coupon_uses(session, "SAVE5") == 0

    confirmation = await confirm_payment(
        session, order.id, method="crypto", provider="cryptomus", transaction_id="tx-1", paid_amount="15.00"
    )
    assert confirmation is not None and confirmation.transitioned
    assert confirmation.coupon_use_recorded
    paid = confirmation.order
    assert paid.status == "paid"
    assert (paid.transaction_id, paid.paid_amount, paid.payment_provider) == ("tx-1", "15.00", "cryptomus")
    assert paid.paid_at is not None
    assert paid.coupon_usage_recorded
    assert await _coupon_uses(session, "SAVE5") == 1


async def test_duplicate_confirmation_changes_nothing(session, product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, CHANNEL, "SAVE5")
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)).order
    await confirm_payment(session, order.id, method="crypto", provider="cryptomus", transaction_id="tx-1", paid_amount="15")

    duplicate = await confirm_payment(
        session, order.id, method="stripe", provider="stripe", transaction_id="tx-2", paid_amount="$15.00"
    )
    assert duplicate is not None and not duplicate.transitioned
    assert duplicate.order.transaction_id == "tx-1"
    assert duplicate.order.payment_provider == "cryptomus"
    assert await _coupon_uses(session, "SAVE5") == 1


async def test_confirming_unknown_order_returns_none(session):
    assert (
        await confirm_payment(session, "nope", method="crypto", provider="cryptomus", transaction_id=None, paid_amount=None)
        is None
    )


async def test_concurrent_confirmations_transition_once(session, session_factory, product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, CHANNEL, "SAVE5")
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)).order

    async def confirm(tx: str):
        async with session_factory() as s:
            return await confirm_payment(
                s, order.id, method="crypto", provider="cryptomus", transaction_id=tx, paid_amount="15"
            )

    results = await asyncio.gather(*(confirm(f"tx-{i}") for i in range(6)))
    assert sum(1 for r in results if r.transitioned) == 1
    assert await _coupon_uses(session, "SAVE5") == 1

async def test_concurrent_orders_share_one_pending_coupon(session, session_factory, product, other_product):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, CHANNEL, "SAVE5")

    async def pick(p):
        async with session_factory() as s:
            return await create_order(s, channel_id=CHANNEL, buyer_id=7, product=p)

    results = await asyncio.gather(pick(product), pick(other_product))
    assert sum(1 for r in results if r.coupon_applied) <= 1
    assert sum(1 for r in results if r.order.coupon_code) <= 1
    assert await get_pending_coupon(session, CHANNEL) is None



async def test_exhausted_coupon_does_not_block_payment(session, session_factory, product, other_product):
    await add_coupon(session, code="ONE", kind="fixed", value=5, max_uses=1)
    await submit_coupon_code(session, "a", "ONE")
    await submit_coupon_code(session, "b", "ONE")
    first = (await create_order(session, channel_id="a", buyer_id=1, product=product)).order
    second = (await create_order(session, channel_id="b", buyer_id=2, product=other_product)).order
    assert first.coupon_code == second.coupon_code == "ONE"

    await confirm_payment(session, first.id, method="crypto", provider="cryptomus", transaction_id="t1", paid_amount="15")
    result = await confirm_payment(
        session, second.id, method="stripe", provider="stripe", transaction_id="t2", paid_amount="$44.99"
    )
    assert result.transitioned
    assert not result.coupon_use_recorded
    assert result.order.status == "paid"
    assert result.order.coupon_usage_recorded
    assert await _coupon_uses(session, "ONE") == 1
    assert await find_coupon(session, "ONE") is None


async def test_paid_order_keeps_payment_data_when_link_reissued(session, product):
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)).order
    await confirm_payment(session, order.id, method="crypto", provider="cryptomus", transaction_id="tx-1", paid_amount="20")
    after = await record_payment_link_issued(
        session, order.id, method="stripe", provider="stripe", url="https://late", transaction_id="cs_1"
    )
    assert after.status == "paid"
    assert after.payment_provider == "cryptomus"
    assert after.payment_url != "https://late"


async def test_latest_order_for_channel(session, product, other_product):
    await create_order(session, channel_id=CHANNEL, buyer_id=7, product=product)
    second = (await create_order(session, channel_id=CHANNEL, buyer_id=7, product=other_product)).order
    latest = await get_latest_order_for_channel(session, CHANNEL)
    assert latest.id == second.id
    assert (await get_order(session, second.id)).product_id == "p2"
