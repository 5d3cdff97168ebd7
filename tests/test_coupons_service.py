import asyncio
from decimal import Decimal

import pytest

from crystal_bot.core.errors_core import ValidationError
from crystal_bot.services.coupons_service import (
    add_coupon,
    describe_coupon,
    find_coupon,
    get_pending_coupon,
    list_coupons,
    record_coupon_use,
    remove_coupon,
    set_coupon_active,
    submit_coupon_code,
)


async def test_add_coupon_normalizes_code(session):
    coupon = await add_coupon(session, code="  save10 ", kind="Percent", value="10", max_uses=3)
    assert coupon.code == "SAVE10"
    assert coupon.kind == "percent"
    assert coupon.value == Decimal("10.00")
    assert coupon.uses == 0 and coupon.active

    found = await find_coupon(session, "Save10")
    assert found is not None and found.code == "SAVE10"


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"code": "", "kind": "fixed", "value": 5}, "Missing code"),
        ({"code": "A", "kind": "fixed", "value": 5}, "Code must be 2-32 chars (A-Z, 0-9, _ or -)"),
        ({"code": "BAD CODE", "kind": "fixed", "value": 5}, "Code must be 2-32 chars (A-Z, 0-9, _ or -)"),
        ({"code": "X" * 33, "kind": "fixed", "value": 5}, "Code must be 2-32 chars (A-Z, 0-9, _ or -)"),
        ({"code": "OK1", "kind": "bogo", "value": 5}, "Type must be fixed or percent"),
        ({"code": "OK1", "kind": "fixed", "value": 0}, "Value must be > 0"),
        ({"code": "OK1", "kind": "fixed", "value": "abc"}, "Value must be > 0"),
        ({"code": "OK1", "kind": "percent", "value": 101}, "Percent cannot exceed 100"),
        ({"code": "OK1", "kind": "fixed", "value": "1e30"}, "Value is too large"),
        ({"code": "OK1", "kind": "fixed", "value": "1e15"}, "Value is too large"),
        ({"code": "OK1", "kind": "fixed", "value": 5, "max_uses": -1}, "maxUses must be >= 0 (0 = unlimited)"),
        ({"code": "OK1", "kind": "fixed", "value": 5, "max_uses": 1.5}, "maxUses must be >= 0 (0 = unlimited)"),
    ],
)
async def test_add_coupon_rejects_bad_input(session, kwargs, message):
    with pytest.raises(ValidationError) as exc_info:
        await add_coupon(session, **kwargs)
    assert exc_info.value.message == message
    assert await list_coupons(session) == []


async def test_duplicate_code_is_rejected_case_insensitively(session):
    await add_coupon(session, code="WELCOME", kind="fixed", value=5)
    with pytest.raises(ValidationError, match="already exists"):
        await add_coupon(session, code="welcome", kind="percent", value=10)


async def test_exhausted_and_inactive_coupons_are_not_found(session):
    await add_coupon(session, code="ONCE", kind="fixed", value=5, max_uses=1)
    assert await record_coupon_use(session, "once") is True
    assert await find_coupon(session, "ONCE") is None
    assert await record_coupon_use(session, "ONCE") is False

    await add_coupon(session, code="OFF", kind="fixed", value=5)
    assert await set_coupon_active(session, "OFF", False) is True
    assert await find_coupon(session, "OFF") is None


async def test_unlimited_coupon_keeps_counting(session):
    await add_coupon(session, code="FOREVER", kind="percent", value=5, max_uses=0)
    for _ in range(3):
        assert await record_coupon_use(session, "FOREVER")
    coupon = await find_coupon(session, "FOREVER")
    assert coupon is not None and coupon.uses == 3
    assert describe_coupon(coupon) == "FOREVER | percent 5% | uses 3/∞ | active"


async def test_concurrent_uses_never_exceed_cap(session, session_factory):
    await add_coupon(session, code="LIMIT3", kind="fixed", value=1, max_uses=3)

    async def use_once() -> bool:
        async with session_factory() as s:
            return await record_coupon_use(s, "LIMIT3")

    results = await asyncio.gather(*(use_once() for _ in range(8)))
    assert results.count(True) == 3

    async with session_factory() as s:
        coupons = await list_coupons(s)
    assert coupons[0].uses == 3


async def test_remove_coupon(session):
    await add_coupon(session, code="GONE", kind="fixed", value=2)
    assert await remove_coupon(session, "gone") is True
    assert await remove_coupon(session, "gone") is False
    assert await find_coupon(session, "GONE") is None


async def test_submit_coupon_code_stores_pending_snapshot(session):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5, max_uses=10)

    snapshot = await submit_coupon_code(session, "42", " save5 ")
    assert snapshot is not None and snapshot.code == "SAVE5"

    pending = await get_pending_coupon(session, "42")
    assert pending is not None
    assert (pending.code, pending.kind, pending.value, pending.max_uses) == ("SAVE5", "fixed", Decimal("5.00"), 10)


async def test_invalid_code_keeps_previous_pending_coupon(session):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await submit_coupon_code(session, "42", "SAVE5")

    assert await submit_coupon_code(session, "42", "NOPE") is None
    pending = await get_pending_coupon(session, "42")
    assert pending is not None and pending.code == "SAVE5"


async def test_new_code_replaces_pending_coupon(session):
    await add_coupon(session, code="SAVE5", kind="fixed", value=5)
    await add_coupon(session, code="TEN", kind="percent", value=10)
    await submit_coupon_code(session, "42", "SAVE5")
    first = await get_pending_coupon(session, "42")
    first_token = first.token

    await submit_coupon_code(session, "42", "TEN")
    pending = await get_pending_coupon(session, "42")
    assert pending.code == "TEN"
    assert pending.token != first_token


async def test_code_format_boundaries(session):
    assert (await add_coupon(session, code="ab", kind="fixed", value=1)).code == "AB"
    with pytest.raises(ValidationError):
        await add_coupon(session, code="50%OFF", kind="percent", value=50)
    await add_coupon(session, code="save10", kind="percent", value=10)
    with pytest.raises(ValidationError, match="Coupon already exists"):
        await add_coupon(session, code="SAVE10", kind="percent", value=10)
