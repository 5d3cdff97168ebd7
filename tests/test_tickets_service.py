import pytest

from crystal_bot.core.errors_core import NotFoundError
from crystal_bot.integrations.chat_gateway import ChatUser
from crystal_bot.services.orders_service import confirm_payment, create_order
from crystal_bot.services.tickets_service import (
    build_transcript,
    close_silently,
    deliver_and_close,
    get_open_ticket,
    open_ticket,
    open_ticket_for_user,
    record_message,
    register_force_close,
)

CHANNEL = "777"
LOG_CHANNEL = "-100100"
TRANSCRIPT_CHANNEL = "-100200"


async def _open(session):
    ticket, created = await open_ticket(session, buyer_id=777, buyer_tag="@buyer", channel_id=CHANNEL)
    return ticket, created


async def test_open_ticket_is_idempotent(session):
    ticket, created = await _open(session)
    assert created and ticket.is_open
    again, created_again = await _open(session)
    assert not created_again
    assert again.channel_id == ticket.channel_id


async def test_messages_are_logged_only_for_open_tickets(session):
    assert not await record_message(session, channel_id=CHANNEL, author_id=777, author_tag="@buyer", text="hi")
    await _open(session)
    assert await record_message(session, channel_id=CHANNEL, author_id=777, author_tag="@buyer", text="hello\nthere")

    transcript = await build_transcript(session, CHANNEL)
    lines = transcript.splitlines()
    assert lines[0] == "Ticket Transcript"
    assert "Buyer: @buyer (777)" in transcript
    assert lines[-1].endswith("@buyer (777): hello\\nthere")


async def test_transcript_keeps_latest_messages(session, monkeypatch):
    from crystal_bot.services import tickets_service

    monkeypatch.setattr(tickets_service.settings, "TRANSCRIPT_MAX_MESSAGES", 3)
    await _open(session)
    for i in range(5):
        await record_message(session, channel_id=CHANNEL, author_id=777, author_tag="@buyer", text=f"m{i}")

    transcript = await build_transcript(session, CHANNEL)
    assert "m0" not in transcript and "m1" not in transcript
    assert "m2" in transcript and "m4" in transcript
    assert transcript.endswith("(Transcript truncated at 3 messages)")


async def test_unpaid_order_needs_repeated_confirmation(session, gateway, product):
    await _open(session)
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=777, product=product)).order

    first = await deliver_and_close(session, CHANNEL, gateway)
    assert not first.closed
    assert (first.confirmations, first.required) == (1, 2)
    assert gateway.documents == []

    second = await deliver_and_close(session, CHANNEL, gateway)
    assert second.closed
    assert second.order.id == order.id
    assert await get_open_ticket(session, CHANNEL) is None


async def test_paid_order_is_delivered_immediately(session, gateway, product):
    await _open(session)
    await record_message(session, channel_id=CHANNEL, author_id=777, author_tag="@buyer", text="where is my pack?")
    order = (await create_order(session, channel_id=CHANNEL, buyer_id=777, product=product)).order
    await confirm_payment(session, order.id, method="stripe", provider="stripe", transaction_id="pi_1", paid_amount="$20.00")

    result = await deliver_and_close(session, CHANNEL, gateway)
    assert result.closed and result.invoice_sent

    invoice = next(d for d in gateway.documents if d["channel_id"] == "777")
    assert invoice["path"].name.startswith("INV-")
    assert order.id in invoice["caption"]

    summary = gateway.sent_to(LOG_CHANNEL)
    assert len(summary) == 1 and "New Completed Order" in summary[0]

    transcript = next(d for d in gateway.documents if d["channel_id"] == TRANSCRIPT_CHANNEL)
    assert b"where is my pack?" in transcript["content"]
    assert transcript["filename"] == f"transcript-{CHANNEL}.txt"

    assert gateway.sent_to(CHANNEL)[-1].startswith("✅ Order delivered")


async def test_closing_resets_force_close_counter(session, gateway, product):
    await _open(session)
    await create_order(session, channel_id=CHANNEL, buyer_id=777, product=product)
    assert await register_force_close(session, CHANNEL) == 1

    assert await close_silently(session, CHANNEL, gateway)
    ticket, created = await _open(session)
    assert created
    assert ticket.force_close_confirmations == 0

    first = await deliver_and_close(session, CHANNEL, gateway)
    assert not first.closed and first.confirmations == 1


async def test_ticket_without_orders_closes_on_first_request(session, gateway):
    await _open(session)
    result = await deliver_and_close(session, CHANNEL, gateway)
    assert result.closed
    assert result.order is None
    assert gateway.sent_to(LOG_CHANNEL) == []


async def test_closing_unknown_ticket(session, gateway):
    with pytest.raises(NotFoundError):
        await deliver_and_close(session, "nope", gateway)
    with pytest.raises(NotFoundError):
        await close_silently(session, "nope", gateway)
    with pytest.raises(NotFoundError):
        await register_force_close(session, "nope")


async def test_admin_opens_ticket_for_reachable_user(session, gateway):
    gateway.users[77] = ChatUser(id=77, tag="@buyer77")

    ticket, created = await open_ticket_for_user(session, 77, gateway)
    assert created
    assert (ticket.channel_id, ticket.buyer_id, ticket.buyer_tag) == ("77", 77, "@buyer77")

    _, again = await open_ticket_for_user(session, 77, gateway)
    assert not again

    with pytest.raises(NotFoundError):
        await open_ticket_for_user(session, 78, gateway)
