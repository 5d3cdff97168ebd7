"""Shared fixtures: isolated settings, a fresh SQLite database per test and chat/provider fakes."""

from __future__ import annotations

import json
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

_TMP = Path(tempfile.mkdtemp(prefix="crystal-tests-"))
_PRODUCTS = _TMP / "products.json"
_PRODUCTS.write_text(
    json.dumps(
        [
            {"id": "p1", "name": "Crystal Pack", "price": "20.00", "emoji": "💎", "delivery": "5 minutes"},
            {"id": "p2", "name": "Mega Pack", "price": "49.99", "emoji": "👑", "delivery": "1 hour"},
        ]
    ),
    encoding="utf-8",
)

# Настройки читаются один раз при импорте crystal_bot, поэтому окружение
# задаётся до любых импортов пакета.
os.environ.update(
    {
        "ENV": "test",
        "DATABASE_URL": f"sqlite+aiosqlite:///{_TMP / 'bootstrap.db'}",
        "PRODUCTS_FILE": str(_PRODUCTS),
        "INVOICES_DIR": str(_TMP / "invoices"),
        "ADMIN_API_KEY": "test-admin-key",
        "OWNER_ID": "1000",
        "ADMIN_IDS": "1001",
        "LOG_CHANNEL_ID": "-100100",
        "LOG_TRANSCRIPT_CHANNEL_ID": "-100200",
        "FORCE_CLOSE_CONFIRMATIONS": "2",
        "PUBLIC_BASE_URL": "https://store.test",
        "DOWNSTREAM_TIMEOUT_SEC": "1",
        "LOG_JSON": "false",
    }
)
for _name in ("BOT_TOKEN", "TELEGRAM_BOT_TOKEN", "CRYPTOMUS_API_KEY", "CRYPTOMUS_MERCHANT_UUID",
              "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"):
    os.environ.pop(_name, None)

import pytest  # noqa: E402

from crystal_bot.core.database_core import (  # noqa: E402
    create_all,
    dispose_engine,
    get_session_factory,
    init_engine,
)
from crystal_bot.integrations.providers import PaymentLink  # noqa: E402
from crystal_bot.services.catalog_service import get_product  # noqa: E402


class FakeChatGateway:
    """Запоминает все отправки вместо Telegram."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []
        self.documents: List[Dict[str, Any]] = []
        self.users: Dict[int, Any] = {}

    async def send_message(self, channel_id, text, *, reply_markup=None) -> bool:
        self.messages.append({"channel_id": str(channel_id), "text": text})
        return True

    async def send_document(self, channel_id, *, path=None, content=None, filename=None, caption=None) -> bool:
        self.documents.append(
            {
                "channel_id": str(channel_id),
                "path": path,
                "content": content,
                "filename": filename,
                "caption": caption,
            }
        )
        return True

    async def fetch_user(self, user_id: int):
        return self.users.get(int(user_id))

    async def create_private_channel(self, user_id: int) -> Optional[str]:
        return str(user_id) if int(user_id) in self.users else None

    def sent_to(self, channel_id: str) -> List[str]:
        return [m["text"] for m in self.messages if m["channel_id"] == str(channel_id)]


class FakeProvider:
    """Платёжный провайдер с предсказуемыми ссылками."""

    def __init__(self, name: str = "cryptomus", *, error: Optional[Exception] = None) -> None:
        self.name = name
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def request_payment_link(
        self,
        order_id: str,
        amount: Decimal,
        description: str,
        callback_url: Optional[str] = None,
    ) -> PaymentLink:
        self.calls.append(
            {"order_id": order_id, "amount": amount, "description": description, "callback_url": callback_url}
        )
        if self.error is not None:
            raise self.error
        return PaymentLink(external_url=f"https://pay.test/{order_id}", transaction_id=f"tx-{order_id[:8]}")


class FakeNotifier:
    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.error = error
        self.notified: List[str] = []

    async def notify_paid(self, order) -> None:
        self.notified.append(order.id)
        if self.error is not None:
            raise self.error


@pytest.fixture
async def db(tmp_path):
    init_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await create_all()
    yield
    await dispose_engine()


@pytest.fixture
def session_factory(db):
    return get_session_factory()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def gateway() -> FakeChatGateway:
    return FakeChatGateway()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def product():
    return get_product("p1")


@pytest.fixture
def other_product():
    return get_product("p2")
