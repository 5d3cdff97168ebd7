import json
from decimal import Decimal

import pytest
from pydantic import ValidationError as CatalogError

from crystal_bot.bot.keyboards import parse_pay_callback, payment_methods_keyboard, products_keyboard
from crystal_bot.core.errors_core import NotFoundError
from crystal_bot.services.catalog_service import get_product, list_products


def test_catalog_loads_products():
    products = list_products()
    assert [p.id for p in products] == ["p1", "p2"]
    assert products[1].price == Decimal("49.99")
    assert products[0].button_label == "💎 Crystal Pack - $20.00"


def test_unknown_product():
    with pytest.raises(NotFoundError):
        get_product("missing")


def test_duplicate_ids_are_rejected(tmp_path):
    path = tmp_path / "dup.json"
    path.write_text(json.dumps([{"id": "a", "name": "A", "price": 1}, {"id": "a", "name": "B", "price": 2}]))
    with pytest.raises(CatalogError):
        list_products(str(path))


def test_missing_file_is_empty_catalog(tmp_path):
    assert list_products(str(tmp_path / "nope.json")) == []


def test_keyboards_round_trip_callback_data():
    markup = payment_methods_keyboard("order-1", ["crypto", "stripe"])
    datas = [b.callback_data for b in markup.inline_keyboard[0]]
    assert datas == ["pay:crypto:order-1", "pay:stripe:order-1"]
    assert parse_pay_callback(datas[1]) == ("stripe", "order-1")

    rows = products_keyboard(list_products()).inline_keyboard
    assert [row[0].callback_data for row in rows] == ["prod:p1", "prod:p2"]
