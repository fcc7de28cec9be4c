import json

import pytest

from common.factories import make_item_input, make_promotion
from prexiopa.models import LineItem, ShoppingSession

LINE_KEYS = {
    "id", "product_id", "product_name", "price", "quantity", "unit", "notes",
    "tax_rate_code", "tax_rate", "price_includes_tax", "base_price", "tax_amount",
    "subtotal", "applied_promotion_id", "original_price", "discount_amount",
}


@pytest.mark.contract
def test_line_item_record_shape(store):
    # 契约测试：持久化记录的键集合
    item = store.add_item(make_item_input(price=10.70))
    d = item.to_dict()
    assert set(d.keys()) == LINE_KEYS
    assert LineItem.from_dict(d) == item


@pytest.mark.contract
def test_session_record_shape(store):
    store.start_session(store_id="S1", store_name="Super 99")
    store.add_item(make_item_input(price=10.70))
    store.add_item(make_item_input(price=5.00, tax_rate_code="exempt"))
    d = store.current_session.to_dict()
    assert {"id", "store_id", "date", "status", "items", "total", "tax_breakdown"}.issubset(d)
    assert d["status"] == "in_progress"
    assert d["subtotal_before_tax"] == 15.00
    assert set(d["tax_breakdown"]) == {"general", "exempt"}
    assert isinstance(d["items"], list)


@pytest.mark.contract
def test_session_survives_json_round_trip(store):
    item = store.add_item(make_item_input(price=5.35, quantity=3))
    store.apply_promotion(item.id, make_promotion("buy_x_get_y", buy_quantity=3, pay_quantity=2))
    session = store.current_session
    restored = ShoppingSession.from_dict(json.loads(json.dumps(session.to_dict())))
    assert restored.items == session.items
    assert restored.total == session.total == 10.70


@pytest.mark.contract
def test_record_aggregates_are_not_trusted():
    # 记录中的汇总值被忽略，始终由 items 推导
    record = {"id": "s", "date": "2026-10-18", "items": [], "total": 999.0, "status": "completed"}
    session = ShoppingSession.from_dict(record)
    assert session.total == 0.0
    assert session.is_terminal
