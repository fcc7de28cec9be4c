import json

import pytest

from common.factories import make_item_input
from prexiopa.config import Settings
from prexiopa.promotions import (
    PromotionContext,
    PromotionStatus,
    PromotionType,
    calculate_effective_discount,
    decode_promotion,
    describe_promotion,
)
from prexiopa.session import build_line_item


def _record(ptype, details, **extra):
    # 与后端持久化的促销记录同形：含审核字段，缺省的可选字段直接省略
    record = {
        "id": f"uuid-{ptype}",
        "name": ptype,
        "description": None,
        "promotion_type": ptype,
        "store_id": "store-1",
        "store_name": "Super 99",
        "start_date": "2026-10-01",
        "end_date": None,
        "is_indefinite": True,
        "details": details,
        "contributor_id": "user-1",
        "status": "verified",
        "reviewed_by": None,
        "reviewed_at": None,
        "rejection_reason": None,
        "verification_count": 4,
    }
    record.update(extra)
    # 经过一次 JSON 往返，与从存储读取时一致
    return json.loads(json.dumps(record))


def _line(pid, quantity, price):
    return build_line_item(make_item_input(name=pid, price=price, quantity=quantity, product_id=pid), Settings())


RECORDS = [
    # (类型, details, 单价, 数量, 上下文, 期望折扣, 期望描述)
    ("percentage", {"discount_percent": 15}, 10.00, 2, None, 3.00, "15% de descuento"),
    (
        "fixed_amount",
        {"original_price": 6.99, "promo_price": 4.99},
        6.99, 2, None, 4.00, "Precio especial: $4.99",
    ),
    ("fixed_amount", {"discount_amount": 2.0}, 6.99, 1, None, 2.00, "$2.00 de descuento"),
    (
        "buy_x_get_y",
        {"buy_quantity": 3, "get_quantity": 1, "pay_quantity": 2},
        5.00, 3, None, 5.00, "Lleva 3, paga 2",
    ),
    (
        "buy_x_get_y",
        {"buy_quantity": 2, "get_quantity": 1, "pay_quantity": 1},
        5.00, 4, None, 10.00, "Lleva 2, paga 1",
    ),
    (
        "bulk_price",
        {"min_quantity": 4, "unit_price": 0.76, "regular_price": 0.80},
        0.80, 4, None, 0.16, "Lleva 4+ a $0.76 c/u",
    ),
    (
        "bundle_free",
        {
            "required_products": ["uuid-nachos"],
            "required_product_names": ["Nachos"],
            "free_product_id": "uuid-queso",
            "free_product_name": "Queso",
        },
        2.00, 1,
        PromotionContext(session_items=(_line("uuid-nachos", 1, 1.07), _line("uuid-queso", 1, 2.14))),
        2.00, "Llévate Queso gratis",
    ),
    (
        "coupon",
        {"coupon_code": "SUMMER20", "discount_percent": 20},
        10.00, 1, PromotionContext(coupon_code="summer20"), 2.00, "Cupón: SUMMER20",
    ),
    (
        "loyalty",
        {"stickers_required": 10, "discount_percent": 50},
        3.00, 2, PromotionContext(loyalty_satisfied=True), 3.00, "Con 10 stickers",
    ),
]


@pytest.mark.contract
@pytest.mark.parametrize(
    "ptype,details,unit_price,quantity,context,discount,text",
    RECORDS,
    ids=[
        "percentage", "fixed-promo-price", "fixed-amount-off", "3x2", "2x1",
        "bulk", "bundle-free", "coupon", "loyalty",
    ],
)
def test_persisted_record_decodes_and_evaluates(ptype, details, unit_price, quantity, context, discount, text):
    promo = decode_promotion(_record(ptype, details))
    assert promo.promotion_type is PromotionType(ptype)
    assert promo.status is PromotionStatus.VERIFIED
    assert promo.verification_count == 4

    result = calculate_effective_discount(promo, unit_price, quantity, context)
    assert result.is_triggered
    assert result.discount_amount == discount
    assert describe_promotion(promo) == text


@pytest.mark.contract
def test_three_for_two_record_partial_cycle():
    # 4 件按 "3x2"：一组免 1 件，剩余 1 件原价
    promo = decode_promotion(_record("buy_x_get_y", {"buy_quantity": 3, "get_quantity": 1, "pay_quantity": 2}))
    assert promo.details.cycle == 3
    assert promo.details.get_quantity == 1
    result = calculate_effective_discount(promo, 5.00, 4)
    assert result.free_items_count == 1
    assert result.final_price == 15.00
    assert not calculate_effective_discount(promo, 5.00, 2).is_triggered
