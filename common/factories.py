from dataclasses import dataclass
from typing import Any, Dict, List

from prexiopa.config import Settings
from prexiopa.models import AddItemInput
from prexiopa.promotions import Promotion, decode_promotion
from prexiopa.session import ShoppingSessionStore


@dataclass(frozen=True)
class Defaults:
    base_price: float = 10.0
    tax_rate_code: str = "general"


def make_store(settings: Settings = None) -> ShoppingSessionStore:
    return ShoppingSessionStore(settings or Settings())


def make_item_input(
    name: str = "Arroz",
    price: float = Defaults.base_price,
    quantity: int = 1,
    tax_rate_code: str = Defaults.tax_rate_code,
    price_includes_tax: bool = True,
    product_id: str = None,
) -> AddItemInput:
    return AddItemInput(
        product_name=name,
        price=price,
        quantity=quantity,
        tax_rate_code=tax_rate_code,
        price_includes_tax=price_includes_tax,
        product_id=product_id,
    )


def make_item_inputs(n: int = 1, base: float = Defaults.base_price) -> List[AddItemInput]:
    return [make_item_input(name=f"Producto {i}", price=base + i, product_id=f"P-{i}") for i in range(n)]


def make_promotion(promotion_type: str, pid: str = "PROMO-1", **details: Any) -> Promotion:
    record: Dict[str, Any] = {
        "id": pid,
        "name": f"{promotion_type} promo",
        "promotion_type": promotion_type,
        "is_indefinite": True,
        "status": "verified",
        "details": details,
    }
    return decode_promotion(record)
