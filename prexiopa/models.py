from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .money import money


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TaxRate:
    code: str  # "exempt", "general", "selective", "services"
    rate: float
    name: str

    @property
    def label(self) -> str:
        return f"{self.rate:g}% - {self.name}"


@dataclass(frozen=True)
class TaxBreakdownEntry:
    code: str
    rate: float
    name: str
    item_count: int
    taxable_amount: float
    tax_amount: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "rate": self.rate,
            "name": self.name,
            "item_count": self.item_count,
            "taxable_amount": self.taxable_amount,
            "tax_amount": self.tax_amount,
        }


@dataclass(frozen=True)
class SessionTaxSummary:
    subtotal_before_tax: float = 0.0
    total_tax: float = 0.0
    grand_total: float = 0.0
    breakdown: Dict[str, TaxBreakdownEntry] = field(default_factory=dict)


@dataclass(frozen=True)
class AddItemInput:
    product_name: str
    price: float
    quantity: int = 1
    unit: Optional[str] = None
    product_id: Optional[str] = None
    notes: Optional[str] = None
    tax_rate_code: Optional[str] = None
    price_includes_tax: Optional[bool] = None


@dataclass(frozen=True)
class LineItem:
    id: str
    product_name: str
    price: float
    quantity: int
    unit: str
    tax_rate_code: str
    tax_rate: float
    price_includes_tax: bool
    base_price: float
    tax_amount: float
    subtotal: float
    product_id: Optional[str] = None
    notes: Optional[str] = None
    applied_promotion_id: Optional[str] = None
    original_price: Optional[float] = None
    discount_amount: float = 0.0

    @property
    def taxable_amount(self) -> float:
        return money(self.base_price * self.quantity - self.discount_amount)

    @property
    def total(self) -> float:
        return money(self.taxable_amount + self.tax_amount)

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "price": self.price,
            "quantity": self.quantity,
            "unit": self.unit,
            "notes": self.notes,
            "tax_rate_code": self.tax_rate_code,
            "tax_rate": self.tax_rate,
            "price_includes_tax": self.price_includes_tax,
            "base_price": self.base_price,
            "tax_amount": self.tax_amount,
            "subtotal": self.subtotal,
            "applied_promotion_id": self.applied_promotion_id,
            "original_price": self.original_price,
            "discount_amount": self.discount_amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            id=data["id"],
            product_id=data.get("product_id"),
            product_name=data["product_name"],
            price=data["price"],
            quantity=data["quantity"],
            unit=data["unit"],
            notes=data.get("notes"),
            tax_rate_code=data["tax_rate_code"],
            tax_rate=data["tax_rate"],
            price_includes_tax=data["price_includes_tax"],
            base_price=data["base_price"],
            tax_amount=data["tax_amount"],
            subtotal=data["subtotal"],
            applied_promotion_id=data.get("applied_promotion_id"),
            original_price=data.get("original_price"),
            discount_amount=data.get("discount_amount", 0.0),
        )


@dataclass
class ShoppingSession:
    id: str
    date: str
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    status: SessionStatus = SessionStatus.IN_PROGRESS
    notes: Optional[str] = None
    completed_at: Optional[str] = None
    items: Tuple[LineItem, ...] = ()
    _cache: Optional[Tuple[Tuple[LineItem, ...], SessionTaxSummary]] = field(
        default=None, init=False, repr=False, compare=False
    )

    @property
    def summary(self) -> SessionTaxSummary:
        from .tax import calculate_session_tax_summary

        # items 是不可变 tuple，按对象身份缓存
        if self._cache is None or self._cache[0] is not self.items:
            self._cache = (self.items, calculate_session_tax_summary(self.items))
        return self._cache[1]

    @property
    def subtotal_before_tax(self) -> float:
        return self.summary.subtotal_before_tax

    @property
    def total_tax(self) -> float:
        return self.summary.total_tax

    @property
    def total(self) -> float:
        return self.summary.grand_total

    @property
    def tax_breakdown(self) -> Dict[str, TaxBreakdownEntry]:
        return self.summary.breakdown

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)

    def find_item(self, item_id: str) -> Optional[LineItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "store_name": self.store_name,
            "date": self.date,
            "status": self.status.value,
            "notes": self.notes,
            "completed_at": self.completed_at,
            "items": [i.to_dict() for i in self.items],
            "subtotal_before_tax": self.subtotal_before_tax,
            "total_tax": self.total_tax,
            "total": self.total,
            "tax_breakdown": {k: v.to_dict() for k, v in self.tax_breakdown.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShoppingSession":
        # 汇总字段由 items 推导，忽略记录中的旧值
        return cls(
            id=data["id"],
            date=data["date"],
            store_id=data.get("store_id"),
            store_name=data.get("store_name"),
            status=SessionStatus(data.get("status", SessionStatus.IN_PROGRESS.value)),
            notes=data.get("notes"),
            completed_at=data.get("completed_at"),
            items=tuple(LineItem.from_dict(i) for i in data.get("items", [])),
        )
