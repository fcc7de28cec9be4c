"""ITBMS（巴拿马增值税）计算：含税/不含税换算与会话税额汇总。"""
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ValidationError
from .models import LineItem, SessionTaxSummary, TaxBreakdownEntry, TaxRate
from .money import format_currency, money, to_decimal

logger = logging.getLogger("prexiopa.tax")

PANAMA_TAX_RATES: Tuple[TaxRate, ...] = (
    TaxRate("exempt", 0, "Exento"),
    TaxRate("general", 7, "General"),
    TaxRate("selective", 10, "Selectivo"),
    TaxRate("services", 15, "Servicios"),
)

DEFAULT_TAX_RATE_CODE = "general"

EXEMPT_CATEGORIES = (
    "Frutas y Verduras",
    "Carnes",
    "Lacteos",
    "Granos y Cereales",
    "Medicamentos",
    "Huevos",
    "Canasta Basica",
)

SELECTIVE_TAX_CATEGORIES = (
    "Bebidas Alcoholicas",
    "Licores",
    "Vinos",
    "Cervezas",
    "Tabaco",
    "Cigarrillos",
)


@dataclass(frozen=True)
class ItemTaxInfo:
    tax_rate_code: str
    tax_rate: float
    price_includes_tax: bool
    base_price: float
    tax_amount: float
    subtotal: float


def _is_number(value) -> bool:
    # NaN / inf 不是合法金额
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, float):
        return math.isfinite(value)
    return True


def check_amount(value, field: str) -> None:
    if not _is_number(value):
        raise ValidationError(field, "must be a finite number")
    if value < 0:
        raise ValidationError(field, "must be >= 0")


def check_rate(value, field: str = "tax_rate") -> None:
    if not _is_number(value):
        raise ValidationError(field, "must be a finite number")
    if not 0 <= value <= 100:
        raise ValidationError(field, "must be between 0 and 100")


def check_quantity(value, field: str = "quantity") -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(field, "must be an integer")
    if value < 1:
        raise ValidationError(field, "must be >= 1")


def get_tax_rate_by_code(code: str) -> Optional[TaxRate]:
    for r in PANAMA_TAX_RATES:
        if r.code == code:
            return r
    return None


def get_tax_rate_by_value(rate: float) -> Optional[TaxRate]:
    for r in PANAMA_TAX_RATES:
        if r.rate == rate:
            return r
    return None


def require_tax_rate(code: str) -> TaxRate:
    tax_rate = get_tax_rate_by_code(code)
    if tax_rate is None:
        raise ValidationError("tax_rate_code", f"unknown tax rate code {code!r}")
    return tax_rate


def default_tax_rate_for_category(category: str) -> TaxRate:
    normalized = category.lower()
    if any(c.lower() in normalized for c in EXEMPT_CATEGORIES):
        return require_tax_rate("exempt")
    if any(c.lower() in normalized for c in SELECTIVE_TAX_CATEGORIES):
        return require_tax_rate("selective")
    return require_tax_rate(DEFAULT_TAX_RATE_CODE)


def calculate_base_price(price: float, rate_percent: float, price_includes_tax: bool) -> float:
    check_amount(price, "price")
    check_rate(rate_percent)
    if not price_includes_tax:
        return money(price)
    return money(to_decimal(price) / (1 + to_decimal(rate_percent) / 100))


def calculate_price_with_tax(base_price: float, rate_percent: float) -> float:
    check_amount(base_price, "base_price")
    check_rate(rate_percent)
    return money(to_decimal(base_price) * (1 + to_decimal(rate_percent) / 100))


def calculate_tax_amount(base_price: float, rate_percent: float, quantity: int) -> float:
    check_amount(base_price, "base_price")
    check_rate(rate_percent)
    check_quantity(quantity)
    return money(to_decimal(base_price) * to_decimal(rate_percent) / 100 * quantity)


def calculate_line_total(price: float, quantity: int) -> float:
    check_amount(price, "price")
    check_quantity(quantity)
    return money(to_decimal(price) * quantity)


def calculate_item_tax_info(
    price: float, quantity: int, tax_rate_code: str, price_includes_tax: bool
) -> ItemTaxInfo:
    rate = require_tax_rate(tax_rate_code).rate
    base_price = calculate_base_price(price, rate, price_includes_tax)
    return ItemTaxInfo(
        tax_rate_code=tax_rate_code,
        tax_rate=rate,
        price_includes_tax=price_includes_tax,
        base_price=base_price,
        tax_amount=calculate_tax_amount(base_price, rate, quantity),
        subtotal=calculate_line_total(price, quantity),
    )


def calculate_session_tax_summary(items: Iterable[LineItem]) -> SessionTaxSummary:
    groups: Dict[str, List] = {}
    for item in items:
        # [rate, item_count, taxable, tax]
        group = groups.setdefault(item.tax_rate_code, [item.tax_rate, 0, Decimal(0), Decimal(0)])
        group[1] += 1
        group[2] += to_decimal(item.taxable_amount)
        group[3] += to_decimal(item.tax_amount)

    breakdown: Dict[str, TaxBreakdownEntry] = {}
    for code, (rate, count, taxable, tax) in groups.items():
        known = get_tax_rate_by_code(code)
        breakdown[code] = TaxBreakdownEntry(
            code=code,
            rate=rate,
            name=known.name if known else format_tax_rate(rate),
            item_count=count,
            taxable_amount=money(taxable),
            tax_amount=money(tax),
        )

    subtotal = money(sum((to_decimal(e.taxable_amount) for e in breakdown.values()), Decimal(0)))
    total_tax = money(sum((to_decimal(e.tax_amount) for e in breakdown.values()), Decimal(0)))
    grand_total = money(to_decimal(subtotal) + to_decimal(total_tax))
    logger.debug("tax summary: subtotal=%s tax=%s total=%s", subtotal, total_tax, grand_total)
    return SessionTaxSummary(
        subtotal_before_tax=subtotal,
        total_tax=total_tax,
        grand_total=grand_total,
        breakdown=breakdown,
    )


def format_tax_rate(rate: float) -> str:
    return f"{rate:g}%"


__all__ = [
    "PANAMA_TAX_RATES",
    "DEFAULT_TAX_RATE_CODE",
    "ItemTaxInfo",
    "calculate_base_price",
    "calculate_price_with_tax",
    "calculate_tax_amount",
    "calculate_line_total",
    "calculate_item_tax_info",
    "calculate_session_tax_summary",
    "default_tax_rate_for_category",
    "format_currency",
    "format_tax_rate",
    "get_tax_rate_by_code",
    "get_tax_rate_by_value",
    "money",
]
