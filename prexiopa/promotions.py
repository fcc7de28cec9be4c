"""促销计算：七种促销类型的折扣规则。

促销记录在边界处解码为带标签的 details 数据类（decode_promotion），
之后的计算按 promotion_type 穷举分派，不再做可选字段检查。
"""
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import UnsupportedPromotionError, ValidationError
from .models import LineItem
from .money import money, to_decimal
from .tax import check_amount, check_quantity, check_rate

logger = logging.getLogger("prexiopa.promotions")


class PromotionType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    BUY_X_GET_Y = "buy_x_get_y"
    BULK_PRICE = "bulk_price"
    BUNDLE_FREE = "bundle_free"
    COUPON = "coupon"
    LOYALTY = "loyalty"


class PromotionStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    REJECTED = "rejected"
    EXPIRED = "expired"


@dataclass(frozen=True)
class PercentageDetails:
    discount_percent: float


@dataclass(frozen=True)
class FixedAmountDetails:
    promo_price: Optional[float] = None
    discount_amount: Optional[float] = None
    original_price: Optional[float] = None


@dataclass(frozen=True)
class BuyXGetYDetails:
    buy_quantity: int  # 每组件数，"3x2" 中的 3
    pay_quantity: int  # 每组付款件数，"3x2" 中的 2

    @property
    def get_quantity(self) -> int:
        return self.buy_quantity - self.pay_quantity

    @property
    def cycle(self) -> int:
        return self.buy_quantity


@dataclass(frozen=True)
class BulkPriceDetails:
    min_quantity: int
    unit_price: float
    regular_price: Optional[float] = None


@dataclass(frozen=True)
class BundleFreeDetails:
    required_products: Tuple[str, ...]
    free_product_id: str
    required_product_names: Tuple[str, ...] = ()
    free_product_name: Optional[str] = None

    @property
    def required_counts(self) -> Dict[str, int]:
        return dict(Counter(self.required_products))


@dataclass(frozen=True)
class CouponDetails:
    coupon_code: str
    discount_percent: Optional[float] = None
    discount_amount: Optional[float] = None


@dataclass(frozen=True)
class LoyaltyDetails:
    discount_percent: Optional[float] = None
    discount_amount: Optional[float] = None
    stickers_required: Optional[int] = None
    card_type: Optional[str] = None


PromotionDetails = Union[
    PercentageDetails,
    FixedAmountDetails,
    BuyXGetYDetails,
    BulkPriceDetails,
    BundleFreeDetails,
    CouponDetails,
    LoyaltyDetails,
]


@dataclass(frozen=True)
class Promotion:
    id: str
    name: str
    promotion_type: PromotionType
    details: PromotionDetails
    description: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_indefinite: bool = False
    status: PromotionStatus = PromotionStatus.VERIFIED
    verification_count: int = 0


@dataclass(frozen=True)
class PromotionContext:
    coupon_applied: bool = False
    coupon_code: Optional[str] = None
    loyalty_satisfied: bool = False
    session_items: Sequence[LineItem] = ()


@dataclass(frozen=True)
class PromotionResult:
    original_price: float
    discount_amount: float
    final_price: float
    is_triggered: bool
    discount_percent: float = 0.0
    free_items_count: int = 0
    reason: Optional[str] = None


# ---- 解码 ----


def _require(payload: Mapping[str, Any], key: str):
    value = payload.get(key)
    if value is None:
        raise ValidationError(f"details.{key}", "required")
    return value


def _amount(payload: Mapping[str, Any], key: str, required: bool = False) -> Optional[float]:
    value = _require(payload, key) if required else payload.get(key)
    if value is None:
        return None
    check_amount(value, f"details.{key}")
    return value


def _percent(payload: Mapping[str, Any], key: str, required: bool = False) -> Optional[float]:
    value = _require(payload, key) if required else payload.get(key)
    if value is None:
        return None
    check_rate(value, f"details.{key}")
    return value


def _count(payload: Mapping[str, Any], key: str, required: bool = True) -> Optional[int]:
    value = _require(payload, key) if required else payload.get(key)
    if value is None:
        return None
    check_quantity(value, f"details.{key}")
    return value


def _one_of(payload: Mapping[str, Any], percent_key: str, amount_key: str) -> Tuple[Optional[float], Optional[float]]:
    pct = _percent(payload, percent_key)
    amount = _amount(payload, amount_key)
    if pct is None and amount is None:
        raise ValidationError(f"details.{percent_key}", f"one of {percent_key} or {amount_key} is required")
    return pct, amount


def _decode_percentage(payload):
    return PercentageDetails(discount_percent=_percent(payload, "discount_percent", required=True))


def _decode_fixed_amount(payload):
    promo = _amount(payload, "promo_price")
    amount = _amount(payload, "discount_amount")
    if promo is None and amount is None:
        raise ValidationError("details.promo_price", "one of promo_price or discount_amount is required")
    return FixedAmountDetails(
        promo_price=promo,
        discount_amount=amount,
        original_price=_amount(payload, "original_price"),
    )


def _decode_buy_x_get_y(payload):
    buy = _count(payload, "buy_quantity")
    # pay_quantity 优先；旧记录只有 get_quantity
    if payload.get("pay_quantity") is not None:
        key = "pay_quantity"
        pay = _count(payload, key)
    else:
        key = "get_quantity"
        pay = buy - _count(payload, key)
    if not 1 <= buy - pay <= buy - 1:
        raise ValidationError(f"details.{key}", f"free units per {buy} must be between 1 and {buy - 1}")
    return BuyXGetYDetails(buy_quantity=buy, pay_quantity=pay)


def _decode_bulk_price(payload):
    return BulkPriceDetails(
        min_quantity=_count(payload, "min_quantity"),
        unit_price=_amount(payload, "unit_price", required=True),
        regular_price=_amount(payload, "regular_price"),
    )


def _decode_bundle_free(payload):
    required = _require(payload, "required_products")
    if isinstance(required, str) or not required:
        raise ValidationError("details.required_products", "must be a non-empty list of product ids")
    free_id = _require(payload, "free_product_id")
    if free_id in required:
        raise ValidationError("details.free_product_id", "free product cannot also be required")
    return BundleFreeDetails(
        required_products=tuple(required),
        free_product_id=free_id,
        required_product_names=tuple(payload.get("required_product_names") or ()),
        free_product_name=payload.get("free_product_name"),
    )


def _decode_coupon(payload):
    code = _require(payload, "coupon_code")
    if not str(code).strip():
        raise ValidationError("details.coupon_code", "required")
    pct, amount = _one_of(payload, "discount_percent", "discount_amount")
    return CouponDetails(coupon_code=code, discount_percent=pct, discount_amount=amount)


def _decode_loyalty(payload):
    pct, amount = _one_of(payload, "discount_percent", "discount_amount")
    return LoyaltyDetails(
        discount_percent=pct,
        discount_amount=amount,
        stickers_required=_count(payload, "stickers_required", required=False),
        card_type=payload.get("card_type"),
    )


_DECODERS: Dict[PromotionType, Callable[[Mapping[str, Any]], PromotionDetails]] = {
    PromotionType.PERCENTAGE: _decode_percentage,
    PromotionType.FIXED_AMOUNT: _decode_fixed_amount,
    PromotionType.BUY_X_GET_Y: _decode_buy_x_get_y,
    PromotionType.BULK_PRICE: _decode_bulk_price,
    PromotionType.BUNDLE_FREE: _decode_bundle_free,
    PromotionType.COUPON: _decode_coupon,
    PromotionType.LOYALTY: _decode_loyalty,
}


def parse_promotion_type(value) -> PromotionType:
    try:
        return PromotionType(value)
    except ValueError:
        raise UnsupportedPromotionError(value) from None


def decode_details(promotion_type, payload: Optional[Mapping[str, Any]]) -> PromotionDetails:
    ptype = parse_promotion_type(promotion_type)
    if not isinstance(payload, Mapping):
        raise ValidationError("details", "must be a mapping")
    return _DECODERS[ptype](payload)


def _parse_date(value, field_name: str) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(field_name, f"invalid date {value!r}") from None


def decode_promotion(record: Mapping[str, Any]) -> Promotion:
    ptype = parse_promotion_type(record.get("promotion_type"))
    try:
        status = PromotionStatus(record.get("status", PromotionStatus.VERIFIED.value))
    except ValueError:
        raise ValidationError("status", f"unknown status {record.get('status')!r}") from None
    try:
        verification_count = int(record.get("verification_count") or 0)
    except (TypeError, ValueError):
        raise ValidationError(
            "verification_count", f"must be an integer, got {record.get('verification_count')!r}"
        ) from None
    return Promotion(
        id=str(_require(record, "id")),
        name=record.get("name") or "",
        promotion_type=ptype,
        details=decode_details(ptype, record.get("details")),
        description=record.get("description"),
        store_id=record.get("store_id"),
        store_name=record.get("store_name"),
        start_date=_parse_date(record.get("start_date"), "start_date"),
        end_date=_parse_date(record.get("end_date"), "end_date"),
        is_indefinite=bool(record.get("is_indefinite", False)),
        status=status,
        verification_count=verification_count,
    )


# ---- 计算 ----


def _result(unit_price, quantity, discount, triggered=True, free_items=0, reason=None) -> PromotionResult:
    original = to_decimal(unit_price) * quantity
    # 折扣限定在 [0, 原价]
    discount = min(max(to_decimal(discount), to_decimal(0)), original)
    percent = discount / original * 100 if original > 0 else 0
    return PromotionResult(
        original_price=money(original),
        discount_amount=money(discount),
        final_price=money(original - to_decimal(money(discount))),
        is_triggered=triggered,
        discount_percent=money(percent),
        free_items_count=free_items,
        reason=reason,
    )


def _not_triggered(unit_price, quantity, reason: str) -> PromotionResult:
    return _result(unit_price, quantity, 0, triggered=False, reason=reason)


def _rule_discount(unit_price, quantity, percent, amount):
    # 优惠券 / 会员卡共用：百分比优先，其次按件减额
    if percent is not None:
        return to_decimal(unit_price) * quantity * to_decimal(percent) / 100
    return to_decimal(amount) * quantity


def _percentage(details: PercentageDetails, unit_price, quantity, context):
    discount = to_decimal(unit_price) * quantity * to_decimal(details.discount_percent) / 100
    return _result(unit_price, quantity, discount)


def _fixed_amount(details: FixedAmountDetails, unit_price, quantity, context):
    if details.promo_price is not None:
        unit_discount = max(to_decimal(unit_price) - to_decimal(details.promo_price), to_decimal(0))
    else:
        unit_discount = to_decimal(details.discount_amount)
    return _result(unit_price, quantity, unit_discount * quantity)


def _buy_x_get_y(details: BuyXGetYDetails, unit_price, quantity, context):
    if quantity < details.cycle:
        return _not_triggered(unit_price, quantity, f"need at least {details.cycle} units")
    # 不完整的一组按原价计
    free_units = quantity // details.cycle * details.get_quantity
    return _result(unit_price, quantity, to_decimal(unit_price) * free_units, free_items=free_units)


def _bulk_price(details: BulkPriceDetails, unit_price, quantity, context):
    if quantity < details.min_quantity:
        return _not_triggered(unit_price, quantity, f"need at least {details.min_quantity} units")
    unit_discount = max(to_decimal(unit_price) - to_decimal(details.unit_price), to_decimal(0))
    return _result(unit_price, quantity, unit_discount * quantity)


def count_bundles(details: BundleFreeDetails, items: Iterable[LineItem]) -> int:
    held: Counter = Counter()
    for item in items:
        if item.product_id is not None:
            held[item.product_id] += item.quantity
    return min((held[pid] // needed for pid, needed in details.required_counts.items()), default=0)


def _bundle_free(details: BundleFreeDetails, unit_price, quantity, context):
    bundles = count_bundles(details, context.session_items)
    if bundles < 1:
        return _not_triggered(unit_price, quantity, "required products not in session")
    free_units = min(bundles, quantity)
    return _result(unit_price, quantity, to_decimal(unit_price) * free_units, free_items=free_units)


def _coupon(details: CouponDetails, unit_price, quantity, context):
    provided = (context.coupon_code or "").strip().upper()
    if not (context.coupon_applied or provided == str(details.coupon_code).strip().upper()):
        return _not_triggered(unit_price, quantity, "coupon not applied")
    discount = _rule_discount(unit_price, quantity, details.discount_percent, details.discount_amount)
    return _result(unit_price, quantity, discount)


def _loyalty(details: LoyaltyDetails, unit_price, quantity, context):
    if not context.loyalty_satisfied:
        if details.stickers_required:
            return _not_triggered(unit_price, quantity, f"need {details.stickers_required} stickers")
        return _not_triggered(unit_price, quantity, "loyalty card required")
    discount = _rule_discount(unit_price, quantity, details.discount_percent, details.discount_amount)
    return _result(unit_price, quantity, discount)


_EVALUATORS = {
    PromotionType.PERCENTAGE: (PercentageDetails, _percentage),
    PromotionType.FIXED_AMOUNT: (FixedAmountDetails, _fixed_amount),
    PromotionType.BUY_X_GET_Y: (BuyXGetYDetails, _buy_x_get_y),
    PromotionType.BULK_PRICE: (BulkPriceDetails, _bulk_price),
    PromotionType.BUNDLE_FREE: (BundleFreeDetails, _bundle_free),
    PromotionType.COUPON: (CouponDetails, _coupon),
    PromotionType.LOYALTY: (LoyaltyDetails, _loyalty),
}


def calculate_effective_discount(
    promotion: Union[Promotion, Mapping[str, Any]],
    unit_price: float,
    quantity: int,
    context: Optional[PromotionContext] = None,
) -> PromotionResult:
    if isinstance(promotion, Mapping):
        promotion = decode_promotion(promotion)
    ptype = parse_promotion_type(promotion.promotion_type)
    details_type, evaluate = _EVALUATORS[ptype]
    if not isinstance(promotion.details, details_type):
        raise ValidationError("details", f"expected {details_type.__name__} for {ptype.value}")
    check_amount(unit_price, "unit_price")
    check_quantity(quantity)

    result = evaluate(promotion.details, unit_price, quantity, context or PromotionContext())
    logger.debug(
        "promotion %s (%s): triggered=%s discount=%s",
        promotion.id, ptype.value, result.is_triggered, result.discount_amount,
    )
    return result


def evaluate_bundle_free(promotion: Promotion, items: Sequence[LineItem]) -> Optional[Tuple[LineItem, PromotionResult]]:
    """在整个会话范围内检查 bundle_free：返回赠品所在的行及其计算结果。

    会话中没有赠品行时返回 None。
    """
    if parse_promotion_type(promotion.promotion_type) is not PromotionType.BUNDLE_FREE:
        raise ValidationError("promotion_type", "bundle_free promotion expected")
    for item in items:
        if item.product_id == promotion.details.free_product_id:
            ctx = PromotionContext(session_items=tuple(items))
            return item, calculate_effective_discount(promotion, item.base_price, item.quantity, ctx)
    return None


# ---- 辅助 ----


def is_promotion_active(promotion: Promotion, today: Optional[date] = None) -> bool:
    if promotion.status not in (PromotionStatus.VERIFIED, PromotionStatus.UNVERIFIED):
        return False
    if promotion.is_indefinite:
        return True
    today = today or date.today()
    if promotion.start_date and promotion.start_date > today:
        return False
    if promotion.end_date and promotion.end_date < today:
        return False
    return True


def sort_promotions_by_best_discount(
    pairs: Iterable[Tuple[Promotion, PromotionResult]]
) -> List[Tuple[Promotion, PromotionResult]]:
    # 已验证的排在前面，其次按折扣金额从高到低
    return sorted(
        pairs,
        key=lambda p: (p[0].status is not PromotionStatus.VERIFIED, -p[1].discount_amount),
    )


def best_promotion(
    promotions: Iterable[Promotion],
    unit_price: float,
    quantity: int,
    context: Optional[PromotionContext] = None,
    today: Optional[date] = None,
) -> Optional[Tuple[Promotion, PromotionResult]]:
    candidates = []
    for promo in promotions:
        if not is_promotion_active(promo, today):
            continue
        result = calculate_effective_discount(promo, unit_price, quantity, context)
        if result.is_triggered:
            candidates.append((promo, result))
    ranked = sort_promotions_by_best_discount(candidates)
    return ranked[0] if ranked else None


def describe_promotion(promotion: Promotion) -> str:
    d = promotion.details
    ptype = parse_promotion_type(promotion.promotion_type)
    if ptype is PromotionType.PERCENTAGE:
        return f"{d.discount_percent:g}% de descuento"
    if ptype is PromotionType.FIXED_AMOUNT:
        if d.promo_price is not None:
            return f"Precio especial: ${d.promo_price:.2f}"
        return f"${d.discount_amount:.2f} de descuento"
    if ptype is PromotionType.BUY_X_GET_Y:
        return f"Lleva {d.buy_quantity}, paga {d.pay_quantity}"
    if ptype is PromotionType.BULK_PRICE:
        return f"Lleva {d.min_quantity}+ a ${d.unit_price:.2f} c/u"
    if ptype is PromotionType.BUNDLE_FREE:
        if d.free_product_name:
            return f"Llévate {d.free_product_name} gratis"
        return "Producto gratis incluido"
    if ptype is PromotionType.COUPON:
        return f"Cupón: {d.coupon_code}"
    if ptype is PromotionType.LOYALTY:
        if d.stickers_required:
            return f"Con {d.stickers_required} stickers"
        return "Promoción con cartilla"
    return promotion.name
