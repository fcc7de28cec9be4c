"""购物会话状态：行项目集合与派生汇总。

ShoppingSessionStore 是会话的唯一修改入口。每次修改都会重新计算所有行
（包括已挂载的促销），会话的汇总字段始终由当前 items 推导。
"""
import logging
import uuid
import warnings
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .config import Settings
from .errors import NotFoundWarning, ValidationError
from .models import AddItemInput, LineItem, SessionStatus, ShoppingSession
from .money import money, to_decimal
from .promotions import (
    Promotion,
    PromotionContext,
    PromotionResult,
    calculate_effective_discount,
    decode_promotion,
)
from .tax import (
    calculate_base_price,
    calculate_line_total,
    calculate_tax_amount,
    check_amount,
    check_quantity,
    require_tax_rate,
)

logger = logging.getLogger("prexiopa.session")

Listener = Callable[["ShoppingSessionStore"], None]

EDITABLE_FIELDS = (
    "product_id",
    "product_name",
    "price",
    "quantity",
    "unit",
    "notes",
    "tax_rate_code",
    "price_includes_tax",
)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_name(name) -> None:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("product_name", "must be a non-empty string")


def price_line(item: LineItem, discount: float = 0.0, promotion_id: Optional[str] = None) -> LineItem:
    """按 price / quantity / 税率 / 含税标记重新计算行的派生字段。

    promotion_id 为 None 时清除促销标注；否则 discount 为税前行折扣。
    """
    _check_name(item.product_name)
    base = calculate_base_price(item.price, item.tax_rate, item.price_includes_tax)
    subtotal = calculate_line_total(item.price, item.quantity)
    if promotion_id is None:
        return replace(
            item,
            base_price=base,
            tax_amount=calculate_tax_amount(base, item.tax_rate, item.quantity),
            subtotal=subtotal,
            applied_promotion_id=None,
            original_price=None,
            discount_amount=0.0,
        )
    check_amount(discount, "discount_amount")
    original = money(to_decimal(base) * item.quantity)
    discount = min(money(discount), original)
    return replace(
        item,
        base_price=base,
        tax_amount=calculate_tax_amount(money(to_decimal(original) - to_decimal(discount)), item.tax_rate, 1),
        subtotal=subtotal,
        applied_promotion_id=promotion_id,
        original_price=original,
        discount_amount=discount,
    )


def build_line_item(data: Union[AddItemInput, Mapping[str, Any]], settings: Settings) -> LineItem:
    if isinstance(data, Mapping):
        unknown = set(data) - set(AddItemInput.__dataclass_fields__)
        if unknown:
            raise ValidationError(sorted(unknown)[0], "unknown field")
        for name in ("product_name", "price"):
            if data.get(name) is None:
                raise ValidationError(name, "required")
        data = AddItemInput(**data)

    check_quantity(data.quantity)
    tax_rate = require_tax_rate(data.tax_rate_code or settings.default_tax_rate_code)
    includes = settings.default_price_includes_tax if data.price_includes_tax is None else data.price_includes_tax
    item = LineItem(
        id=_new_id("item"),
        product_id=data.product_id,
        product_name=data.product_name,
        price=data.price,
        quantity=data.quantity,
        unit=data.unit or settings.default_unit,
        notes=data.notes,
        tax_rate_code=tax_rate.code,
        tax_rate=tax_rate.rate,
        price_includes_tax=bool(includes),
        base_price=0.0,
        tax_amount=0.0,
        subtotal=0.0,
    )
    return price_line(item)


class ShoppingSessionStore:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.current_session: Optional[ShoppingSession] = None
        self.recent_sessions: List[ShoppingSession] = []
        self.promotion_results: Dict[str, PromotionResult] = {}
        self._promotions: Dict[str, Tuple[Promotion, PromotionContext]] = {}
        self._listeners: List[Listener] = []

    # ---- 订阅 ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # ---- 会话 ----

    def start_session(self, store_id: Optional[str] = None, store_name: Optional[str] = None) -> ShoppingSession:
        self.current_session = ShoppingSession(
            id=_new_id("session"),
            date=_now(),
            store_id=store_id or None,
            store_name=store_name,
        )
        self._promotions.clear()
        self.promotion_results = {}
        logger.info("session started: %s store=%s", self.current_session.id, store_id)
        self._notify()
        return self.current_session

    def ensure_session(self) -> ShoppingSession:
        if self.current_session is None:
            return self.start_session()
        return self.current_session

    def restore_session(self, session: ShoppingSession) -> ShoppingSession:
        if session.is_terminal:
            raise ValidationError("status", f"cannot resume a {session.status.value} session")
        self.current_session = session
        self._promotions.clear()
        self._commit(session.items)
        return session

    def end_session(self, completed_at: Optional[str] = None) -> Optional[ShoppingSession]:
        session = self.current_session
        if session is None:
            return None
        session.status = SessionStatus.COMPLETED
        session.completed_at = completed_at or _now()
        self.current_session = None
        self._promotions.clear()
        self.promotion_results = {}
        self.add_to_history(session)
        logger.info("session completed: %s total=%s", session.id, session.total)
        return session

    def cancel_session(self) -> Optional[ShoppingSession]:
        session = self.current_session
        if session is None:
            return None
        session.status = SessionStatus.CANCELLED
        self.current_session = None
        self._promotions.clear()
        self.promotion_results = {}
        logger.info("session cancelled: %s", session.id)
        self._notify()
        return session

    def update_session_store(self, store_id: str, store_name: Optional[str] = None) -> None:
        if self.current_session is not None:
            self.current_session.store_id = store_id
            self.current_session.store_name = store_name
            self._notify()

    def update_session_notes(self, notes: Optional[str]) -> None:
        if self.current_session is not None:
            self.current_session.notes = notes
            self._notify()

    def add_to_history(self, session: ShoppingSession) -> None:
        limit = self.settings.history_limit
        self.recent_sessions = [session] + self.recent_sessions[: max(limit - 1, 0)]
        self._notify()

    def clear_history(self) -> None:
        self.recent_sessions = []
        self._notify()

    # ---- 行项目 ----

    @property
    def items(self) -> Tuple[LineItem, ...]:
        return self.current_session.items if self.current_session else ()

    def get_item(self, item_id: str) -> Optional[LineItem]:
        if self.current_session is None:
            return None
        return self.current_session.find_item(item_id)

    def add_item(self, data: Union[AddItemInput, Mapping[str, Any]]) -> LineItem:
        item = build_line_item(data, self.settings)
        session = self.ensure_session()
        self._commit(session.items + (item,))
        logger.debug("item added: %s x%s @ %s", item.product_name, item.quantity, item.price)
        return self.get_item(item.id)

    def update_item(self, item_id: str, changes: Optional[Mapping[str, Any]] = None, **fields) -> Optional[LineItem]:
        changes = dict(changes or {}, **fields)
        current = self.get_item(item_id)
        if current is None:
            return self._missing(item_id)
        for key in changes:
            if key not in EDITABLE_FIELDS:
                raise ValidationError(key, "field cannot be updated")
        if "quantity" in changes:
            check_quantity(changes["quantity"])
        if "tax_rate_code" in changes:
            # 税率在修改税种时重新复制
            changes["tax_rate"] = require_tax_rate(changes["tax_rate_code"]).rate
        if "price_includes_tax" in changes:
            changes["price_includes_tax"] = bool(changes["price_includes_tax"])

        updated = price_line(replace(current, **changes))
        items = tuple(updated if i.id == item_id else i for i in self.items)
        self._commit(items)
        return self.get_item(item_id)

    def remove_item(self, item_id: str) -> None:
        if self.get_item(item_id) is None:
            self._missing(item_id)
            return
        self._promotions.pop(item_id, None)
        self._commit(tuple(i for i in self.items if i.id != item_id))

    def clear_items(self) -> None:
        if self.current_session is None:
            return
        self._promotions.clear()
        self._commit(())

    def increment_quantity(self, item_id: str) -> Optional[LineItem]:
        item = self.get_item(item_id)
        if item is None:
            return self._missing(item_id)
        return self.update_item(item_id, quantity=item.quantity + 1)

    def decrement_quantity(self, item_id: str) -> Optional[LineItem]:
        item = self.get_item(item_id)
        if item is None:
            return self._missing(item_id)
        if item.quantity > 1:
            return self.update_item(item_id, quantity=item.quantity - 1)
        self.remove_item(item_id)
        return None

    # ---- 促销 ----

    def apply_promotion(
        self,
        item_id: str,
        promotion: Union[Promotion, Mapping[str, Any]],
        context: Optional[PromotionContext] = None,
    ) -> Optional[PromotionResult]:
        if self.get_item(item_id) is None:
            return self._missing(item_id)
        if isinstance(promotion, Mapping):
            promotion = decode_promotion(promotion)
        attached = dict(self._promotions)
        attached[item_id] = (promotion, context or PromotionContext())
        # 先试算，出错时不改变状态
        items, results = self._reprice(self.items, attached)
        self._promotions = attached
        self._store(items, results)
        return results[item_id]

    def remove_promotion(self, item_id: str) -> None:
        if self._promotions.pop(item_id, None) is None:
            return
        self._commit(self.items)

    # ---- 内部 ----

    def _missing(self, item_id: str) -> None:
        warnings.warn(f"line item {item_id!r} not found", NotFoundWarning, stacklevel=3)
        return None

    def _reprice(self, items, attached) -> Tuple[Tuple[LineItem, ...], Dict[str, PromotionResult]]:
        plain = tuple(price_line(i) for i in items)
        results: Dict[str, PromotionResult] = {}
        out = []
        for item in plain:
            if item.id in attached:
                promotion, context = attached[item.id]
                # bundle_free 需要整个会话的行
                ctx = replace(context, session_items=plain)
                result = calculate_effective_discount(promotion, item.base_price, item.quantity, ctx)
                results[item.id] = result
                if result.is_triggered:
                    item = price_line(item, result.discount_amount, promotion.id)
            out.append(item)
        return tuple(out), results

    def _store(self, items, results) -> None:
        self.current_session.items = items
        self.promotion_results = results
        self._notify()

    def _commit(self, items) -> None:
        repriced, results = self._reprice(items, self._promotions)
        self._store(repriced, results)
