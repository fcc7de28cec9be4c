import json
import time
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Union

from .models import AddItemInput, LineItem, ShoppingSession
from .money import money
from .promotions import Promotion, PromotionContext, PromotionResult, best_promotion
from .session import ShoppingSessionStore


def add_items(store: ShoppingSessionStore, items: Iterable[Union[AddItemInput, Mapping[str, Any]]]) -> List[LineItem]:
    return [store.add_item(i) for i in items]


def checkout(store: ShoppingSessionStore) -> Optional[ShoppingSession]:
    completed_at = datetime.fromtimestamp(int(time.time()), tz=timezone.utc).isoformat()
    return store.end_session(completed_at=completed_at)


def apply_best_promotion(
    store: ShoppingSessionStore,
    item_id: str,
    promotions: Iterable[Promotion],
    context: Optional[PromotionContext] = None,
    today: Optional[date] = None,
) -> Optional[PromotionResult]:
    item = store.get_item(item_id)
    if item is None:
        return None
    # bundle_free 需要会话内的其它行
    ctx = replace(context or PromotionContext(), session_items=store.items)
    best = best_promotion(promotions, item.base_price, item.quantity, ctx, today)
    if best is None:
        return None
    return store.apply_promotion(item_id, best[0], context)


def print_receipt(session: ShoppingSession) -> str:
    payload = {
        "session": session.id,
        "store": session.store_name or session.store_id or "",
        "status": session.status.value,
        "count": len(session.items),
        "subtotal_before_tax": session.subtotal_before_tax,
        "total_tax": session.total_tax,
        "total": session.total,
        "breakdown": {code: e.tax_amount for code, e in session.tax_breakdown.items()},
        "discounts": money(sum(i.discount_amount for i in session.items)),
    }
    text = json.dumps(payload, ensure_ascii=False)
    print(text)
    return text
