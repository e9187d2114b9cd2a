"""Order pricing.

Prices always come from the stored product documents; whatever price the
client sends with a cart line is ignored.
"""
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from bson import ObjectId

from schemas import OrderItem

MIN_QTY = 1
MAX_QTY = 99
FREE_SHIPPING_THRESHOLD = 500
FLAT_SHIPPING_FEE = 40


def parse_qty(value: Any) -> Optional[int]:
    """Quantity clamped into [MIN_QTY, MAX_QTY], or None when the line must be dropped.

    Missing, non-numeric, non-finite, zero and negative quantities are invalid.
    Fractions are clamped first, then rounded to a whole unit.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return int(round(max(MIN_QTY, min(MAX_QTY, number))))


def parse_object_id(value: Any) -> Optional[ObjectId]:
    value = str(value if value is not None else "")
    if not ObjectId.is_valid(value) or len(value) != 24:
        return None
    return ObjectId(value)


def requested_product_ids(items: Iterable[Mapping[str, Any]]) -> List[ObjectId]:
    """Distinct, well-formed product ids in request order."""
    seen = []
    for item in items:
        oid = parse_object_id(item.get("id"))
        if oid is not None and oid not in seen:
            seen.append(oid)
    return seen


def price_items(items: Iterable[Mapping[str, Any]], products: Mapping[str, Dict[str, Any]]) -> Tuple[List[OrderItem], float]:
    """Build line-item snapshots and the subtotal.

    ``products`` maps the string form of each product ``_id`` to its stored
    document. Lines with an unknown product or an invalid quantity are skipped.
    """
    lines: List[OrderItem] = []
    subtotal = 0
    for item in items:
        oid = parse_object_id(item.get("id"))
        product = products.get(str(oid)) if oid is not None else None
        qty = parse_qty(item.get("qty"))
        if product is None or qty is None:
            continue
        price = product.get("price") or 0
        subtotal += price * qty
        lines.append(OrderItem(id=product["_id"], name=str(product.get("name") or ""), price=price, qty=qty))
    return lines, subtotal


def shipping_fee(subtotal: float) -> int:
    return 0 if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE
