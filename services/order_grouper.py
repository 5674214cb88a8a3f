"""
Order Grouper
Collapses rows sharing an order key into one order draft with its line items.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from database import _new_id
from services.batch_writer import Draft
from services.coercion import as_json_number, money, parse_datetime, parse_number, parse_quantity, sum_money
from services.customer_resolver import normalize_email
from services.field_mapper import MappedRow, MappingPlan

logger = logging.getLogger(__name__)

LINE_ITEM_FIELDS = ("lineitem_name", "lineitem_sku", "lineitem_quantity", "lineitem_price")
MONEY_FIELDS = ("total_price", "subtotal_price", "total_tax", "total_discounts", "total_shipping")

DEFAULT_FINANCIAL_STATUS = "paid"
DEFAULT_FULFILLMENT_STATUS = "fulfilled"
DEFAULT_CURRENCY = "USD"


def group_rows(rows: Sequence[Dict[str, str]], plan: MappingPlan) -> Dict[Tuple[bool, str], List[int]]:
    """(is_real_key, order key) -> 0-based row indexes, in first-seen order.

    Without a mapped order number every row is its own group; a row whose
    order number is blank also becomes a singleton.
    """
    keyed = plan.has("order_number")
    groups: Dict[Tuple[bool, str], List[int]] = {}
    for idx, row in enumerate(rows):
        key = plan.read(row).get("order_number") if keyed else ""
        if key:
            groups.setdefault((True, key), []).append(idx)
        else:
            groups[(False, f"row-{idx}")] = [idx]
    return groups


def has_line_item_columns(plan: MappingPlan) -> bool:
    return any(plan.has(f) for f in LINE_ITEM_FIELDS)


def _line_item(row: MappedRow) -> Dict[str, Any]:
    return {
        "name": row.get("lineitem_name"),
        "sku": row.get("lineitem_sku") or None,
        "quantity": as_json_number(parse_quantity(row.get("lineitem_quantity"))),
        "price": as_json_number(parse_number(row.get("lineitem_price"))),
    }


def _money_fields(rows: Sequence[MappedRow], summed: bool) -> Dict[str, Decimal]:
    if summed:
        values = {f: sum_money(parse_number(r.get(f)) for r in rows) for f in MONEY_FIELDS}
    else:
        values = {f: money(parse_number(rows[0].get(f))) for f in MONEY_FIELDS}
    if not values["subtotal_price"]:
        values["subtotal_price"] = values["total_price"]
    return values


def build_order_values(
    order_number: str,
    group: Sequence[MappedRow],
    *,
    customer_id: Optional[str],
    line_items_mapped: bool,
    org_id: str,
    import_id: Optional[str],
    imported_at: datetime,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    primary = group[0]
    email = normalize_email(primary.get("email"))

    if line_items_mapped:
        line_items = [_line_item(r) for r in group]
        amounts = _money_fields(group, summed=False)
    else:
        # each row stands for one line of the order
        line_items = [
            {
                "name": f"Order {order_number}",
                "sku": None,
                "quantity": 1,
                "price": as_json_number(money(parse_number(r.get("total_price")))),
            }
            for r in group
        ]
        amounts = _money_fields(group, summed=True)

    metadata: Dict[str, Any] = {"imported_at": imported_at.isoformat()}
    if user_id:
        metadata["imported_by"] = user_id
    metadata.update(primary.extensions())

    shipping_address = primary.with_prefix("ship_")

    return {
        "id": _new_id(),
        "org_id": org_id,
        "import_id": import_id,
        "external_id": f"import-{order_number}",
        "external_source": "import",
        "customer_id": customer_id,
        "customer_external_id": email or None,
        "order_number": order_number,
        "email": email or None,
        "financial_status": primary.get("financial_status") or DEFAULT_FINANCIAL_STATUS,
        "fulfillment_status": primary.get("fulfillment_status") or DEFAULT_FULFILLMENT_STATUS,
        "currency": (primary.get("currency") or DEFAULT_CURRENCY).upper(),
        "line_items": line_items,
        "shipping_address": shipping_address or None,
        "discount_code": primary.get("discount_code") or None,
        "shipping_method": primary.get("shipping_method") or None,
        "note": primary.get("note") or None,
        "source_name": "import",
        "processed_at": parse_datetime(primary.get("processed_at")) or imported_at,
        "metadata_json": metadata,
        **amounts,
    }


def group_orders(
    rows: Sequence[Dict[str, str]],
    plan: MappingPlan,
    email_to_id: Mapping[str, str],
    *,
    org_id: str,
    import_id: Optional[str],
    run_prefix: str,
    imported_at: datetime,
    user_id: Optional[str] = None,
    groups: Optional[Dict[Tuple[bool, str], List[int]]] = None,
) -> List[Draft]:
    """Build one order draft per group; unresolved emails give a null customer reference."""
    groups = groups if groups is not None else group_rows(rows, plan)
    line_items_mapped = has_line_item_columns(plan)

    drafts: List[Draft] = []
    unlinked = 0
    for n, ((is_real, key), row_indexes) in enumerate(groups.items()):
        group = [plan.read(rows[i]) for i in row_indexes]
        order_number = key if is_real else f"IMP-{run_prefix}-{n}"

        email = normalize_email(group[0].get("email"))
        customer_id = email_to_id.get(email) if email else None
        if customer_id is None:
            unlinked += 1

        values = build_order_values(
            order_number,
            group,
            customer_id=customer_id,
            line_items_mapped=line_items_mapped,
            org_id=org_id,
            import_id=import_id,
            imported_at=imported_at,
            user_id=user_id,
        )
        drafts.append(Draft(values=values, source_rows=tuple(i + 1 for i in row_indexes)))

    logger.debug(
        "Grouped %d rows into %d orders (%d without a customer)", len(rows), len(drafts), unlinked
    )
    return drafts
