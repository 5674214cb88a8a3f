"""
Customer aggregate recompute.

Rollups are always derived from the customer's full order history; stored
values are overwritten, never incremented.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from services.coercion import money, sum_money

logger = logging.getLogger(__name__)


def compute_aggregates(history: Sequence[Tuple[Decimal, datetime]]) -> Dict[str, Any]:
    """Rollups for an order history sorted by processed_at ascending."""
    if not history:
        return {
            "orders_count": 0,
            "total_spent": Decimal("0.00"),
            "avg_order_value": Decimal("0.00"),
            "first_order_at": None,
            "last_order_at": None,
        }
    total = sum_money(Decimal(t) if t is not None else Decimal("0") for t, _ in history)
    count = len(history)
    return {
        "orders_count": count,
        "total_spent": total,
        "avg_order_value": money(total / count),
        "first_order_at": history[0][1],
        "last_order_at": history[-1][1],
    }


async def recompute_customer_aggregates(store, customer_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Re-read and rewrite rollups for every touched customer, one at a time.

    A failure for one customer is logged and the rest continue.
    """
    results: Dict[str, Dict[str, Any]] = {}
    failed: List[str] = []
    for customer_id in dict.fromkeys(customer_ids):
        try:
            history = await store.get_customer_order_history(customer_id)
            values = compute_aggregates(history)
            await store.update_customer_aggregates(customer_id, values)
        except Exception:
            logger.exception("Aggregate recompute failed for customer %s", customer_id)
            failed.append(customer_id)
            continue
        results[customer_id] = values

    logger.info("Recomputed aggregates for %d customers (%d failed)", len(results), len(failed))
    return results
