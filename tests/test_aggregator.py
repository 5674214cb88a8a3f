from datetime import datetime
from decimal import Decimal

from conftest import ORG
from services.aggregator import compute_aggregates, recompute_customer_aggregates


def test_no_history_gives_zeroes():
    assert compute_aggregates([]) == {
        "orders_count": 0,
        "total_spent": Decimal("0.00"),
        "avg_order_value": Decimal("0.00"),
        "first_order_at": None,
        "last_order_at": None,
    }


def test_average_rounds_half_up():
    history = [
        (Decimal("10.00"), datetime(2024, 1, 1)),
        (Decimal("10.00"), datetime(2024, 1, 2)),
        (Decimal("10.01"), datetime(2024, 1, 3)),
    ]
    result = compute_aggregates(history)
    assert result["orders_count"] == 3
    assert result["total_spent"] == Decimal("30.01")
    assert result["avg_order_value"] == Decimal("10.00")
    assert result["first_order_at"] == datetime(2024, 1, 1)
    assert result["last_order_at"] == datetime(2024, 1, 3)

    assert compute_aggregates([(Decimal("0.05"), datetime(2024, 1, 1)), (Decimal("0"), datetime(2024, 1, 2))])[
        "avg_order_value"
    ] == Decimal("0.03")


def _order(customer_id, number, total, when):
    return {
        "org_id": ORG,
        "customer_id": customer_id,
        "order_number": number,
        "total_price": Decimal(total),
        "line_items": [],
        "processed_at": when,
    }


async def test_recompute_overwrites_from_full_history(store):
    await store.insert_customers([
        {"id": "c-1", "org_id": ORG, "email": "a@x.com", "orders_count": 99, "total_spent": Decimal("1.00")},
        {"id": "c-2", "org_id": ORG, "email": "b@x.com"},
    ])
    await store.insert_orders([
        _order("c-1", "A1", "20.00", datetime(2024, 2, 1)),
        _order("c-1", "A2", "5.50", datetime(2024, 1, 1)),
    ])

    results = await recompute_customer_aggregates(store, ["c-1", "c-2", "c-1"])

    assert set(results) == {"c-1", "c-2"}
    alice = await store.get_customer_by_email(ORG, "a@x.com")
    assert alice.orders_count == 2
    assert alice.total_spent == Decimal("25.50")
    assert alice.avg_order_value == Decimal("12.75")
    assert alice.first_order_at == datetime(2024, 1, 1)
    assert alice.last_order_at == datetime(2024, 2, 1)

    bob = await store.get_customer_by_email(ORG, "b@x.com")
    assert bob.orders_count == 0
    assert bob.last_order_at is None


async def test_one_failing_customer_does_not_stop_the_rest(store):
    await store.insert_customers([{"id": "c-1", "org_id": ORG, "email": "a@x.com"}])
    original = store.get_customer_order_history

    async def flaky(customer_id):
        if customer_id == "bad":
            raise RuntimeError("connection reset")
        return await original(customer_id)

    store.get_customer_order_history = flaky
    results = await recompute_customer_aggregates(store, ["bad", "c-1"])
    assert list(results) == ["c-1"]
