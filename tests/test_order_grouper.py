from datetime import datetime
from decimal import Decimal

from conftest import mappings, rows_of
from services.field_mapper import MappingPlan
from services.order_grouper import group_orders, group_rows

IMPORTED_AT = datetime(2024, 3, 1, 12, 0, 0)

SHOPIFY_EXPORT = (
    "Email,Name,Total,Lineitem name,Lineitem quantity,Lineitem price,Lineitem sku,Created at\n"
    "alice@x.com,A100,30.00,Mug,2,10.00,MUG-1,2024-01-05 10:00:00 -0500\n"
    "alice@x.com,A100,30.00,Spoon,abc,10.00,SP-1,\n"
    "alice@x.com,A100,30.00,Bowl,1,N/A,BW-1,\n"
    "bob@y.com,B200,12.50,Plate,1,12.50,PL-1,2024-01-06T09:30:00Z\n"
    "bob@y.com,B200,12.50,Cup,3,0,CP-1,\n"
)

SHOPIFY_MAPPING = [
    ("Email", "email"),
    ("Name", "order_number"),
    ("Total", "total_price"),
    ("Lineitem name", "lineitem_name"),
    ("Lineitem quantity", "lineitem_quantity"),
    ("Lineitem price", "lineitem_price"),
    ("Lineitem sku", "lineitem_sku"),
    ("Created at", "processed_at"),
]


def _group(text, pairs, email_to_id=None):
    rows = rows_of(text)
    plan = MappingPlan(mappings(pairs))
    return group_orders(
        rows,
        plan,
        email_to_id or {},
        org_id="acme",
        import_id="run-1",
        run_prefix="abcd1234",
        imported_at=IMPORTED_AT,
    )


def test_rows_sharing_an_order_key_become_one_order():
    drafts = _group(SHOPIFY_EXPORT, SHOPIFY_MAPPING, {"alice@x.com": "c-alice", "bob@y.com": "c-bob"})

    assert [d.values["order_number"] for d in drafts] == ["A100", "B200"]
    a100, b200 = (d.values for d in drafts)
    assert len(a100["line_items"]) == 3
    assert len(b200["line_items"]) == 2
    assert [i["name"] for i in a100["line_items"]] == ["Mug", "Spoon", "Bowl"]
    assert drafts[0].source_rows == (1, 2, 3)
    assert a100["customer_id"] == "c-alice"


def test_order_level_fields_come_from_the_first_row():
    a100 = _group(SHOPIFY_EXPORT, SHOPIFY_MAPPING)[0].values

    assert a100["total_price"] == Decimal("30.00")
    assert a100["subtotal_price"] == Decimal("30.00")
    assert a100["processed_at"] == datetime(2024, 1, 5, 15, 0, 0)
    assert a100["financial_status"] == "paid"
    assert a100["fulfillment_status"] == "fulfilled"
    assert a100["currency"] == "USD"
    assert a100["external_id"] == "import-A100"


def test_unparsable_numbers_default_without_dropping_rows():
    items = _group(SHOPIFY_EXPORT, SHOPIFY_MAPPING)[0].values["line_items"]
    spoon, bowl = items[1], items[2]
    assert spoon["quantity"] == 1
    assert bowl["price"] == 0


def test_unresolved_email_keeps_order_with_null_customer():
    drafts = _group(SHOPIFY_EXPORT, SHOPIFY_MAPPING, {"alice@x.com": "c-alice"})
    assert drafts[1].values["customer_id"] is None
    assert drafts[1].values["email"] == "bob@y.com"


def test_without_order_key_every_row_is_its_own_order():
    text = "Email,Total\na@x.com,5\na@x.com,7\n,9\n"
    drafts = _group(text, [("Email", "email"), ("Total", "total_price")])

    numbers = [d.values["order_number"] for d in drafts]
    assert numbers == ["IMP-abcd1234-0", "IMP-abcd1234-1", "IMP-abcd1234-2"]
    assert drafts[2].values["customer_id"] is None
    assert drafts[2].values["email"] is None
    # a synthesized summary line item per order
    assert drafts[0].values["line_items"] == [
        {"name": "Order IMP-abcd1234-0", "sku": None, "quantity": 1, "price": 5}
    ]
    assert drafts[0].values["processed_at"] == IMPORTED_AT


def test_blank_order_key_becomes_a_singleton():
    text = "Email,Order\na@x.com,A1\nb@x.com,\nc@x.com,\na@x.com,A1\n"
    plan = MappingPlan(mappings([("Email", "email"), ("Order", "order_number")]))
    groups = group_rows(rows_of(text), plan)
    assert list(groups.values()) == [[0, 3], [1], [2]]


def test_without_line_item_columns_rows_are_summed_into_the_order():
    text = "Email,Order,Total\nalice@x.com,A100,10\nalice@x.com,A100,5\n"
    a100 = _group(text, [("Email", "email"), ("Order", "order_number"), ("Total", "total_price")])[0].values

    assert len(a100["line_items"]) == 2
    assert [i["price"] for i in a100["line_items"]] == [10, 5]
    assert a100["total_price"] == Decimal("15.00")


def test_shipping_address_and_metadata_from_mapped_prefixes():
    text = "Email,Ship City,Ship Zip,Gift\na@x.com,Lyon,69001,yes\n"
    drafts = _group(
        text,
        [("Email", "email"), ("Ship City", "ship_city"), ("Ship Zip", "ship_zip"), ("Gift", "meta:gift")],
    )
    values = drafts[0].values
    assert values["shipping_address"] == {"city": "Lyon", "zip": "69001"}
    assert values["metadata_json"]["gift"] == "yes"
    assert values["metadata_json"]["imported_at"] == IMPORTED_AT.isoformat()
