from datetime import date
from decimal import Decimal

from conftest import ORG, mappings
from services.field_mapper import ColumnMapping, Extension, Standard
from services.import_pipeline import build_context, run_import


def _context(text, pairs, target):
    return build_context(
        text=text,
        target_table=target,
        mappings=mappings(pairs),
        source_name=f"{target}.csv",
        org_id=ORG,
        user_id="user-7",
    )


async def test_contacts_auto_link_to_companies(store):
    await store.insert_crm_records("crm_companies", [{"id": "co-1", "org_id": ORG, "name": "Acme Corp"}])
    text = (
        "First Name,Last Name,Email,Company\n"
        "Ada,Lovelace,ada@acme.com,ACME corp\n"
        "Grace,Hopper,grace@navy.mil,Navy\n"
        "Linus,,linus@x.org,\n"
    )
    result = await run_import(
        _context(
            text,
            [("First Name", "first_name"), ("Last Name", "last_name"), ("Email", "email"), ("Company", "company_name")],
            "crm_contacts",
        ),
        store,
    )

    assert result.status == "completed"
    assert result.records_created == 3

    contacts = {c.first_name: c for c in await store.get_crm_records("crm_contacts", ORG)}
    assert contacts["Ada"].company_id == "co-1"
    assert contacts["Linus"].company_id is None
    assert contacts["Linus"].last_name is None
    assert contacts["Ada"].source == "import"
    assert contacts["Ada"].user_id == "user-7"

    companies = {c.name: c for c in await store.get_crm_records("crm_companies", ORG)}
    assert set(companies) == {"Acme Corp", "Navy"}
    assert contacts["Grace"].company_id == companies["Navy"].id


async def test_custom_fields_are_registered_and_typed(store):
    text = "Name,Price,In Stock,Launch\nWidget,9.99,yes,2024-05-01\nGadget,12,no,\n"
    context = build_context(
        text=text,
        target_table="crm_products",
        mappings=[
            ColumnMapping("Name", Standard("name")),
            ColumnMapping("Price", Standard("unit_price")),
            ColumnMapping("In Stock", Extension("in_stock", "boolean")),
            ColumnMapping("Launch", Extension("launch", "date")),
        ],
        source_name="products.csv",
        org_id=ORG,
    )
    result = await run_import(context, store)

    assert result.status == "completed"
    fields = {f.field_key: f for f in await store.list_custom_fields(ORG, "crm_products")}
    assert fields["in_stock"].field_type == "boolean"
    assert fields["in_stock"].field_label == "In Stock"
    assert fields["launch"].field_type == "date"

    products = {p.name: p for p in await store.get_crm_records("crm_products", ORG)}
    assert products["Widget"].unit_price == Decimal("9.99")
    assert products["Widget"].metadata_json == {"in_stock": True, "launch": "2024-05-01"}
    assert products["Gadget"].metadata_json == {"in_stock": False}

    # a second import doesn't duplicate the definitions
    await run_import(context, store)
    assert len(await store.list_custom_fields(ORG, "crm_products")) == 2


async def test_rows_missing_required_value_are_skipped(store):
    text = "Title,Value,Close\nBig deal,\"1,500.50\",2024-09-30\n,200,\nSmall deal,abc,\n"
    result = await run_import(
        _context(text, [("Title", "title"), ("Value", "value"), ("Close", "expected_close_date")], "crm_deals"),
        store,
    )

    assert result.status == "completed"
    assert result.records_created == 2
    assert result.error_rows == 1
    (error,) = result.errors
    assert (error.row, error.field) == (2, "title")
    assert error.message == "Missing required value for title"

    deals = {d.title: d for d in await store.get_crm_records("crm_deals", ORG)}
    assert deals["Big deal"].value == Decimal("1500.50")
    assert deals["Big deal"].expected_close_date == date(2024, 9, 30)
    assert deals["Small deal"].value == Decimal("0")
    assert deals["Small deal"].expected_close_date is None
