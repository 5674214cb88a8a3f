import pytest

from services.errors import MissingRequiredFieldsError
from services.field_mapper import (
    ColumnMapping,
    Extension,
    ExtensionFieldDef,
    MappingPlan,
    Skip,
    Standard,
    make_extension_key,
    missing_required_fields,
    parse_column_mappings,
    parse_mapping_target,
    propose_extension,
    suggest_mapping,
    suggest_mappings,
    validate_mappings,
)
from services.target_schemas import get_target_schema

ORDERS = get_target_schema("ecom_orders")
CONTACTS = get_target_schema("crm_contacts")


def test_shopify_alias_wins_over_heuristics():
    assert suggest_mapping("Name", ORDERS) == Standard("order_number")
    assert suggest_mapping("Billing City", ORDERS) == Standard("addr_city")
    assert suggest_mapping("Lineitem sku", ORDERS) == Standard("lineitem_sku")


def test_alias_ignored_when_field_not_in_target():
    # "total" aliases to total_price, which contacts don't have
    assert suggest_mapping("Total", CONTACTS) == Skip()


def test_exact_key_then_label_then_containment():
    assert suggest_mapping("total_tax", ORDERS) == Standard("total_tax")
    assert suggest_mapping("Customer Phone", ORDERS) == Standard("phone")
    assert suggest_mapping("E-mail Address", CONTACTS) == Standard("email")
    assert suggest_mapping("Contact Email", CONTACTS) == Standard("email")


def test_unmatched_column_is_skipped():
    assert suggest_mapping("Favourite Colour", ORDERS) == Skip()


def test_known_custom_fields_are_suggested_after_standard_fields():
    custom = [ExtensionFieldDef("loyalty_tier", "Loyalty Tier", "text")]
    assert suggest_mapping("Loyalty Tier", CONTACTS, custom) == Extension("loyalty_tier", "text")


def test_make_extension_key():
    assert make_extension_key("Loyalty Tier #") == "loyalty_tier"
    assert make_extension_key("  VIP?  ") == "vip"


def test_parse_mapping_target_legacy_strings():
    assert parse_mapping_target("") == Skip()
    assert parse_mapping_target("skip") == Skip()
    assert parse_mapping_target("email") == Standard("email")
    assert parse_mapping_target("meta:Gift Wrap", "boolean") == Extension("gift_wrap", "boolean")
    assert parse_mapping_target("custom:score", "number") == Extension("score", "number")
    assert parse_mapping_target("meta:", "text") == Skip()


def test_propose_extension_infers_type():
    assert propose_extension("Points", ["10", "25.5", ""]).value_type == "number"
    assert propose_extension("VIP", ["yes", "no"]).value_type == "boolean"
    assert propose_extension("Joined", ["2024-01-05", "2024-02-01"]).value_type == "date"
    assert propose_extension("Notes", ["hello"]) == Extension("notes", "text")


def test_required_fields_validation():
    mapped = [ColumnMapping("Order", Standard("order_number"))]
    assert missing_required_fields(ORDERS, mapped) == ["email"]
    with pytest.raises(MissingRequiredFieldsError) as exc:
        validate_mappings(ORDERS, mapped)
    assert exc.value.missing == ["email"]

    validate_mappings(ORDERS, mapped + [ColumnMapping("Email", Standard("email"))])


def test_suggest_mappings_flags_required():
    suggestions = suggest_mappings(["Email", "Total"], ORDERS)
    assert suggestions[0] == ColumnMapping("Email", Standard("email"), True)
    assert suggestions[1].target == Standard("total_price")
    assert suggestions[1].required is False


def test_parse_column_mappings_accepts_both_wire_forms():
    from_dict = parse_column_mappings({"Email": "email", "Junk": "skip"}, ORDERS)
    assert [m.target for m in from_dict] == [Standard("email"), Skip()]
    assert from_dict[0].required is True

    from_list = parse_column_mappings(
        [{"csv_column": "Tier", "target_field": "meta:tier", "value_type": "text"}], ORDERS
    )
    assert from_list[0].target == Extension("tier", "text")

    with pytest.raises(ValueError):
        parse_column_mappings([{"target": "email"}], ORDERS)


def test_mapping_plan_reads_rows_through_mapping():
    plan = MappingPlan([
        ColumnMapping("E", Standard("email")),
        ColumnMapping("Dup", Standard("email")),
        ColumnMapping("City", Standard("addr_city")),
        ColumnMapping("Pts", Extension("points", "number")),
    ])
    row = plan.read({"E": " A@X.com ", "Dup": "other", "City": "Paris", "Pts": "12"})
    assert row.get("email") == "A@X.com"
    assert row.get("phone") == ""
    assert row.with_prefix("addr_") == {"city": "Paris"}
    assert row.extensions() == {"points": 12.0}
