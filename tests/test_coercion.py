from decimal import Decimal

import pytest

from services.coercion import parse_number, parse_quantity


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,234.50", Decimal("1234.50")),
        ("12.50.", Decimal("12.50")),
        ("1.2.3", Decimal("1.2")),
        ("10-", Decimal("10")),
        ("$19.99 - sale", Decimal("19.99")),
        ("-4.5", Decimal("-4.5")),
        (".75", Decimal("0.75")),
    ],
)
def test_parse_number_reads_the_leading_number(raw, expected):
    assert parse_number(raw) == expected


@pytest.mark.parametrize("raw", ["N/A", "", "-", ".", "--5", None])
def test_parse_number_defaults_when_nothing_numeric_leads(raw):
    assert parse_number(raw) == Decimal("0")


def test_quantity_defaults_to_one():
    assert parse_quantity("abc") == Decimal("1")
    assert parse_quantity("3 pcs") == Decimal("3")
