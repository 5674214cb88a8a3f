from services.csv_reader import parse_delimited, tokenize


def test_quoted_comma_and_newline_stay_in_one_field():
    text = 'Email,Address\nalice@x.com,"12 Main St, Apt 4\nSpringfield"\n'
    table = parse_delimited(text)

    assert table.headers == ["Email", "Address"]
    assert len(table.rows) == 1
    assert table.rows[0]["Address"] == "12 Main St, Apt 4\nSpringfield"


def test_doubled_quote_is_a_literal_quote():
    table = parse_delimited('Note\n"She said ""hi"""\n')
    assert table.rows[0]["Note"] == 'She said "hi"'


def test_crlf_records_and_blank_lines_dropped():
    text = "A,B\r\n1,2\r\n\r\n3,4\r\n"
    table = parse_delimited(text)
    assert table.rows == [{"A": "1", "B": "2"}, {"A": "3", "B": "4"}]


def test_tab_separated_input():
    table = parse_delimited("Email\tTotal\nbob@y.com\t20\n")
    assert table.rows == [{"Email": "bob@y.com", "Total": "20"}]


def test_short_rows_are_padded_and_extra_values_ignored():
    table = parse_delimited("A,B,C\n1\n1,2,3,4\n")
    assert table.rows[0] == {"A": "1", "B": "", "C": ""}
    assert table.rows[1] == {"A": "1", "B": "2", "C": "3"}


def test_empty_input_yields_empty_table():
    table = parse_delimited("")
    assert table.is_empty
    assert table.headers == []
    assert table.rows == []

    assert parse_delimited("\n\n").is_empty


def test_unquoted_whitespace_is_trimmed_quoted_is_kept():
    table = parse_delimited('Name,Code\n  Alice  ,"  A1 "\n')
    assert table.rows[0] == {"Name": "Alice", "Code": "  A1 "}


def test_trailing_record_without_newline_and_bom():
    records = tokenize("﻿Email,Total\nalice@x.com,10")
    assert records == [["Email", "Total"], ["alice@x.com", "10"]]


def test_text_after_closing_quote_keeps_inner_spaces():
    table = parse_delimited('Company,City\n"Acme" Inc  ,"Paris"   \n')
    assert table.rows[0] == {"Company": "Acme Inc", "City": "Paris"}
