"""
Delimited Text Reader
Tokenizes uploaded exports (CSV or TSV) into a header list and row maps.

Commerce exports routinely carry multi-line addresses and notes inside quoted
fields, so records are split on unquoted line breaks only.
"""
from dataclasses import dataclass, field
from typing import Dict, List
import logging

logger = logging.getLogger(__name__)

QUOTE = '"'
SEPARATORS = (",", "\t")


@dataclass(frozen=True)
class ParsedTable:
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.headers


def tokenize(text: str) -> List[List[str]]:
    """Split raw text into records of fields, dropping blank records."""
    records: List[List[str]] = []
    record: List[str] = []
    buf: List[str] = []
    quoted = False  # current field contained a quoted section
    in_quotes = False
    tail_start = 0  # buf index where text after the last closing quote begins
    i = 0
    n = len(text)

    def end_field() -> None:
        nonlocal quoted
        value = "".join(buf)
        if quoted:
            # trailing padding after the closing quote is not content
            value = value[:tail_start] + value[tail_start:].rstrip()
        else:
            value = value.strip()
        record.append(value)
        buf.clear()
        quoted = False

    def end_record() -> None:
        nonlocal record
        end_field()
        if any(value != "" for value in record):
            records.append(record)
        record = []

    if text.startswith("\ufeff"):
        i = 1

    while i < n:
        ch = text[i]
        if in_quotes:
            if ch == QUOTE:
                if i + 1 < n and text[i + 1] == QUOTE:
                    buf.append(QUOTE)
                    i += 1
                else:
                    in_quotes = False
                    tail_start = len(buf)
            else:
                buf.append(ch)
        elif ch == QUOTE:
            if not quoted:
                # whitespace before an opening quote is not content
                if not "".join(buf).strip():
                    buf.clear()
            in_quotes = True
            quoted = True
        elif ch in SEPARATORS:
            end_field()
        elif ch == "\n" or ch == "\r":
            if ch == "\r" and i + 1 < n and text[i + 1] == "\n":
                i += 1
            end_record()
        else:
            buf.append(ch)
        i += 1

    end_record()
    return records


def parse_delimited(text: str) -> ParsedTable:
    """Parse raw text into headers + ordered row maps.

    Short rows are padded with empty strings; extra trailing values beyond the
    header are ignored. Empty input yields an empty table.
    """
    records = tokenize(text or "")
    if not records:
        return ParsedTable()

    headers = records[0]
    rows: List[Dict[str, str]] = []
    for values in records[1:]:
        row: Dict[str, str] = {}
        for idx, header in enumerate(headers):
            row[header] = values[idx] if idx < len(values) else ""
        rows.append(row)

    logger.debug("Parsed delimited text: columns=%d rows=%d", len(headers), len(rows))
    return ParsedTable(headers=headers, rows=rows)
