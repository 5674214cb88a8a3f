"""
Value coercion helpers shared by the import stages.
"""
import re
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_TRUTHY = {"true", "yes", "1", "y"}
_FALSY = {"false", "no", "0", "n"}
_BAD_DATES = {"0000-00-00", "1900-01-01", "n/a", "null", "none", "nan", ""}

CENT = Decimal("0.01")

_DATETIME_FORMATS = (
    '%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z', '%Y-%m-%d %H:%M:%S%z',
    '%Y-%m-%d %H:%M:%S %z', '%Y-%m-%dT%H:%M:%S.%f', '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S.%f', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M',
    '%Y-%m-%d', '%Y/%m/%d', '%m/%d/%Y %H:%M:%S', '%m/%d/%Y %H:%M', '%m/%d/%Y',
    '%d/%m/%Y %H:%M:%S', '%d/%m/%Y',
)


def parse_number(raw: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Strip everything but digits, '.' and '-', then read the leading number.

    "$1,234.50" -> 1234.50, "12.50." -> 12.50, "$19.99 - sale" -> 19.99,
    "N/A" -> default.
    """
    if raw is None:
        return default
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, (int, float)):
        return Decimal(str(raw))
    match = _LEADING_NUMBER.match(_NON_NUMERIC.sub("", str(raw)))
    if match is None:
        return default
    return Decimal(match.group(0))


def parse_quantity(raw: Any) -> Decimal:
    """Line item quantities fall back to 1, not 0."""
    return parse_number(raw, default=Decimal("1"))


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    return money(sum(values, Decimal("0")))


def as_json_number(value: Decimal) -> Any:
    """Render a Decimal for JSON payloads: ints stay ints."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def parse_bool(raw: Any) -> bool:
    return str(raw or "").strip().lower() in _TRUTHY


def parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    """Parse common export timestamps into naive UTC; None when unparsable."""
    if not raw or not str(raw).strip():
        return None
    ds = str(raw).strip()
    if ds.lower() in _BAD_DATES:
        return None
    if ds.endswith("Z"):
        ds = ds[:-1] + "+0000"

    for fmt in _DATETIME_FORMATS:
        try:
            dt = datetime.strptime(ds, fmt)
        except ValueError:
            continue
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
        return dt

    try:
        dt = datetime.fromisoformat(ds)
    except ValueError:
        logger.debug("Could not parse datetime: %s", ds)
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_date(raw: Optional[str]) -> Optional[date]:
    dt = parse_datetime(raw)
    return dt.date() if dt else None


def _plain_decimal(text: str) -> Optional[Decimal]:
    try:
        value = Decimal(text.replace(",", ""))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def infer_value_type(samples: Iterable[str]) -> str:
    """Guess an extension field type from sample values: boolean, number, date or text."""
    values = [s.strip() for s in samples if s and s.strip()]
    if not values:
        return "text"
    lowered = {v.lower() for v in values}
    if lowered <= (_TRUTHY | _FALSY) and not lowered <= {"0", "1"}:
        return "boolean"
    if all(_plain_decimal(v) is not None for v in values):
        return "number"
    if all(parse_datetime(v) is not None for v in values):
        return "date"
    return "text"


def coerce_value(raw: str, value_type: str) -> Any:
    """Coerce an extension value by its declared type."""
    text = (raw or "").strip()
    if value_type == "number":
        if not text:
            return None
        value = _plain_decimal(text)
        return float(value) if value is not None else None
    if value_type == "boolean":
        return parse_bool(text)
    if value_type == "date":
        parsed = parse_date(text)
        return parsed.isoformat() if parsed else None
    return text
