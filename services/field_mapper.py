"""
Field Mapping Service
Proposes source-column -> target-field mappings and models the operator's
approved mapping as a tagged variant: Skip | Standard(field) | Extension(key, type).
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import logging
import re

from services.coercion import coerce_value, infer_value_type
from services.errors import MissingRequiredFieldsError
from services.target_schemas import SHOPIFY_HEADER_MAP, TargetSchema

logger = logging.getLogger(__name__)

EXTENSION_TYPES = ("text", "number", "date", "boolean")

_STRIP = re.compile(r"[^a-z0-9]")
_KEY_SEPARATORS = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Skip:
    def encode(self) -> str:
        return ""


@dataclass(frozen=True)
class Standard:
    field: str

    def encode(self) -> str:
        return self.field


@dataclass(frozen=True)
class Extension:
    key: str
    value_type: str = "text"

    def encode(self) -> str:
        return f"meta:{self.key}"


MappingTarget = Union[Skip, Standard, Extension]


@dataclass(frozen=True)
class ColumnMapping:
    source_column: str
    target: MappingTarget
    required: bool = False

    @property
    def skipped(self) -> bool:
        return isinstance(self.target, Skip)

    def as_ledger_entry(self) -> Dict[str, object]:
        return {
            "csv_column": self.source_column,
            "target_field": self.target.encode(),
            "skipped": self.skipped,
            "required": self.required,
        }


@dataclass(frozen=True)
class ExtensionFieldDef:
    """A known extension (custom) field offered alongside the fixed schema."""
    key: str
    label: str
    value_type: str = "text"


def normalize_name(value: str) -> str:
    return _STRIP.sub("", (value or "").lower())


def make_extension_key(label: str) -> str:
    """'Loyalty Tier #' -> 'loyalty_tier'."""
    return _KEY_SEPARATORS.sub("_", (label or "").strip().lower()).strip("_")


def parse_mapping_target(raw: Optional[str], value_type: str = "text") -> MappingTarget:
    """Decode the wire form: '' / 'skip' / '<field>' / 'meta:<key>' / 'custom:<key>'."""
    text = (raw or "").strip()
    if not text or text.lower() == "skip":
        return Skip()
    for prefix in ("meta:", "custom:"):
        if text.startswith(prefix):
            key = make_extension_key(text[len(prefix):])
            if not key:
                return Skip()
            vt = value_type if value_type in EXTENSION_TYPES else "text"
            return Extension(key=key, value_type=vt)
    return Standard(field=text)


def _matches(norm: str, key_norm: str, label_norm: str) -> Optional[int]:
    """Return match priority (lower wins) or None."""
    if not norm:
        return None
    if norm == key_norm:
        return 0
    if norm == label_norm:
        return 1
    if key_norm and (key_norm in norm or norm in key_norm):
        return 2
    if label_norm and (label_norm in norm or norm in label_norm):
        return 2
    return None


def suggest_mapping(
    source_column: str,
    schema: TargetSchema,
    extension_fields: Sequence[ExtensionFieldDef] = (),
) -> MappingTarget:
    """Propose a target for one source column; Skip when nothing matches."""
    lower_header = (source_column or "").strip().lower()
    alias = SHOPIFY_HEADER_MAP.get(lower_header)
    if alias and schema.has_field(alias):
        return Standard(alias)

    norm = normalize_name(source_column)

    for tier in (0, 1, 2):
        for f in schema.fields:
            if _matches(norm, f.key.replace("_", ""), normalize_name(f.label)) == tier:
                return Standard(f.key)

    for tier in (0, 1, 2):
        for ext in extension_fields:
            if _matches(norm, ext.key.replace("_", ""), normalize_name(ext.label)) == tier:
                return Extension(ext.key, ext.value_type)

    return Skip()


def suggest_mappings(
    headers: Sequence[str],
    schema: TargetSchema,
    extension_fields: Sequence[ExtensionFieldDef] = (),
) -> List[ColumnMapping]:
    required = set(schema.required_keys)
    suggestions = []
    for header in headers:
        target = suggest_mapping(header, schema, extension_fields)
        is_required = isinstance(target, Standard) and target.field in required
        suggestions.append(ColumnMapping(header, target, is_required))
    return suggestions


def propose_extension(source_column: str, samples: Iterable[str], label: Optional[str] = None) -> Extension:
    """Map a column to a new extension key, inferring its type from sample values."""
    key = make_extension_key(label or source_column)
    return Extension(key=key, value_type=infer_value_type(samples))


def missing_required_fields(schema: TargetSchema, mappings: Sequence[ColumnMapping]) -> List[str]:
    mapped = {m.target.field for m in mappings if isinstance(m.target, Standard)}
    return [key for key in schema.required_keys if key not in mapped]


def validate_mappings(schema: TargetSchema, mappings: Sequence[ColumnMapping]) -> None:
    missing = missing_required_fields(schema, mappings)
    if missing:
        raise MissingRequiredFieldsError(schema.key, missing)
    unknown = [
        m.target.field for m in mappings
        if isinstance(m.target, Standard) and not schema.has_field(m.target.field)
    ]
    if unknown:
        logger.warning("Ignoring mappings to unknown %s fields: %s", schema.key, ", ".join(unknown))


class MappedRow:
    """Read a raw row through the approved mapping."""

    __slots__ = ("row", "_plan")

    def __init__(self, row: Dict[str, str], plan: "MappingPlan"):
        self.row = row
        self._plan = plan

    def get(self, field: str) -> str:
        column = self._plan.column_for(field)
        if column is None:
            return ""
        return (self.row.get(column) or "").strip()

    def with_prefix(self, prefix: str) -> Dict[str, str]:
        """Non-empty values of fields sharing a prefix, keyed without the prefix."""
        out: Dict[str, str] = {}
        for field, column in self._plan.prefixed(prefix):
            value = (self.row.get(column) or "").strip()
            if value:
                out[field[len(prefix):]] = value
        return out

    def extensions(self) -> Dict[str, object]:
        """Non-empty extension values, coerced by their declared type."""
        out: Dict[str, object] = {}
        for ext, column in self._plan.extensions:
            value = (self.row.get(column) or "").strip()
            if value:
                out[ext.key] = coerce_value(value, ext.value_type)
        return out


class MappingPlan:
    """Index over approved mappings; first mapping wins when a field is mapped twice."""

    def __init__(self, mappings: Sequence[ColumnMapping]):
        self.mappings = tuple(mappings)
        self._by_field: Dict[str, str] = {}
        self.extensions: List[tuple] = []
        for m in self.mappings:
            if isinstance(m.target, Standard):
                self._by_field.setdefault(m.target.field, m.source_column)
            elif isinstance(m.target, Extension):
                self.extensions.append((m.target, m.source_column))

    def column_for(self, field: str) -> Optional[str]:
        return self._by_field.get(field)

    def has(self, field: str) -> bool:
        return field in self._by_field

    def prefixed(self, prefix: str) -> List[tuple]:
        return [(f, c) for f, c in self._by_field.items() if f.startswith(prefix)]

    def standard_fields(self) -> List[tuple]:
        return list(self._by_field.items())

    def read(self, row: Dict[str, str]) -> MappedRow:
        return MappedRow(row, self)


def parse_column_mappings(payload: Union[Dict[str, Any], Sequence[Any]], schema: TargetSchema) -> List[ColumnMapping]:
    """Build approved mappings from the wire form.

    Accepts either {"<column>": "<target>"} or a list of
    {"source_column"|"csv_column", "target"|"target_field", "value_type"?} entries.
    """
    if isinstance(payload, dict):
        entries = [{"source_column": col, "target": target} for col, target in payload.items()]
    else:
        entries = list(payload or [])

    required = set(schema.required_keys)
    mappings: List[ColumnMapping] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid mapping entry: {entry!r}")
        column = entry.get("source_column") or entry.get("csv_column")
        if not column:
            raise ValueError(f"Mapping entry without a source column: {entry!r}")
        raw_target = entry.get("target", entry.get("target_field"))
        target = parse_mapping_target(raw_target, entry.get("value_type") or "text")
        is_required = isinstance(target, Standard) and target.field in required
        mappings.append(ColumnMapping(column, target, is_required))
    return mappings
