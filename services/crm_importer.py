"""
CRM flat import: one record per source row into contacts, companies, deals or
products. Contacts auto-link to companies by name.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from database import _new_id
from services.batch_writer import Draft, ProgressCounter, RowError, WriteReport, write_in_chunks
from services.coercion import parse_date, parse_number
from services.field_mapper import MappedRow, MappingPlan
from services.target_schemas import TargetSchema

logger = logging.getLogger(__name__)

DECIMAL_FIELDS = ("value", "probability", "unit_price", "annual_revenue")
INTEGER_FIELDS = ("employees",)
DATE_FIELDS = ("expected_close_date",)


@dataclass
class CrmImportOutcome:
    report: WriteReport = field(default_factory=WriteReport)
    skipped: List[RowError] = field(default_factory=list)
    companies_created: int = 0
    custom_fields_added: int = 0


def _field_value(key: str, raw: str) -> Any:
    if key in DECIMAL_FIELDS:
        return parse_number(raw)
    if key in INTEGER_FIELDS:
        return int(parse_number(raw))
    if key in DATE_FIELDS:
        return parse_date(raw)
    return raw or None


def build_crm_values(
    row: MappedRow,
    plan: MappingPlan,
    schema: TargetSchema,
    *,
    org_id: str,
    user_id: Optional[str],
    company_ids: Dict[str, str],
) -> Dict[str, Any]:
    values: Dict[str, Any] = {"id": _new_id(), "org_id": org_id, "user_id": user_id}
    for key, _column in plan.standard_fields():
        if not schema.has_field(key):
            continue
        raw = row.get(key)
        if key == "company_name":
            company_id = company_ids.get(raw.lower()) if raw else None
            if company_id:
                values["company_id"] = company_id
            continue
        values[key] = _field_value(key, raw)

    metadata = row.extensions()
    if metadata:
        values["metadata_json"] = metadata
    if schema.key == "crm_contacts":
        values["source"] = "import"
    return values


async def link_companies(
    rows: Sequence[Dict[str, str]],
    plan: MappingPlan,
    *,
    store,
    org_id: str,
    user_id: Optional[str] = None,
) -> tuple:
    """Find or create a company for every distinct company_name; returns (name -> id, created)."""
    names: Dict[str, str] = {}
    for row in rows:
        name = plan.read(row).get("company_name")
        if name:
            names.setdefault(name.lower(), name)
    if not names:
        return {}, 0

    company_ids = await store.find_company_ids_by_name(org_id, names.values())
    missing = [
        {"id": _new_id(), "org_id": org_id, "user_id": user_id, "name": original}
        for lowered, original in names.items()
        if lowered not in company_ids
    ]
    created = 0
    if missing:
        try:
            created = await store.insert_crm_records("crm_companies", missing)
        except Exception:
            logger.exception("Failed to create %d companies for org %s", len(missing), org_id)
        else:
            for company in missing:
                company_ids[company["name"].lower()] = company["id"]
    return company_ids, created


async def register_custom_fields(
    plan: MappingPlan,
    schema: TargetSchema,
    *,
    store,
    org_id: str,
    user_id: Optional[str] = None,
) -> int:
    definitions = []
    for ext, column in plan.extensions:
        definitions.append({"field_key": ext.key, "field_label": column, "field_type": ext.value_type})
    if not definitions:
        return 0
    try:
        return await store.add_custom_fields(org_id, schema.key, definitions, user_id=user_id)
    except Exception:
        logger.exception("Failed to register custom fields for %s", schema.key)
        return 0


async def import_crm_rows(
    rows: Sequence[Dict[str, str]],
    plan: MappingPlan,
    schema: TargetSchema,
    *,
    store,
    org_id: str,
    progress: ProgressCounter,
    user_id: Optional[str] = None,
    chunk_size: Optional[int] = None,
) -> CrmImportOutcome:
    outcome = CrmImportOutcome()
    outcome.custom_fields_added = await register_custom_fields(
        plan, schema, store=store, org_id=org_id, user_id=user_id
    )

    company_ids: Dict[str, str] = {}
    if schema.key == "crm_contacts" and plan.has("company_name"):
        company_ids, outcome.companies_created = await link_companies(
            rows, plan, store=store, org_id=org_id, user_id=user_id
        )

    drafts: List[Draft] = []
    for idx, raw in enumerate(rows):
        row = plan.read(raw)
        blank = [key for key in schema.required_keys if not row.get(key)]
        if blank:
            outcome.skipped.append(
                RowError(row=idx + 1, field=blank[0], message=f"Missing required value for {blank[0]}")
            )
            continue
        values = build_crm_values(row, plan, schema, org_id=org_id, user_id=user_id, company_ids=company_ids)
        drafts.append(Draft(values=values, source_rows=(idx + 1,)))

    if outcome.skipped:
        progress.record_errors(outcome.skipped)
        await progress.advance(len(outcome.skipped))

    async def _insert(chunk: List[Dict[str, Any]]) -> int:
        return await store.insert_crm_records(schema.key, chunk)

    outcome.report = await write_in_chunks(
        drafts,
        _insert,
        label=schema.label,
        progress=progress,
        chunk_size=chunk_size,
    )
    logger.info(
        "CRM import into %s: written=%d failed=%d skipped=%d companies_created=%d",
        schema.key, outcome.report.written, outcome.report.failed,
        len(outcome.skipped), outcome.companies_created,
    )
    return outcome
