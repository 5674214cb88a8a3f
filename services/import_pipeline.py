"""
Import Pipeline
Runs one upload through Reader -> Mapper -> Resolver -> Grouper -> Writer ->
Aggregator -> Ledger. Every stage receives an immutable ImportContext plus the
previous stage's output and the injected storage port.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from services.aggregator import recompute_customer_aggregates
from services.batch_writer import ImportProgressEvent, ProgressCallback, ProgressCounter, RowError, write_in_chunks
from services.crm_importer import import_crm_rows
from services.csv_reader import ParsedTable, parse_delimited
from services.customer_resolver import collect_emails, normalize_email, resolve_customers
from services.errors import ImportPipelineError, ImportRunNotFoundError
from services.field_mapper import (
    ColumnMapping, ExtensionFieldDef, MappingPlan, Skip, propose_extension,
    suggest_mappings, validate_mappings,
)
from services.import_ledger import fail_run, finalize_run, mark_importing, open_run, record_mapping
from services.order_grouper import group_orders, group_rows
from services.progress_tracker import progress_recorder, update_import_progress
from services.storage import storage as default_storage
from services.target_schemas import TargetSchema, detect_target_schema, get_target_schema
from settings import CUSTOMER_LOOKUP_BATCH_SIZE, IMPORT_CHUNK_SIZE, IMPORT_PREVIEW_ROWS, resolve_org_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportContext:
    """Everything a run needs, fixed before it starts."""
    org_id: str
    target_table: str
    source_name: str
    text: str
    mappings: Tuple[ColumnMapping, ...]
    user_id: Optional[str] = None
    # an already-opened pending run (HTTP uploads open the run before scheduling)
    import_id: Optional[str] = None
    chunk_size: int = IMPORT_CHUNK_SIZE
    lookup_batch_size: int = CUSTOMER_LOOKUP_BATCH_SIZE


@dataclass(frozen=True)
class ImportResult:
    import_id: str
    status: str
    target_table: str
    total_rows: int
    imported_rows: int
    error_rows: int
    errors: Tuple[RowError, ...] = ()
    customers_created: int = 0
    customers_matched: int = 0
    orders_created: int = 0
    records_created: int = 0
    duration_ms: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "import_id": self.import_id,
            "status": self.status,
            "target_table": self.target_table,
            "total_rows": self.total_rows,
            "imported_rows": self.imported_rows,
            "error_rows": self.error_rows,
            "errors": [e.as_dict() for e in self.errors],
            "customers_created": self.customers_created,
            "customers_matched": self.customers_matched,
            "orders_created": self.orders_created,
            "records_created": self.records_created,
            "duration_ms": self.duration_ms,
        }


@dataclass
class _StageTally:
    customers_created: int = 0
    customers_matched: int = 0
    orders_created: int = 0
    records_created: int = 0
    errors: List[RowError] = field(default_factory=list)


def breakdown_stats(table: ParsedTable, plan: MappingPlan, schema: TargetSchema) -> Dict[str, Any]:
    """Counts shown to the operator before a run starts."""
    total = len(table.rows)
    stats: Dict[str, Any] = {"total_rows": total}
    if not schema.is_commerce:
        return stats
    emails = collect_emails(table.rows, plan)
    with_email = sum(len(idx) for idx in emails.values())
    stats.update({
        "unique_customers": len(emails),
        "rows_with_email": with_email,
        "rows_without_email": total - with_email,
    })
    if schema.key == "ecom_orders":
        unique_orders = len(group_rows(table.rows, plan))
        stats["unique_orders"] = unique_orders
        stats["groups_rows"] = unique_orders < total
    return stats


async def known_extension_fields(store, org_id: str, schema: TargetSchema) -> List[ExtensionFieldDef]:
    if schema.extension_mode != "custom_fields":
        return []
    definitions = await store.list_custom_fields(org_id, schema.key)
    return [ExtensionFieldDef(d.field_key, d.field_label, d.field_type) for d in definitions]


async def preview_import(
    text: str,
    *,
    target_table: Optional[str] = None,
    org_id: Optional[str] = None,
    store=None,
) -> Dict[str, Any]:
    """Parse an upload and propose a mapping without writing anything."""
    store = store or default_storage
    org_id = resolve_org_id(org_id)
    table = parse_delimited(text)
    detected = detect_target_schema(table.headers) if table.headers else "crm_contacts"
    schema = get_target_schema(target_table or detected)

    extension_fields = await known_extension_fields(store, org_id, schema)
    suggestions = suggest_mappings(table.headers, schema, extension_fields)

    columns = []
    for mapping in suggestions:
        entry = mapping.as_ledger_entry()
        if isinstance(mapping.target, Skip):
            samples = [row.get(mapping.source_column, "") for row in table.rows[:IMPORT_PREVIEW_ROWS]]
            proposal = propose_extension(mapping.source_column, samples)
            entry["proposed_extension"] = {"key": proposal.key, "value_type": proposal.value_type}
        columns.append(entry)

    return {
        "headers": table.headers,
        "detected_target": detected,
        "target_table": schema.key,
        "fields": [
            {"key": f.key, "label": f.label, "required": f.required} for f in schema.fields
        ],
        "mapping": columns,
        "preview_rows": table.rows[:IMPORT_PREVIEW_ROWS],
        "stats": breakdown_stats(table, MappingPlan(suggestions), schema),
    }


async def _run_commerce(
    context: ImportContext,
    schema: TargetSchema,
    table: ParsedTable,
    plan: MappingPlan,
    *,
    store,
    import_id: str,
    progress: ProgressCounter,
    started_at: datetime,
) -> _StageTally:
    tally = _StageTally()
    emails = collect_emails(table.rows, plan)

    groups = group_rows(table.rows, plan) if schema.key == "ecom_orders" else {}

    missing: List[RowError] = []
    if schema.key == "ecom_customers":
        missing = [
            RowError(row=idx + 1, field="email", message="Missing email; customer not created")
            for idx, row in enumerate(table.rows)
            if not normalize_email(plan.read(row).get("email"))
        ]

    # one unit per distinct email, order group and email-less row; fixed before the first event
    progress.add_total(len(emails) + len(groups) + len(missing))

    if missing:
        progress.record_errors(missing)
        tally.errors.extend(missing)
        await progress.advance(len(missing))

    resolved = await resolve_customers(
        table.rows,
        plan,
        store=store,
        org_id=context.org_id,
        progress=progress,
        imported_at=started_at,
        user_id=context.user_id,
        chunk_size=context.chunk_size,
        lookup_batch_size=context.lookup_batch_size,
        emails=emails,
    )
    tally.customers_created = len(resolved.created)
    tally.customers_matched = len(resolved.existing)
    tally.errors.extend(resolved.report.errors)

    if schema.key == "ecom_orders":
        drafts = group_orders(
            table.rows,
            plan,
            resolved.email_to_id,
            org_id=context.org_id,
            import_id=import_id,
            run_prefix=import_id.replace("-", "")[:8],
            imported_at=started_at,
            user_id=context.user_id,
            groups=groups,
        )
        report = await write_in_chunks(
            drafts,
            store.insert_orders,
            label="Orders",
            progress=progress,
            chunk_size=context.chunk_size,
        )
        tally.orders_created = report.written
        tally.errors.extend(report.errors)

    await recompute_customer_aggregates(store, resolved.customer_ids())
    return tally


async def _run_crm(
    context: ImportContext,
    schema: TargetSchema,
    table: ParsedTable,
    plan: MappingPlan,
    *,
    store,
    progress: ProgressCounter,
) -> _StageTally:
    progress.add_total(len(table.rows))
    outcome = await import_crm_rows(
        table.rows,
        plan,
        schema,
        store=store,
        org_id=context.org_id,
        progress=progress,
        user_id=context.user_id,
        chunk_size=context.chunk_size,
    )
    return _StageTally(
        records_created=outcome.report.written,
        errors=list(outcome.skipped) + list(outcome.report.errors),
    )


async def run_import(
    context: ImportContext,
    store=None,
    on_progress: Optional[ProgressCallback] = None,
) -> ImportResult:
    """Run one import end to end and return its final ledger state.

    Raises MissingRequiredFieldsError / UnknownTargetSchemaError before any
    ledger row is written. Once a run is open it always reaches a terminal
    status; an unexpected error marks it failed and is re-raised.
    """
    store = store or default_storage
    schema = get_target_schema(context.target_table)
    validate_mappings(schema, context.mappings)

    table = parse_delimited(context.text)
    total_rows = len(table.rows)
    plan = MappingPlan(context.mappings)

    if context.import_id:
        if await store.get_import_run(context.import_id) is None:
            raise ImportRunNotFoundError(context.import_id)
        import_id = context.import_id
    else:
        run = await open_run(
            store,
            org_id=context.org_id,
            source_name=context.source_name,
            target_table=schema.key,
            total_rows=total_rows,
            user_id=context.user_id,
            file_preview=table.rows[:IMPORT_PREVIEW_ROWS],
        )
        import_id = run.id

    progress = ProgressCounter(
        0,
        progress_recorder(import_id, org_id=context.org_id, store=store, forward=on_progress),
    )
    ledger = dict(
        org_id=context.org_id,
        target_table=schema.key,
        source_name=context.source_name,
        total_rows=total_rows,
        user_id=context.user_id,
    )

    started = time.time()
    started_at = datetime.utcnow()
    try:
        await record_mapping(store, import_id, context.mappings)
        if not await mark_importing(store, import_id, started_at, total_rows):
            raise ImportPipelineError(f"Import run {import_id} has already finished")

        logger.info(
            "Import %s started: org=%s target=%s rows=%d chunk_size=%d",
            import_id, context.org_id, schema.key, total_rows, context.chunk_size,
        )

        if schema.is_commerce:
            tally = await _run_commerce(
                context, schema, table, plan,
                store=store, import_id=import_id, progress=progress, started_at=started_at,
            )
        else:
            tally = await _run_crm(context, schema, table, plan, store=store, progress=progress)

        errored_rows = {e.row for e in tally.errors}
        imported_rows = total_rows - len(errored_rows)
        status = await finalize_run(
            store, import_id, imported_rows=imported_rows, errors=tally.errors, **ledger
        )
    except Exception as exc:
        logger.exception("Import %s aborted", import_id)
        await fail_run(
            store, import_id, str(exc) or exc.__class__.__name__,
            errors=progress.errors, **ledger
        )
        await update_import_progress(
            import_id, org_id=context.org_id, event=progress.snapshot(), status="failed", store=store
        )
        raise

    await update_import_progress(
        import_id,
        org_id=context.org_id,
        event=ImportProgressEvent(progress.rows_total, progress.rows_total, progress.errors_so_far),
        status=status,
        store=store,
    )

    duration_ms = int((time.time() - started) * 1000)
    logger.info(
        "Import %s %s in %dms: imported=%d/%d errors=%d customers_created=%d orders=%d",
        import_id, status, duration_ms, imported_rows, total_rows, len(errored_rows),
        tally.customers_created, tally.orders_created,
    )
    return ImportResult(
        import_id=import_id,
        status=status,
        target_table=schema.key,
        total_rows=total_rows,
        imported_rows=imported_rows,
        error_rows=len(errored_rows),
        errors=tuple(tally.errors),
        customers_created=tally.customers_created,
        customers_matched=tally.customers_matched,
        orders_created=tally.orders_created,
        records_created=tally.records_created,
        duration_ms=duration_ms,
    )


def build_context(
    *,
    text: str,
    target_table: str,
    mappings: Sequence[ColumnMapping],
    source_name: str,
    org_id: Optional[str] = None,
    user_id: Optional[str] = None,
    import_id: Optional[str] = None,
) -> ImportContext:
    return ImportContext(
        org_id=resolve_org_id(org_id),
        target_table=target_table,
        source_name=source_name,
        text=text,
        mappings=tuple(mappings),
        user_id=user_id,
        import_id=import_id,
    )
