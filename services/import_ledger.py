"""
Import Ledger
Run-level status, counts and errors for every import, plus the activity log
entry written when a run finishes.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from database import ImportRun
from services.batch_writer import RowError
from services.field_mapper import ColumnMapping

logger = logging.getLogger(__name__)


def final_status(total_rows: int, error_rows: int) -> str:
    """'failed' only when every row errored (or there was nothing to import)."""
    return "failed" if error_rows >= total_rows else "completed"


def sync_event_type(total_rows: int, error_rows: int) -> str:
    if error_rows == 0 and total_rows > 0:
        return "success"
    if error_rows >= total_rows:
        return "error"
    return "warning"


def summary_message(imported_rows: int, total_rows: int, target_table: str, error_rows: int) -> str:
    message = f"Imported {imported_rows} of {total_rows} rows to {target_table}"
    if error_rows:
        message += f" ({error_rows} errors)"
    return message


async def open_run(
    store,
    *,
    org_id: str,
    source_name: str,
    target_table: str,
    total_rows: int,
    user_id: Optional[str] = None,
    file_preview: Optional[List[Dict[str, str]]] = None,
) -> ImportRun:
    run = await store.create_import_run({
        "org_id": org_id,
        "user_id": user_id,
        "source_name": source_name,
        "target_table": target_table,
        "status": "pending",
        "total_rows": total_rows,
        "file_preview": file_preview or None,
    })
    logger.info("Import run %s opened: %s -> %s (%d rows)", run.id, source_name, target_table, total_rows)
    return run


async def record_mapping(store, import_id: str, mappings: Sequence[ColumnMapping]) -> bool:
    return await store.update_import_run(import_id, {
        "status": "mapping",
        "mapped_fields": [m.as_ledger_entry() for m in mappings],
    })


async def mark_importing(store, import_id: str, started_at: datetime, total_rows: int) -> bool:
    return await store.update_import_run(import_id, {
        "status": "importing",
        "started_at": started_at,
        "total_rows": total_rows,
    })


async def finalize_run(
    store,
    import_id: str,
    *,
    org_id: str,
    target_table: str,
    source_name: str,
    total_rows: int,
    imported_rows: int,
    errors: Sequence[RowError],
    user_id: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> str:
    """Move the run to its terminal status and append the activity log entry.

    A run that is already terminal is left untouched and gets no new log entry.
    """
    error_rows = len({e.row for e in errors})
    status = final_status(total_rows, error_rows)
    finalized = await store.safe_finalize_import_run(
        import_id,
        status,
        {
            "imported_rows": imported_rows,
            "error_rows": error_rows,
            "errors": [e.as_dict() for e in errors],
            "completed_at": completed_at or datetime.utcnow(),
        },
    )
    if not finalized:
        logger.warning("Import run %s was already terminal; final counts not recorded", import_id)
        return status

    details: Dict[str, Any] = {"imported": imported_rows, "errors": error_rows, "source": source_name}
    try:
        await store.add_sync_log_entry({
            "org_id": org_id,
            "user_id": user_id,
            "import_id": import_id,
            "event_type": sync_event_type(total_rows, error_rows),
            "message": summary_message(imported_rows, total_rows, target_table, error_rows),
            "details": details,
        })
    except Exception:
        logger.exception("Failed to write activity log entry for import %s", import_id)

    logger.info(
        "Import run %s %s: imported=%d errors=%d total=%d",
        import_id, status, imported_rows, error_rows, total_rows,
    )
    return status


async def fail_run(
    store,
    import_id: str,
    message: str,
    *,
    org_id: str,
    target_table: str,
    source_name: str,
    total_rows: int,
    imported_rows: int = 0,
    errors: Sequence[RowError] = (),
    user_id: Optional[str] = None,
) -> str:
    """Force a run to 'failed' after an unexpected error outside chunk processing."""
    all_errors = list(errors) + [RowError(row=0, message=message)]
    finalized = await store.safe_finalize_import_run(
        import_id,
        "failed",
        {
            "imported_rows": imported_rows,
            "error_rows": max(total_rows - imported_rows, 0),
            "errors": [e.as_dict() for e in all_errors],
        },
    )
    if finalized:
        try:
            await store.add_sync_log_entry({
                "org_id": org_id,
                "user_id": user_id,
                "import_id": import_id,
                "event_type": "error",
                "message": f"Import to {target_table} failed: {message}",
                "details": {"imported": imported_rows, "errors": total_rows - imported_rows, "source": source_name},
            })
        except Exception:
            logger.exception("Failed to write activity log entry for import %s", import_id)
    return "failed"
