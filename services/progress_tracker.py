"""
Import progress persistence helpers.
"""
from __future__ import annotations

import inspect
import logging
from typing import Dict, Literal, Optional

from sqlalchemy.exc import DBAPIError

from services.batch_writer import ImportProgressEvent, ProgressCallback
from services.storage import storage as default_storage

logger = logging.getLogger(__name__)

ProgressStatus = Literal["in_progress", "completed", "failed"]


async def update_import_progress(
    import_id: str,
    *,
    org_id: str,
    event: ImportProgressEvent,
    status: ProgressStatus = "in_progress",
    store=None,
) -> None:
    """
    Upsert the latest progress snapshot for an import run.
    """
    store = store or default_storage
    snapshot = {
        "import_id": import_id,
        "org_id": org_id,
        "rows_done": max(0, event.rows_done),
        "rows_total": max(0, event.rows_total),
        "errors_so_far": max(0, event.errors_so_far),
        "status": status,
    }
    try:
        await store.upsert_import_progress(snapshot)
        logger.debug(
            "Progress updated for import %s rows=%d/%d errors=%d status=%s",
            import_id, event.rows_done, event.rows_total, event.errors_so_far, status,
        )
    except DBAPIError as exc:
        # Progress tracking should not crash the import
        logger.error("Database error updating progress for import %s: %s", import_id, exc)
    except Exception as exc:
        logger.error("Unexpected error updating progress for import %s: %s", import_id, exc)


def progress_recorder(
    import_id: str,
    *,
    org_id: str,
    store=None,
    forward: Optional[ProgressCallback] = None,
) -> ProgressCallback:
    """Callback that persists each progress event and then passes it on."""

    async def _record(event: ImportProgressEvent) -> None:
        await update_import_progress(import_id, org_id=org_id, event=event, store=store)
        if forward is None:
            return
        result = forward(event)
        if inspect.isawaitable(result):
            await result

    return _record


async def get_import_progress(import_id: str, store=None) -> Optional[Dict[str, object]]:
    """
    Fetch the most recent progress snapshot for an import run, if any.
    """
    store = store or default_storage
    row = await store.get_import_progress(import_id)
    if row is None:
        return None
    rows_total = row.rows_total or 0
    percent = int(round(100 * row.rows_done / rows_total)) if rows_total else 0
    return {
        "import_id": row.import_id,
        "rows_done": row.rows_done,
        "rows_total": rows_total,
        "errors_so_far": row.errors_so_far,
        "status": row.status,
        "percent": max(0, min(100, percent)),
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
