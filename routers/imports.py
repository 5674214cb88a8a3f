"""
Data Import Router
Upload preview, import scheduling and import history
"""
from fastapi import APIRouter, UploadFile, File, HTTPException, BackgroundTasks, Depends, Form, Query
from typing import Any, Dict, Optional
import json
import logging
import uuid

from services.csv_reader import parse_delimited
from services.errors import ImportPipelineError, MissingRequiredFieldsError, UnknownTargetSchemaError
from services.field_mapper import parse_column_mappings, validate_mappings
from services.import_ledger import open_run
from services.import_pipeline import ImportContext, build_context, preview_import, run_import
from services.progress_tracker import get_import_progress
from services.storage import StorageService, storage
from services.target_schemas import get_target_schema
from settings import ALLOWED_UPLOAD_EXTENSIONS, IMPORT_MAX_UPLOAD_BYTES, IMPORT_PREVIEW_ROWS, resolve_org_id

logger = logging.getLogger(__name__)
router = APIRouter()


def get_storage() -> StorageService:
    return storage


async def _read_upload(file: UploadFile, request_id: str) -> str:
    filename = file.filename or ""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension not in ALLOWED_UPLOAD_EXTENSIONS:
        logger.warning(f"[{request_id}] Reject filename={filename!r}")
        raise HTTPException(
            status_code=400,
            detail=f"Only {', '.join('.' + e for e in ALLOWED_UPLOAD_EXTENSIONS)} files are allowed",
        )

    content = await file.read()
    size = len(content or b"")
    logger.info(f"[{request_id}] Received {filename!r} size={size} bytes")
    if size == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if size > IMPORT_MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {IMPORT_MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        )
    return content.decode("utf-8-sig", errors="replace")


def _serialize_run(run) -> Dict[str, Any]:
    return {
        "id": run.id,
        "sourceName": run.source_name,
        "targetTable": run.target_table,
        "status": run.status,
        "totalRows": run.total_rows,
        "importedRows": run.imported_rows,
        "errorRows": run.error_rows,
        "mappedFields": run.mapped_fields or [],
        "errors": run.errors or [],
        "filePreview": run.file_preview or [],
        "startedAt": run.started_at.isoformat() if run.started_at else None,
        "completedAt": run.completed_at.isoformat() if run.completed_at else None,
        "createdAt": run.created_at.isoformat() if run.created_at else None,
    }


async def run_import_background(context: ImportContext, store: StorageService) -> None:
    try:
        result = await run_import(context, store=store)
        logger.info(
            f"Background import {result.import_id} finished status={result.status} "
            f"imported={result.imported_rows}/{result.total_rows}"
        )
    except Exception:
        # run_import has already marked the run failed
        logger.exception(f"Background import {context.import_id} failed")


@router.post("/imports/preview")
async def preview_upload(
    file: UploadFile = File(...),
    target: Optional[str] = Form(None),
    orgId: Optional[str] = Form(None),
    store: StorageService = Depends(get_storage),
):
    """Parse an upload and suggest a column mapping; nothing is written."""
    request_id = str(uuid.uuid4())
    text = await _read_upload(file, request_id)
    try:
        preview = await preview_import(text, target_table=target, org_id=orgId, store=store)
    except UnknownTargetSchemaError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not preview["headers"]:
        raise HTTPException(status_code=400, detail="No header row found")
    preview["sourceName"] = file.filename
    return preview


@router.post("/imports")
async def start_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    target: str = Form(...),
    mapping: str = Form(...),
    orgId: Optional[str] = Form(None),
    userId: Optional[str] = Form(None),
    store: StorageService = Depends(get_storage),
):
    """Validate the approved mapping, open the run and import in the background."""
    request_id = str(uuid.uuid4())
    try:
        text = await _read_upload(file, request_id)

        try:
            schema = get_target_schema(target)
            mappings = parse_column_mappings(json.loads(mapping), schema)
            validate_mappings(schema, mappings)
        except MissingRequiredFieldsError as e:
            raise HTTPException(status_code=400, detail={"message": str(e), "missing": e.missing})
        except (UnknownTargetSchemaError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))

        table = parse_delimited(text)
        if table.is_empty:
            raise HTTPException(status_code=400, detail="No header row found")

        org_id = resolve_org_id(orgId)
        run = await open_run(
            store,
            org_id=org_id,
            source_name=file.filename,
            target_table=schema.key,
            total_rows=len(table.rows),
            user_id=userId,
            file_preview=table.rows[:IMPORT_PREVIEW_ROWS],
        )
        context = build_context(
            text=text,
            target_table=schema.key,
            mappings=mappings,
            source_name=file.filename,
            org_id=org_id,
            user_id=userId,
            import_id=run.id,
        )
        background_tasks.add_task(run_import_background, context, store)
        logger.info(f"[{request_id}] Import {run.id} scheduled org={org_id} target={schema.key}")

        return {
            "importId": run.id,
            "status": run.status,
            "targetTable": schema.key,
            "totalRows": len(table.rows),
            "orgId": org_id,
            "requestId": request_id,
        }

    except HTTPException as he:
        logger.error(f"[{request_id}] HTTP {he.status_code} during import: {he.detail}")
        raise
    except ImportPipelineError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"[{request_id}] Import scheduling error")
        raise HTTPException(status_code=500, detail=f"Import failed: {str(e)}")


@router.get("/imports")
async def list_imports(
    orgId: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    store: StorageService = Depends(get_storage),
):
    """Import history, newest first"""
    runs = await store.list_import_runs(resolve_org_id(orgId), limit=limit)
    return [_serialize_run(run) for run in runs]


@router.get("/imports/{import_id}")
async def get_import(
    import_id: str,
    orgId: Optional[str] = Query(None),
    store: StorageService = Depends(get_storage),
):
    run = await store.get_import_run(import_id, resolve_org_id(orgId))
    if not run:
        raise HTTPException(status_code=404, detail="Import not found")
    return _serialize_run(run)


@router.get("/imports/{import_id}/progress")
async def get_progress(import_id: str, store: StorageService = Depends(get_storage)):
    run = await store.get_import_run(import_id)
    if not run:
        raise HTTPException(status_code=404, detail="Import not found")
    progress = await get_import_progress(import_id, store=store)
    if progress is None:
        return {
            "import_id": import_id,
            "rows_done": 0,
            "rows_total": run.total_rows,
            "errors_so_far": 0,
            "status": run.status,
            "percent": 0,
            "updated_at": None,
        }
    return progress
