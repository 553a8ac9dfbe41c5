"""
Dataset routes — upload observation records (JSON or workbook), list, inspect and delete them.

Also holds the request helpers the analytics and report routes share:
resolving the record source, the actor and the metric filter from a body.
"""

import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from core import config
from core.analytics import AnalyticsService
from core.records import FrameRecordSource, MetricFilter, parse_upload
from core.scope import Actor

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = (".csv", ".xlsx")


def _df_records(df):
    """
    Convert DataFrame rows to JSON-safe records.
    Ensures NaN/NaT become null so FastAPI serialization won't raise 500.
    """
    return json.loads(df.to_json(orient="records", date_format="iso"))


def _store(request: Request):
    return request.app.state.datasets


def _describe(dataset_id: str, entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "dataset_id": dataset_id,
        "name": entry["name"],
        "row_counts": entry["source"].row_counts(),
    }


# ── Shared request helpers ──────────────────────────────────────────

def resolve_source(request: Request, payload: dict) -> FrameRecordSource:
    """Inline `data` wins over `dataset_id`."""
    data = payload.get("data")
    if data:
        return FrameRecordSource.from_payload(data)
    dataset_id = payload.get("dataset_id")
    if not dataset_id:
        raise HTTPException(400, "Provide either 'dataset_id' or inline 'data'.")
    entry = _store(request).get(str(dataset_id))
    if entry is None:
        raise HTTPException(404, "Dataset not found. Please re-upload the data.")
    return entry["source"]


def service_for(request: Request, payload: dict) -> AnalyticsService:
    return AnalyticsService(resolve_source(request, payload), request.app.state.clock)


def actor_from(payload: dict) -> Actor:
    return Actor.from_payload(payload.get("actor"))


def filter_from(payload: dict) -> MetricFilter:
    return MetricFilter.from_payload(payload.get("filter"))


# ── Routes ──────────────────────────────────────────────────────────

@router.post("")
async def create_dataset(request: Request, payload: dict):
    """Store a dataset sent as {"name": ..., "data": {"sessions": [...], ...}}."""
    data = payload.get("data")
    if not data:
        raise HTTPException(400, "No data provided.")
    source = FrameRecordSource.from_payload(data)
    dataset_id = str(uuid.uuid4())
    entry = {"name": payload.get("name") or dataset_id, "source": source}
    _store(request).set(dataset_id, entry)
    logger.info("Stored dataset %s: %s", dataset_id, source.row_counts())
    return _describe(dataset_id, entry)


@router.post("/file")
async def upload_dataset(request: Request, file: UploadFile = File(...)):
    """
    Upload a CSV (sessions only) or an Excel workbook with one sheet per table
    (sessions, responses, plans, users, entities).
    """
    ext = Path(file.filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {ext or 'none'}. Use CSV or Excel (.xlsx).")

    fd, tmp_path = tempfile.mkstemp(suffix=ext)
    try:
        size = 0
        with os.fdopen(fd, "wb") as f:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                size += len(chunk)
                if size > config.MAX_UPLOAD_BYTES:
                    raise HTTPException(413, "Upload exceeds the maximum allowed size.")
                f.write(chunk)

        try:
            sheets = parse_upload(tmp_path)
        except ValueError as e:
            raise HTTPException(400, f"Failed to process upload '{file.filename}': {e}")
        source = FrameRecordSource.from_sheets(sheets)
    finally:
        Path(tmp_path).unlink(missing_ok=True)

    dataset_id = str(uuid.uuid4())
    entry = {"name": file.filename, "source": source}
    _store(request).set(dataset_id, entry)
    logger.info("Stored uploaded dataset %s from %s: %s", dataset_id, file.filename, source.row_counts())
    return {**_describe(dataset_id, entry), "sheets": list(sheets.keys())}


@router.get("")
async def list_datasets(request: Request):
    store = _store(request)
    entries = [(k, store.get(k)) for k in store.keys()]
    return {"datasets": [_describe(k, e) for k, e in entries if e is not None]}


@router.get("/{dataset_id}")
async def get_dataset(request: Request, dataset_id: str):
    entry = _store(request).get(dataset_id)
    if entry is None:
        raise HTTPException(404, "Dataset not found.")
    return {
        **_describe(dataset_id, entry),
        "preview": _df_records(entry["source"].frame("sessions").head(10)),
    }


@router.delete("/{dataset_id}")
async def delete_dataset(request: Request, dataset_id: str):
    if not _store(request).delete(dataset_id):
        raise HTTPException(404, "Dataset not found.")
    return {"deleted": dataset_id}
