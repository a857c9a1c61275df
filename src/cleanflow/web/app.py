"""CleanFlow quarantine editor: FastAPI backend.

Workflow:
  POST /api/sessions                 → upload a quarantine CSV → session_id
  GET  /api/sessions/{id}/rows       → paged rows with per-cell provenance
  PUT  /api/sessions/{id}/active-cell, POST .../keys, PUT .../cells → edit drafts
  GET  /api/sessions/{id}/edits      → diff + save batches
  POST /api/sessions/{id}/save       → fold drafts into the baseline
  GET  /api/sessions/{id}/export     → csv / xlsx / report / provenance

Run with:
  uvicorn cleanflow.web.app:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from cleanflow.core.csv_parser import available_parsers, get_csv_stats, validate_csv
from cleanflow.core.dataset import DatasetLoader
from cleanflow.core.edit_session import EditSessionError, QuarantineEditSession, UnknownRowError
from cleanflow.core.exporters import (
    CSVExporter,
    ProvenanceCSVExporter,
    TXTReporter,
    XLSXExporter,
)
from cleanflow.core.models import RuleSeverity
from cleanflow.core.rule_metadata import RULE_IDS, RULE_METADATA, get_rule_meta
from cleanflow.core.settings import load_editor_config
from cleanflow.web.sessions import EditorSessionRecord, session_manager

# ---------------------------------------------------------------------------
# Configuration via environment variables
# ---------------------------------------------------------------------------

_ENV = os.environ.get("CLEANFLOW_ENV", "dev")

_MAX_UPLOAD_MB = int(os.environ.get("CLEANFLOW_MAX_UPLOAD_MB", "50"))
_MAX_UPLOAD_BYTES = _MAX_UPLOAD_MB * 1024 * 1024

# CORS origins: "*" = any, otherwise a comma-separated list
_CORS_ORIGINS_RAW = os.environ.get("CLEANFLOW_CORS_ORIGINS", "*")
_CORS_ORIGINS: list[str] = (
    ["*"]
    if _CORS_ORIGINS_RAW in ("*", "")
    else [o.strip() for o in _CORS_ORIGINS_RAW.split(",") if o.strip()]
)
# allow_credentials is incompatible with allow_origins=["*"]
_CORS_ALLOW_CREDENTIALS = "*" not in _CORS_ORIGINS

_ALLOWED_EXTENSIONS = {".csv", ".txt", ""}
# Browsers and tools sometimes send a generic binary type; trust the extension then
_ALLOWED_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "text/plain",
    "application/vnd.ms-excel",
    "application/octet-stream",
    "binary/octet-stream",
}

_EDITOR_CONFIG = load_editor_config()

_logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CleanFlow Quarantine API",
    description="Parse, annotate and edit quarantined CSV rows",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _log_startup() -> None:
    _logger.info(
        "CleanFlow started: env=%s max_upload=%dMB cors=%s parser=%s",
        _ENV,
        _MAX_UPLOAD_MB,
        _CORS_ORIGINS_RAW,
        _EDITOR_CONFIG.default_parser,
    )


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    from cleanflow import __version__
    return {"status": "ok", "version": __version__}


# ---------------------------------------------------------------------------
# Rule metadata
# ---------------------------------------------------------------------------


@app.get("/api/rules")
async def list_rules(severity: str = ""):
    rule_ids: list[str] = list(RULE_IDS)
    if severity:
        try:
            wanted = RuleSeverity(severity.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown severity: {severity}")
        rule_ids = [r for r in rule_ids if RULE_METADATA[r].severity == wanted]
    return {
        "total": len(rule_ids),
        "rules": [{"rule_id": r, **RULE_METADATA[r].to_dict()} for r in rule_ids],
    }


@app.get("/api/rules/{rule_id}")
async def get_rule(rule_id: str):
    """Unknown ids get the fallback entry rather than a 404."""
    normalized = rule_id.upper()
    return {
        "rule_id": normalized,
        "known": normalized in RULE_METADATA,
        **get_rule_meta(normalized).to_dict(),
    }


# ---------------------------------------------------------------------------
# Stateless CSV checks
# ---------------------------------------------------------------------------


@app.post("/api/csv/validate")
async def validate_upload(file: UploadFile = File(...), parser: str = Form("")):
    text = await _read_upload_text(file)
    result = validate_csv(text, parser=_parser_name(parser))
    return {"filename": file.filename, **result.to_dict()}


@app.post("/api/csv/stats")
async def stats_upload(file: UploadFile = File(...), parser: str = Form("")):
    text = await _read_upload_text(file)
    stats = get_csv_stats(text, parser=_parser_name(parser))
    return {"filename": file.filename, **stats.to_dict()}


# ---------------------------------------------------------------------------
# Session creation (upload)
# ---------------------------------------------------------------------------


@app.post("/api/sessions")
async def create_session(
    file: UploadFile = File(...),
    parser: str = Form(""),
    encoding: str = Form(""),
):
    """Upload a quarantine CSV and open an editing session on it."""
    content = await _read_upload(file)
    filename = file.filename or "quarantine.csv"

    try:
        table, meta = DatasetLoader().loads(
            content,
            source_name=filename,
            parser=_parser_name(parser),
            encoding_hint=encoding or None,
        )
    except (LookupError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    session = QuarantineEditSession(table, config=_EDITOR_CONFIG, source_name=filename)
    record = session_manager.create(session, meta=meta, filename=filename)
    return {
        "session_id": record.id,
        "filename": record.filename,
        **meta.to_dict(),
        "summary": session.summary(),
    }


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    record = _get_session(session_id)
    return {
        "session_id": record.id,
        "filename": record.filename,
        "saves": record.saves,
        "dataset": record.meta.to_dict() if record.meta else None,
        "summary": record.session.summary(),
    }


@app.get("/api/sessions/{session_id}/rows")
async def get_rows(session_id: str, offset: int = 0, limit: int | None = None):
    """Return a window of rows with one annotated cell per displayed column."""
    record = _get_session(session_id)
    session = record.session
    limit = session.config.page_size if limit is None else max(0, limit)
    offset = max(0, offset)
    with record.lock:
        rows = session.row_views(offset, limit)
    return {
        "total": len(session),
        "offset": offset,
        "limit": limit,
        "columns": session.display_columns,
        "editable_columns": session.editable_columns,
        "rows": rows,
    }


# ---------------------------------------------------------------------------
# Active cell
# ---------------------------------------------------------------------------


@app.put("/api/sessions/{session_id}/active-cell")
async def activate_cell(session_id: str, request: Request):
    record = _get_session(session_id)
    body = await _json_body(request)
    row_id, column = _cell_ref(body)
    with record.lock:
        activated = record.session.activate(row_id, column)
    return {"activated": activated, "active_cell": _active_cell(record)}


@app.delete("/api/sessions/{session_id}/active-cell")
async def deactivate_cell(session_id: str):
    record = _get_session(session_id)
    with record.lock:
        record.session.deactivate()
    return {"active_cell": None}


@app.post("/api/sessions/{session_id}/keys")
async def press_key(session_id: str, request: Request):
    record = _get_session(session_id)
    body = await _json_body(request)
    key = str(body.get("key", ""))
    with record.lock:
        handled = record.session.handle_key(key)
    return {"handled": handled, "active_cell": _active_cell(record)}


# ---------------------------------------------------------------------------
# Cell edits
# ---------------------------------------------------------------------------


@app.put("/api/sessions/{session_id}/cells")
async def edit_cells(session_id: str, request: Request):
    """Update drafts.

    Body is one of:
      {"value": v}                              → keystroke in the active cell
      {"row_id": r, "column": c, "value": v}    → set one cell
      {"edits": [{"row_id", "column", "value"}, ...], "label": "..."} → one undo step
    """
    record = _get_session(session_id)
    session = record.session
    body = await _json_body(request)

    with record.lock:
        try:
            if "edits" in body:
                edits = body.get("edits") or []
                if not isinstance(edits, list):
                    raise HTTPException(status_code=422, detail="'edits' must be a list")
                values = [(*_cell_ref(e), e.get("value", "")) for e in edits if isinstance(e, dict)]
                session.apply_values(values, label=str(body.get("label") or "Apply fixes"))
                touched = [(r, c) for r, c, _ in values]
            elif "row_id" in body or "column" in body:
                row_id, column = _cell_ref(body)
                session.edit_cell(row_id, column, body.get("value", ""))
                touched = [(row_id, column)]
            elif "value" in body:
                active = session.active_cell
                session.type_value(body["value"])
                touched = [(active.row_id, active.column)] if active else []
            else:
                raise HTTPException(status_code=422, detail="Expected 'value', a cell reference or 'edits'")
            cells = [
                {"row_id": r, "column": c, **session.cell_view(r, c).to_dict()} for r, c in touched
            ]
        except UnknownRowError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except EditSessionError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    return {
        "cells": cells,
        "pending_rows": session.pending_count,
        "edited_cells": session.edited_cell_count,
        "can_undo": session.can_undo,
        "can_redo": session.can_redo,
    }


@app.post("/api/sessions/{session_id}/undo")
async def undo(session_id: str):
    record = _get_session(session_id)
    with record.lock:
        description = record.session.undo()
    return {"undone": description, **_history_state(record)}


@app.post("/api/sessions/{session_id}/redo")
async def redo(session_id: str):
    record = _get_session(session_id)
    with record.lock:
        description = record.session.redo()
    return {"redone": description, **_history_state(record)}


# ---------------------------------------------------------------------------
# Diff / save / cancel
# ---------------------------------------------------------------------------


@app.get("/api/sessions/{session_id}/edits")
async def get_edits(session_id: str, max_per_batch: int | None = None):
    record = _get_session(session_id)
    if max_per_batch is not None and max_per_batch < 1:
        raise HTTPException(status_code=400, detail="max_per_batch must be >= 1")
    with record.lock:
        edits = record.session.diff()
        batches = record.session.edits_batches(max_per_batch)
    return {
        "total": len(edits),
        "edits": [e.to_dict() for e in edits],
        "batches": [[b.to_dict() for b in chunk] for chunk in batches],
    }


@app.post("/api/sessions/{session_id}/save")
async def save_session(session_id: str):
    record = _get_session(session_id)
    with record.lock:
        batches = record.session.edits_batches()
        saved = record.session.mark_saved()
        record.saves += 1
    return {
        "saved_cells": len(saved),
        "saved_rows": len({e.row_id for e in saved}),
        "requests": len(batches),
        "summary": record.session.summary(),
    }


@app.post("/api/sessions/{session_id}/cancel")
async def cancel_session(session_id: str):
    record = _get_session(session_id)
    with record.lock:
        discarded = record.session.edited_cell_count
        record.session.cancel()
    return {"discarded_cells": discarded, "summary": record.session.summary()}


@app.delete("/api/sessions/{session_id}")
async def close_session(session_id: str):
    if not session_manager.delete(session_id):
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

_EXPORT_FILES = {
    "csv": ("edited.csv", "text/csv; charset=utf-8"),
    "xlsx": ("edited.xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
    "report": ("report.txt", "text/plain; charset=utf-8"),
    "provenance": ("provenance.csv", "text/csv; charset=utf-8"),
}


@app.get("/api/sessions/{session_id}/export")
async def export_session(session_id: str, format: str = "csv", include_row_id: bool = True):
    """Write the requested export into the session's work dir and return it."""
    record = _get_session(session_id)
    entry = _EXPORT_FILES.get(format)
    if entry is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown export format: {format}. Expected one of {sorted(_EXPORT_FILES)}",
        )
    filename, media_type = entry
    path = record.work_dir / "exports" / filename
    session = record.session

    with record.lock:
        if format == "csv":
            CSVExporter().export(session.to_table(), path, include_row_id=include_row_id)
        elif format == "xlsx":
            edited = [(e.row_id, e.column) for e in session.diff()]
            XLSXExporter().export(session.to_table(), path, session.provenance, edited)
        elif format == "report":
            TXTReporter().export(session.provenance, path, record.meta, session.diff())
        else:
            ProvenanceCSVExporter().export(session.provenance, path)

    _logger.debug("Exported %s for session %s", format, session_id)
    return FileResponse(str(path), media_type=media_type, filename=filename)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_session(session_id: str) -> EditorSessionRecord:
    record = session_manager.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return record


def _parser_name(parser: str) -> str:
    name = (parser or _EDITOR_CONFIG.default_parser).strip().lower()
    if name not in available_parsers():
        raise HTTPException(
            status_code=400,
            detail=f"Unknown parser: {parser}. Expected one of {available_parsers()}",
        )
    return name


async def _read_upload(file: UploadFile) -> bytes:
    suffix = Path(file.filename or "").suffix.lower()
    if suffix not in _ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported file type. Upload a CSV file.")
    ct = (file.content_type or "").split(";")[0].strip().lower()
    if ct and ct not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=415, detail="Unsupported file type. Upload a CSV file.")

    content = await file.read()
    if len(content) > _MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the maximum upload size ({_MAX_UPLOAD_MB} MB).",
        )
    return content


async def _read_upload_text(file: UploadFile) -> str:
    text, _encoding = DatasetLoader().decode(await _read_upload(file))
    return text


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=422, detail="Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=422, detail="Request body must be a JSON object")
    return body


def _cell_ref(body: dict[str, Any]) -> tuple[str, str]:
    row_id = body.get("row_id")
    column = body.get("column")
    if row_id is None or not column:
        raise HTTPException(status_code=422, detail="'row_id' and 'column' are required")
    return str(row_id), str(column)


def _active_cell(record: EditorSessionRecord) -> dict[str, str] | None:
    active = record.session.active_cell
    return {"row_id": active.row_id, "column": active.column} if active else None


def _history_state(record: EditorSessionRecord) -> dict[str, Any]:
    session = record.session
    return {
        "can_undo": session.can_undo,
        "can_redo": session.can_redo,
        "pending_rows": session.pending_count,
        "edited_cells": session.edited_cell_count,
    }
