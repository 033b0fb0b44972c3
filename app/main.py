"""FastAPI binding for the grid engine."""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from grid_context import GridConfig, GridContext, GridWorkspace
from grid_errors import ConflictError, GridError, NotFoundError, SchemaError, ValidationError
from record_transfer import decode_payload
from app.document_source import load_document
from app.grid_render import render_grid

LOG_LEVEL = os.getenv("GRID_LOG_LEVEL", "").strip().upper() or "INFO"
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger("datagrid")

app = FastAPI(title="Data Grid")

_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("GRID_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

DOCUMENT_PATH = os.getenv("GRID_DOCUMENT_PATH", "").strip()
DOCUMENT_URL = os.getenv("GRID_DOCUMENT_URL", "").strip()
REQ_SLOW_MS = float(os.getenv("GRID_REQ_SLOW_MS", "250"))

config = GridConfig.from_env()
workspace = GridWorkspace(config)
document_issues: list[dict] = []


def load_workspace(document: dict | None = None, grid_config: GridConfig | None = None) -> GridWorkspace:
    """Replace the served workspace, from ``document`` or the configured source."""
    global workspace, document_issues
    issues: list[dict] = []
    if document is None:
        document, issues = load_document(path=DOCUMENT_PATH or None, url=DOCUMENT_URL or None)
    workspace = GridWorkspace.from_document(document, grid_config or config)
    document_issues = issues + workspace.issues
    return workspace


if DOCUMENT_PATH or DOCUMENT_URL:
    load_workspace()


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _status_for(exc: GridError) -> int:
    if isinstance(exc, NotFoundError) or exc.code == "SCHEMA_UNKNOWN_GRID":
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 400


@app.exception_handler(GridError)
async def grid_error_handler(request: Request, exc: GridError):
    issue = exc.to_issue()
    if not isinstance(exc, ValidationError):
        logger.info("grid_error method=%s path=%s code=%s", request.method, request.url.path, exc.code)
    return _error_response(issue["code"], issue["message"], issue["path"], issue["detail"], status=_status_for(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s total_ms=%.1f", request.method, request.url.path, response.status_code, total_ms)
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s total_ms=%.1f status=%s",
            request.method,
            request.url.path,
            total_ms,
            response.status_code,
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _safe_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


async def _json_object(request: Request) -> dict:
    body = await _safe_json(request)
    if not isinstance(body, dict):
        raise SchemaError("Request body must be a JSON object", None, code="SCHEMA_INVALID_PAYLOAD")
    return body


def _grid(name: str) -> GridContext:
    return workspace.require(name)


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _page_payload(ctx: GridContext) -> dict:
    page = ctx.current_page()
    return {
        "page": page.to_dict(),
        "query": ctx.query.state(),
        "selection": {"selected": ctx.selection.selected_ids(), "master": ctx.selection.master_state(page.ids())},
    }


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/grids")
async def list_grids() -> JSONResponse:
    grids = [{"name": name, "records": len(workspace.require(name).store)} for name in workspace.names()]
    return _ok_response({"grids": grids}, warnings=document_issues)


@app.get("/grids/{name}/schema")
async def get_schema(name: str, mode: str = "title") -> JSONResponse:
    ctx = _grid(name)
    return _ok_response({"mode": mode, "columns": ctx.schema.columns(mode)}, warnings=ctx.schema.issues)


@app.get("/grids/{name}/page")
async def get_page(
    name: str,
    page: int | None = None,
    page_size: int | None = None,
    search: str | None = None,
    sort: str | None = None,
    direction: str | None = None,
    filters: str | None = None,
    filter_mode: str = "AND",
    deleted: str | None = None,
) -> JSONResponse:
    ctx = _grid(name)
    if deleted is not None:
        ctx.set_deleted_visibility(deleted)
    if filters is not None:
        try:
            parsed = json.loads(filters) if filters.strip() else []
        except ValueError:
            raise SchemaError("filters must be a JSON array", "filters", code="SCHEMA_FILTER_INVALID")
        if not isinstance(parsed, list):
            raise SchemaError("filters must be a JSON array", "filters", code="SCHEMA_FILTER_INVALID")
        ctx.set_filters(parsed, filter_mode)
    if search is not None:
        ctx.search(search)
    if sort is not None:
        if _split(sort):
            ctx.sort_by(_split(sort), _split(direction) or "asc")
        else:
            ctx.clear_sort()
    if page_size is not None:
        ctx.set_page_size(page_size)
    if page is not None:
        ctx.go_to_page(page)
    return _ok_response(_page_payload(ctx))


@app.post("/grids/{name}/records")
async def create_record(name: str, request: Request) -> JSONResponse:
    ctx = _grid(name)
    body = await _json_object(request)
    record_id = ctx.create(body)
    return _ok_response({"id": record_id, "record": ctx.get(record_id)}, status=201)


@app.get("/grids/{name}/records/{record_id}")
async def get_record(name: str, record_id: str) -> JSONResponse:
    ctx = _grid(name)
    record = ctx.get(record_id)
    if record is None:
        raise NotFoundError(record_id)
    return _ok_response({"record": record})


@app.patch("/grids/{name}/records/{record_id}")
async def update_record(name: str, record_id: str, request: Request) -> JSONResponse:
    ctx = _grid(name)
    body = await _json_object(request)
    return _ok_response({"record": ctx.update(record_id, body)})


@app.delete("/grids/{name}/records/{record_id}")
async def delete_record(name: str, record_id: str, soft: bool | None = None) -> JSONResponse:
    ctx = _grid(name)
    removed = ctx.delete(record_id, soft=soft)
    return _ok_response({"record": removed, "soft": ctx.config.soft_delete if soft is None else soft})


@app.post("/grids/{name}/records/{record_id}/restore")
async def restore_record(name: str, record_id: str) -> JSONResponse:
    ctx = _grid(name)
    return _ok_response({"record": ctx.restore(record_id)})


@app.get("/grids/{name}/edit")
async def get_edit(name: str) -> JSONResponse:
    ctx = _grid(name)
    session = ctx.edit.session
    return _ok_response({"state": ctx.edit.state, "session": session.to_dict() if session else None})


@app.put("/grids/{name}/edit/fields")
async def set_edit_fields(name: str, request: Request) -> JSONResponse:
    ctx = _grid(name)
    body = await _json_object(request)
    ctx.edit.set_fields(body)
    return _ok_response({"state": ctx.edit.state, "session": ctx.edit.session.to_dict()})


@app.post("/grids/{name}/edit/commit")
async def commit_edit(name: str) -> JSONResponse:
    ctx = _grid(name)
    record = ctx.commit_edit()
    return _ok_response({"state": ctx.edit.state, "record": record})


@app.post("/grids/{name}/edit/cancel")
async def cancel_edit(name: str) -> JSONResponse:
    ctx = _grid(name)
    cancelled = ctx.cancel_edit()
    return _ok_response({"state": ctx.edit.state, "cancelled": cancelled})


@app.post("/grids/{name}/edit/{record_id}")
async def start_edit(name: str, record_id: str) -> JSONResponse:
    ctx = _grid(name)
    session = ctx.start_edit(record_id)
    return _ok_response({"state": ctx.edit.state, "session": session.to_dict()})


@app.get("/grids/{name}/selection")
async def get_selection(name: str) -> JSONResponse:
    ctx = _grid(name)
    return _ok_response({"selected": ctx.selection.selected_ids(), "master": ctx.master_state()})


@app.post("/grids/{name}/selection/toggle/{record_id}")
async def toggle_selection(name: str, record_id: str) -> JSONResponse:
    ctx = _grid(name)
    selected = ctx.toggle_selection(record_id)
    return _ok_response({"id": record_id, "selected": selected, "master": ctx.master_state()})


@app.post("/grids/{name}/selection/page")
async def select_page(name: str, request: Request) -> JSONResponse:
    ctx = _grid(name)
    body = await _safe_json(request) or {}
    action = body.get("action", "toggle") if isinstance(body, dict) else "toggle"
    if action == "select":
        master = ctx.select_page()
    elif action == "deselect":
        master = ctx.deselect_page()
    elif action == "toggle":
        master = ctx.toggle_page()
    else:
        raise SchemaError(f"Unknown selection action: {action}", "action", code="SCHEMA_ACTION_INVALID")
    return _ok_response({"selected": ctx.selection.selected_ids(), "master": master})


@app.delete("/grids/{name}/selection")
async def clear_selection(name: str) -> JSONResponse:
    ctx = _grid(name)
    ctx.clear_selection()
    return _ok_response({"selected": [], "master": ctx.master_state()})


@app.post("/grids/{name}/selection/delete")
async def bulk_delete(name: str, soft: bool | None = None) -> JSONResponse:
    ctx = _grid(name)
    return _ok_response(ctx.bulk_delete(soft=soft).to_dict())


@app.post("/grids/{name}/selection/restore")
async def bulk_restore(name: str) -> JSONResponse:
    ctx = _grid(name)
    return _ok_response(ctx.bulk_restore().to_dict())


async def _import_payload(request: Request) -> str:
    raw = await request.body()
    return decode_payload(raw)


@app.post("/grids/{name}/import/preview")
async def import_preview(name: str, request: Request, format: str = "records") -> JSONResponse:
    ctx = _grid(name)
    rows = ctx.preview_import(await _import_payload(request), format)
    invalid = sum(1 for row in rows if not row.result.is_valid)
    return _ok_response({"rows": [row.to_dict() for row in rows], "total": len(rows), "invalid": invalid})


@app.post("/grids/{name}/import/commit")
async def import_commit(name: str, request: Request, format: str = "records") -> JSONResponse:
    ctx = _grid(name)
    report = ctx.commit_import(await _import_payload(request), format)
    return _ok_response({"report": report.to_dict()})


@app.get("/grids/{name}/export")
async def export_grid(name: str, format: str = "records", scope: str = "view", fields: str | None = None) -> Response:
    ctx = _grid(name)
    body = ctx.export(format, fields=_split(fields) or None, scope=scope)
    media_type = "text/csv" if format.strip().lower() == "csv" else "application/json"
    return Response(content=body, media_type=media_type)


@app.get("/grids/{name}/render")
async def render(name: str) -> HTMLResponse:
    ctx = _grid(name)
    return HTMLResponse(render_grid(ctx))
