"""Per-grid context wiring every engine component, and the multi-entity workspace."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from grid_errors import GridError, NotFoundError, SchemaError
from grid_events import ALL_EVENTS, GridCallbacks, GridEventBus, make_event
from grid_schema import DELETED_FLAG, UNRESOLVED, SchemaModel
from edit_session import EditSession, EditSessionController
from pagination import DEFAULT_PAGE_SIZE_OPTIONS, Page, PaginationController
from query_engine import DELETED_VISIBILITY, QueryEngine
from record_store import RecordStore
from record_transfer import ImportReport, ImportRow, commit_import, export_records, parse_records, preview_import
from search_debounce import SearchDebouncer
from selection import SelectionController

logger = logging.getLogger("datagrid")

_TRUTHY = ("1", "true", "yes", "on")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("config_invalid name=%s value=%r default=%s", name, raw, default)
        return default


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = (env.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


@dataclass
class GridConfig:
    page_size: int = 10
    page_size_options: Tuple[int, ...] = DEFAULT_PAGE_SIZE_OPTIONS
    search_debounce_ms: int = 300
    min_search_length: int = 1
    case_sensitive: bool = False
    soft_delete: bool = False
    deleted_visibility: str = "all"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GridConfig":
        env = os.environ if environ is None else environ
        options = DEFAULT_PAGE_SIZE_OPTIONS
        raw_options = (env.get("GRID_PAGE_SIZE_OPTIONS") or "").strip()
        if raw_options:
            parsed = tuple(int(p) for p in raw_options.split(",") if p.strip().isdigit() and int(p) > 0)
            options = parsed or DEFAULT_PAGE_SIZE_OPTIONS
        visibility = (env.get("GRID_DELETED_VISIBILITY") or "").strip().lower() or "all"
        if visibility not in DELETED_VISIBILITY:
            logger.warning("config_invalid name=GRID_DELETED_VISIBILITY value=%r default=all", visibility)
            visibility = "all"
        return cls(
            page_size=max(1, _env_int(env, "GRID_PAGE_SIZE", 10)),
            page_size_options=options,
            search_debounce_ms=max(0, _env_int(env, "GRID_SEARCH_DEBOUNCE_MS", 300)),
            min_search_length=max(1, _env_int(env, "GRID_MIN_SEARCH_LENGTH", 1)),
            case_sensitive=_env_flag(env, "GRID_CASE_SENSITIVE", False),
            soft_delete=_env_flag(env, "GRID_SOFT_DELETE", False),
            deleted_visibility=visibility,
        )


@dataclass
class BulkResult:
    processed: List[Any] = field(default_factory=list)
    missing: List[Any] = field(default_factory=list)
    soft: bool = False

    def to_dict(self) -> dict:
        return {"processed": list(self.processed), "missing": list(self.missing), "soft": self.soft}


class GridContext:
    """One grid instance: its store, query state, page, edit session and selection."""

    def __init__(
        self,
        name: str,
        schema: SchemaModel,
        config: GridConfig | None = None,
        callbacks: GridCallbacks | None = None,
        related_stores: Mapping[str, RecordStore] | None = None,
    ) -> None:
        self.name = name
        self.schema = schema
        self.config = config or GridConfig()
        self.callbacks = callbacks or GridCallbacks()
        self.store = RecordStore(
            schema,
            name=name,
            related_stores=related_stores,
            extra_validator=self.callbacks.on_validate,
        )
        self.query = QueryEngine(
            self.store,
            min_search_length=self.config.min_search_length,
            case_sensitive=self.config.case_sensitive,
            deleted_visibility=self.config.deleted_visibility,
        )
        self.pagination = PaginationController(self.config.page_size, self.config.page_size_options)
        self.edit = EditSessionController(self.store, self.callbacks)
        self.selection = SelectionController()
        self.events = GridEventBus()
        if self.callbacks.on_render is not None:
            self.events.subscribe(ALL_EVENTS, self.callbacks.on_render)
        self.store.add_delete_listener(self._on_hard_delete)
        self._debouncer: SearchDebouncer | None = None

    @classmethod
    def from_entity(
        cls,
        name: str,
        entity: Mapping[str, Any],
        config: GridConfig | None = None,
        callbacks: GridCallbacks | None = None,
        related_stores: Mapping[str, RecordStore] | None = None,
    ) -> "GridContext":
        ctx = cls(name, SchemaModel.from_raw(entity.get("schema")), config, callbacks, related_stores)
        data = entity.get("data")
        if data is not None and not isinstance(data, list):
            raise SchemaError(f"{name}: data must be a list", "data", code="SCHEMA_DATA_INVALID")
        ctx.store.load(data or [])
        return ctx

    def _emit(self, name: str, payload: dict) -> None:
        self.events.publish(make_event(name, payload, self.name))

    def _on_hard_delete(self, record_id: Any) -> None:
        self.selection.prune(record_id)
        if self.edit.force_cancel(record_id):
            self._emit("grid.edit.cancelled", {"record_id": record_id, "reason": "deleted"})

    # Query and pagination

    def view(self) -> list[dict]:
        return self.query.view()

    def current_page(self) -> Page:
        return self.pagination.page(self.view())

    def page_ids(self) -> list:
        return self.current_page().ids()

    def _query_changed(self) -> None:
        self.pagination.go_to_page(1)
        self._emit("grid.query.changed", self.query.state())

    def search(self, term: str | None) -> Page:
        self.query.set_search(term)
        self._query_changed()
        return self.current_page()

    def search_later(self, term: str) -> None:
        if self._debouncer is None:
            self._debouncer = SearchDebouncer(self.search, self.config.search_debounce_ms)
        self._debouncer.schedule(term)

    def flush_search(self) -> bool:
        return self._debouncer.flush() if self._debouncer is not None else False

    def set_filters(self, filters: Iterable[Any], mode: str = "AND") -> Page:
        self.query.set_filters(filters, mode)
        self._query_changed()
        return self.current_page()

    def sort_by(self, fields: str | Sequence[str], direction: str | Sequence[str] = "asc") -> list[dict]:
        view = self.query.sort_by(fields, direction)
        self._emit("grid.query.changed", self.query.state())
        return view

    def clear_sort(self) -> None:
        self.query.clear_sort()
        self._emit("grid.query.changed", self.query.state())

    def set_deleted_visibility(self, visibility: str) -> Page:
        if visibility == self.query.deleted_visibility:
            return self.current_page()
        self.query.set_deleted_visibility(visibility)
        self.selection.clear()
        self._query_changed()
        return self.current_page()

    def _page_changed(self) -> Page:
        page = self.current_page()
        self._emit(
            "grid.page.changed",
            {"page_number": page.page_number, "page_size": page.page_size, "total_pages": page.total_pages},
        )
        return page

    def go_to_page(self, page: int) -> Page:
        self.pagination.set_view_length(len(self.view()))
        self.pagination.go_to_page(page)
        return self._page_changed()

    def first_page(self) -> Page:
        return self.go_to_page(self.pagination.first())

    def prev_page(self) -> Page:
        return self.go_to_page(self.pagination.prev())

    def next_page(self) -> Page:
        self.pagination.set_view_length(len(self.view()))
        return self.go_to_page(self.pagination.next())

    def last_page(self) -> Page:
        self.pagination.set_view_length(len(self.view()))
        return self.go_to_page(self.pagination.last())

    def set_page_size(self, size: int) -> Page:
        self.pagination.set_page_size(size)
        return self._page_changed()

    # Records

    def get(self, record_id: Any) -> dict | None:
        return self.store.get(record_id)

    def create(self, candidate: Mapping[str, Any]) -> Any:
        record_id = self.store.create(candidate)
        self._emit("grid.record.created", {"record_id": record_id})
        return record_id

    def update(self, record_id: Any, partial: Mapping[str, Any]) -> dict:
        updated = self.store.update(record_id, partial)
        self._emit("grid.record.updated", {"record_id": updated["id"], "fields": sorted(k for k in partial if k != "id")})
        return updated

    def delete(self, record_id: Any, soft: bool | None = None) -> dict:
        soft = self.config.soft_delete if soft is None else soft
        removed = self.store.delete(record_id, soft=soft)
        self._emit("grid.record.deleted", {"record_ids": [removed["id"]], "soft": soft})
        return removed

    def restore(self, record_id: Any) -> dict:
        restored = self.store.restore(record_id)
        self._emit("grid.record.restored", {"record_ids": [restored["id"]]})
        return restored

    # Edit session

    def start_edit(self, record_id: Any) -> EditSession:
        session = self.edit.start_edit(record_id)
        self._emit("grid.edit.started", {"record_id": session.record_id})
        return session

    def set_field(self, key: str, value: Any) -> None:
        self.edit.set_field(key, value)

    def commit_edit(self) -> dict:
        updated = self.edit.commit()
        self._emit("grid.edit.committed", {"record_id": updated["id"]})
        return updated

    def cancel_edit(self) -> bool:
        record_id = self.edit.record_id
        cancelled = self.edit.cancel()
        if cancelled:
            self._emit("grid.edit.cancelled", {"record_id": record_id, "reason": "user"})
        return cancelled

    # Selection

    def _selection_changed(self) -> None:
        self._emit(
            "grid.selection.changed",
            {"selected": self.selection.selected_ids(), "master": self.master_state()},
        )

    def toggle_selection(self, record_id: Any) -> bool:
        record = self.store.get(record_id)
        if record is None:
            raise NotFoundError(record_id)
        selected = self.selection.toggle(record["id"])
        self._selection_changed()
        return selected

    def select_page(self) -> str:
        self.selection.select_all(self.page_ids())
        self._selection_changed()
        return self.master_state()

    def deselect_page(self) -> str:
        self.selection.deselect_all(self.page_ids())
        self._selection_changed()
        return self.master_state()

    def toggle_page(self) -> str:
        state = self.selection.toggle_all(self.page_ids())
        self._selection_changed()
        return state

    def clear_selection(self) -> None:
        self.selection.clear()
        self._selection_changed()

    def master_state(self) -> str:
        return self.selection.master_state(self.page_ids())

    def bulk_delete(self, soft: bool | None = None) -> BulkResult:
        """Delete every selected record, across all pages, then clear the selection."""
        soft = self.config.soft_delete if soft is None else soft
        result = BulkResult(soft=soft)
        for record_id in self.selection.selected_ids():
            try:
                self.store.delete(record_id, soft=soft)
                result.processed.append(record_id)
            except NotFoundError:
                result.missing.append(record_id)
        self.selection.clear()
        logger.info(
            "bulk_delete grid=%s soft=%s processed=%s missing=%s",
            self.name,
            soft,
            len(result.processed),
            len(result.missing),
        )
        if result.processed:
            self._emit("grid.record.deleted", {"record_ids": list(result.processed), "soft": soft})
        self._selection_changed()
        return result

    def bulk_restore(self) -> BulkResult:
        result = BulkResult()
        for record_id in self.selection.selected_ids():
            try:
                self.store.restore(record_id)
                result.processed.append(record_id)
            except NotFoundError:
                result.missing.append(record_id)
        self.selection.clear()
        if result.processed:
            self._emit("grid.record.restored", {"record_ids": list(result.processed)})
        self._selection_changed()
        return result

    # Import and export

    def preview_import(self, payload: Any, fmt: str = "records") -> list[ImportRow]:
        return preview_import(parse_records(payload, self.schema, fmt), self.store)

    def commit_import(self, payload: Any, fmt: str = "records") -> ImportReport:
        report = commit_import(parse_records(payload, self.schema, fmt), self.store)
        self._emit(
            "grid.import.committed",
            {"created": list(report.created), "failed": len(report.failures), "total": report.total},
        )
        return report

    def export(self, fmt: str = "records", fields: Sequence[str] | None = None, scope: str = "view") -> str:
        if scope == "view":
            records = self.view()
        elif scope == "all":
            records = self.store.list()
        elif scope == "selection":
            records = [r for r in self.store.list() if self.selection.is_selected(r["id"])]
        else:
            raise SchemaError(f"Unknown export scope: {scope}", "scope", code="SCHEMA_SCOPE_INVALID")
        return export_records(records, self.schema, fmt=fmt, fields=fields, related_stores=self.store.related_stores)

    # Render state for adapters

    def row_values(self, record: Mapping[str, Any], mode: str = "display") -> dict:
        values = {}
        for key in self.schema.get_field_keys(mode):
            if mode == "edit" and not self.schema.is_computed(key):
                values[key] = record.get(key)
            else:
                value = self.schema.display_value(key, record, self.store.related_stores)
                values[key] = None if value is UNRESOLVED else value
        return values

    def render_state(self, mode: str = "display") -> dict:
        page = self.current_page()
        session = self.edit.session
        rows = []
        for record in page.items:
            editing = session is not None and str(session.record_id) == str(record["id"])
            source = dict(record, **session.draft) if editing else record
            rows.append(
                {
                    "id": record["id"],
                    "mode": "edit" if editing else mode,
                    "selected": self.selection.is_selected(record["id"]),
                    "deleted": bool(record.get(DELETED_FLAG)),
                    "values": self.row_values(source, "edit" if editing else mode),
                }
            )
        return {
            "grid": self.name,
            "columns": self.schema.columns("title"),
            "rows": rows,
            "page": {k: v for k, v in page.to_dict().items() if k != "items"},
            "page_size_options": list(self.pagination.page_size_options),
            "selection": {"selected": self.selection.selected_ids(), "master": self.selection.master_state(page.ids())},
            "editing": session.to_dict() if session is not None else None,
            "query": self.query.state(),
        }


def _is_entity(value: Any) -> bool:
    return isinstance(value, dict) and ("schema" in value or "data" in value)


def unwrap_document(document: Any) -> dict:
    """Return the entity mapping, unwrapping one namespace level if present."""
    if not isinstance(document, dict):
        return {}
    if any(_is_entity(v) for v in document.values()):
        return document
    if len(document) == 1:
        inner = next(iter(document.values()))
        if isinstance(inner, dict) and any(_is_entity(v) for v in inner.values()):
            return inner
    return {}


class GridWorkspace:
    """Grid contexts for every entity of a document, sharing one related-store map."""

    def __init__(self, config: GridConfig | None = None) -> None:
        self.config = config or GridConfig()
        self.grids: Dict[str, GridContext] = {}
        self.stores: Dict[str, RecordStore] = {}
        self.issues: List[dict] = []

    @classmethod
    def from_document(
        cls,
        document: Any,
        config: GridConfig | None = None,
        callbacks: Mapping[str, GridCallbacks] | None = None,
    ) -> "GridWorkspace":
        workspace = cls(config)
        workspace.load_document(document, callbacks)
        return workspace

    def load_document(self, document: Any, callbacks: Mapping[str, GridCallbacks] | None = None) -> list[dict]:
        entities = unwrap_document(document)
        issues: list[dict] = []
        if not entities:
            issues.append({"code": "DOCUMENT_EMPTY", "message": "Document has no entities", "path": None, "detail": None})
        for name, entity in entities.items():
            if not _is_entity(entity):
                issues.append({"code": "ENTITY_INVALID", "message": f"{name}: entity must have schema or data", "path": name, "detail": None})
                continue
            try:
                ctx = GridContext.from_entity(
                    name,
                    entity,
                    config=self.config,
                    callbacks=(callbacks or {}).get(name),
                    related_stores=self.stores,
                )
            except GridError as exc:
                issues.append(exc.to_issue())
                logger.warning("entity_load_failed entity=%s code=%s message=%s", name, exc.code, exc.message)
                continue
            self.grids[name] = ctx
            self.stores[name] = ctx.store
            for issue in ctx.schema.issues:
                issues.append(dict(issue, path=f"{name}.{issue.get('path')}" if issue.get("path") else name))
        self.issues.extend(issues)
        logger.info("document_loaded entities=%s issues=%s", sorted(self.grids.keys()), len(issues))
        return issues

    def names(self) -> list[str]:
        return list(self.grids.keys())

    def get(self, name: str) -> GridContext | None:
        return self.grids.get(name)

    def require(self, name: str) -> GridContext:
        ctx = self.grids.get(name)
        if ctx is None:
            raise SchemaError(f"Unknown grid: {name}", name, code="SCHEMA_UNKNOWN_GRID")
        return ctx
