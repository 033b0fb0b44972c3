"""Search, filter and sort views over a RecordStore.

Views are derived lists of record copies; storage order is never touched.
Comparisons never raise: mismatched types fall back to lexical comparison
and pairs that cannot be compared simply do not match.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence

from gridkit.record_json import check_serializable
from gridkit.values import compare, sort_key, to_text
from grid_errors import SchemaError
from grid_schema import DELETED_FLAG, FieldSchema
from record_store import RecordStore

logger = logging.getLogger("datagrid.query")

OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "contains")
FILTER_MODES = ("AND", "OR")
DELETED_VISIBILITY = ("all", "active", "deleted")
DIRECTIONS = ("asc", "desc")

_OPERATOR_ALIASES = {
    "eq": "=",
    "==": "=",
    "neq": "!=",
    "ne": "!=",
    "<>": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


@dataclass(frozen=True)
class SearchHit:
    record: dict
    score: float


@dataclass(frozen=True)
class FilterSpec:
    field: str
    operator: str
    value: Any

    @classmethod
    def from_any(cls, raw: Any) -> "FilterSpec":
        if isinstance(raw, FilterSpec):
            return raw
        if isinstance(raw, dict):
            field_key = raw.get("field")
            op = raw.get("operator", raw.get("op"))
            value = raw.get("value")
        elif isinstance(raw, (list, tuple)) and len(raw) == 3:
            field_key, op, value = raw
        else:
            raise SchemaError("Filter must be {field, operator, value}", None, code="SCHEMA_FILTER_INVALID")
        if not isinstance(field_key, str) or not field_key:
            raise SchemaError("Filter field is required", "field", code="SCHEMA_FILTER_INVALID")
        if not isinstance(op, str):
            raise SchemaError("Filter operator is required", "operator", code="SCHEMA_FILTER_INVALID")
        op = _OPERATOR_ALIASES.get(op.strip().lower(), op.strip().lower())
        if op not in OPERATORS:
            raise SchemaError(f"Unknown operator: {raw!r}", "operator", code="SCHEMA_UNKNOWN_OPERATOR")
        return cls(field=field_key, operator=op, value=value)

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: str = "asc"

    def to_dict(self) -> dict:
        return {"field": self.field, "direction": self.direction}


def normalize_sort(fields: str | Sequence[str], direction: str | Sequence[str] = "asc") -> list[SortSpec]:
    keys = [fields] if isinstance(fields, str) else list(fields)
    if not keys:
        return []
    directions = [direction] if isinstance(direction, str) else list(direction)
    if len(directions) == 1:
        directions = directions * len(keys)
    if len(directions) != len(keys):
        raise SchemaError("Sort directions must match sort fields", "direction", code="SCHEMA_SORT_INVALID")
    specs = []
    for key, dirn in zip(keys, directions):
        dirn = str(dirn).strip().lower()
        if dirn not in DIRECTIONS:
            raise SchemaError(f"Unknown sort direction: {dirn}", "direction", code="SCHEMA_SORT_INVALID")
        specs.append(SortSpec(field=key, direction=dirn))
    return specs


def _matches_op(op: str, cmp: int | None) -> bool:
    if cmp is None:
        return False
    if op == "=":
        return cmp == 0
    if op == "!=":
        return cmp != 0
    if op == ">":
        return cmp > 0
    if op == ">=":
        return cmp >= 0
    if op == "<":
        return cmp < 0
    return cmp <= 0


class QueryEngine:
    def __init__(
        self,
        store: RecordStore,
        min_search_length: int = 1,
        case_sensitive: bool = False,
        deleted_visibility: str = "all",
    ) -> None:
        self.store = store
        self.min_search_length = max(1, int(min_search_length))
        self.case_sensitive = case_sensitive
        self._visibility = "all"
        self.set_deleted_visibility(deleted_visibility)
        self._term = ""
        self._filters: List[FilterSpec] = []
        self._filter_mode = "AND"
        self._sort: List[SortSpec] = []
        self._cache: list[dict] | None = None
        self._cache_key: tuple | None = None

    @property
    def schema(self):
        return self.store.schema

    @property
    def search_term(self) -> str:
        return self._term

    @property
    def filters(self) -> list[FilterSpec]:
        return list(self._filters)

    @property
    def filter_mode(self) -> str:
        return self._filter_mode

    @property
    def sort(self) -> list[SortSpec]:
        return list(self._sort)

    @property
    def deleted_visibility(self) -> str:
        return self._visibility

    def _value(self, record: dict, fschema: FieldSchema) -> Any:
        if fschema.computed or fschema.value_type == "enum":
            return self.schema.display_value(fschema.key, record, self.store.related_stores)
        return record.get(fschema.key)

    def _visible(self, record: dict) -> bool:
        if self._visibility == "active":
            return not record.get(DELETED_FLAG)
        if self._visibility == "deleted":
            return bool(record.get(DELETED_FLAG))
        return True

    def records(self) -> list[dict]:
        """All records passing the deleted-visibility filter, in storage order."""
        return self.store.list(self._visible)

    def search(self, term: str | None, records: Iterable[dict] | None = None) -> list[SearchHit]:
        items = self.records() if records is None else list(records)
        text = (term or "").strip()
        if not text or len(text) < self.min_search_length:
            return [SearchHit(record=r, score=0.0) for r in items]
        needle = text if self.case_sensitive else text.casefold()
        fields = [self.schema.field(key) for key in self.schema.searchable_keys()]
        hits = []
        for record in items:
            matched = 0
            best: int | None = None
            for fschema in fields:
                hay = to_text(self._value(record, fschema))
                if not self.case_sensitive:
                    hay = hay.casefold()
                pos = hay.find(needle)
                if pos < 0:
                    continue
                matched += 1
                best = pos if best is None else min(best, pos)
            if matched:
                hits.append(SearchHit(record=record, score=matched + 1.0 / (2 + best)))
        hits.sort(key=lambda h: -h.score)
        logger.debug("search grid=%s term=%r hits=%s", self.store.name, text, len(hits))
        return hits

    def _filter_match(self, record: dict, spec: FilterSpec, fschema: FieldSchema) -> bool:
        left = self._value(record, fschema) if fschema.computed else record.get(fschema.key)
        if spec.operator == "contains":
            if left is None or spec.value is None:
                return False
            hay, needle = to_text(left), to_text(spec.value)
            if not self.case_sensitive:
                hay, needle = hay.casefold(), needle.casefold()
            return needle in hay
        return _matches_op(spec.operator, compare(left, spec.value, fschema.value_type))

    def apply_filters(self, filters: Iterable[Any], mode: str = "AND", records: Iterable[dict] | None = None) -> list[dict]:
        items = self.records() if records is None else list(records)
        specs = [FilterSpec.from_any(f) for f in filters or []]
        mode = str(mode or "AND").upper()
        if mode not in FILTER_MODES:
            raise SchemaError(f"Unknown filter mode: {mode}", "mode", code="SCHEMA_FILTER_INVALID")
        if not specs:
            return items
        resolved = [(spec, self.schema.field(spec.field)) for spec in specs]
        combine = all if mode == "AND" else any
        return [r for r in items if combine(self._filter_match(r, spec, fschema) for spec, fschema in resolved)]

    def sort_records(self, records: Iterable[dict], specs: Sequence[SortSpec]) -> list[dict]:
        items = list(records)
        resolved = [(spec, self.schema.field(spec.field)) for spec in specs]
        for spec, fschema in reversed(resolved):
            items = sorted(
                items,
                key=lambda r, fs=fschema: sort_key(self._value(r, fs), fs.value_type),
                reverse=spec.direction == "desc",
            )
        return items

    def sort_by(self, fields: str | Sequence[str], direction: str | Sequence[str] = "asc") -> list[dict]:
        specs = normalize_sort(fields, direction)
        for spec in specs:
            self.schema.field(spec.field)
        self._sort = specs
        self.invalidate()
        return self.view()

    def clear_sort(self) -> None:
        self._sort = []
        self.invalidate()

    def set_search(self, term: str | None) -> None:
        self._term = (term or "").strip()
        self.invalidate()

    def set_filters(self, filters: Iterable[Any], mode: str = "AND") -> None:
        specs = [FilterSpec.from_any(f) for f in filters or []]
        for idx, spec in enumerate(specs):
            self.schema.field(spec.field)
            try:
                check_serializable(spec.value)
            except (TypeError, ValueError) as exc:
                raise SchemaError(f"Filter value is not plain data: {exc}", f"filters[{idx}].value", code="SCHEMA_FILTER_INVALID") from exc
        mode = str(mode or "AND").upper()
        if mode not in FILTER_MODES:
            raise SchemaError(f"Unknown filter mode: {mode}", "mode", code="SCHEMA_FILTER_INVALID")
        self._filters = specs
        self._filter_mode = mode
        self.invalidate()

    def set_deleted_visibility(self, visibility: str) -> None:
        if visibility not in DELETED_VISIBILITY:
            raise SchemaError(f"Unknown deleted visibility: {visibility}", "deleted", code="SCHEMA_VISIBILITY_INVALID")
        self._visibility = visibility
        self.invalidate()

    def invalidate(self) -> None:
        self._cache = None
        self._cache_key = None

    def _versions(self) -> tuple:
        related = tuple(
            (name, getattr(store, "version", 0))
            for name, store in sorted(self.store.related_stores.items())
        )
        return (self.store.version, related)

    def view(self) -> list[dict]:
        key = self._versions()
        if self._cache is not None and self._cache_key == key:
            return list(self._cache)
        items = self.records()
        if self._filters:
            items = self.apply_filters(self._filters, self._filter_mode, items)
        items = [hit.record for hit in self.search(self._term, items)]
        if self._sort:
            items = self.sort_records(items, self._sort)
        self._cache = items
        self._cache_key = key
        return list(items)

    def view_ids(self) -> list:
        return [r["id"] for r in self.view()]

    def state(self) -> dict:
        return {
            "search": self._term,
            "filters": [f.to_dict() for f in self._filters],
            "filter_mode": self._filter_mode,
            "sort": [s.to_dict() for s in self._sort],
            "deleted": self._visibility,
        }
