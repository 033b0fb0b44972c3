"""In-memory record collection for one grid entity."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping

from grid_errors import NotFoundError, SchemaError, ValidationError
from grid_schema import DELETED_AT, DELETED_FLAG, RECORD_ID, SYSTEM_KEYS, SchemaModel
from record_validation import ExtraValidator, ValidationResult, validate_record

logger = logging.getLogger("datagrid.store")

DeleteListener = Callable[[Any], None]
Predicate = Callable[[dict], bool]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _numeric_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


class RecordStore:
    """Owns the ordered collection; the only component allowed to mutate it."""

    def __init__(
        self,
        schema: SchemaModel,
        name: str = "records",
        related_stores: Mapping[str, "RecordStore"] | None = None,
        extra_validator: ExtraValidator | None = None,
        clock: Callable[[], str] = _now,
    ) -> None:
        self.name = name
        self.schema = schema
        self.related_stores: Mapping[str, "RecordStore"] = related_stores if related_stores is not None else {}
        self.extra_validator = extra_validator
        self._clock = clock
        self._records: Dict[Any, dict] = {}
        self._ids_by_text: Dict[str, Any] = {}
        self._next_id = 1
        self.version = 0
        self._delete_listeners: List[DeleteListener] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: Any) -> bool:
        return self._resolve_id(record_id) is not None

    def _resolve_id(self, record_id: Any) -> Any | None:
        if record_id is None:
            return None
        try:
            if record_id in self._records:
                return record_id
        except TypeError:
            return None
        return self._ids_by_text.get(str(record_id))

    def _require_id(self, record_id: Any) -> Any:
        rid = self._resolve_id(record_id)
        if rid is None:
            raise NotFoundError(record_id)
        return rid

    def _note_id(self, record_id: Any) -> None:
        numeric = _numeric_id(record_id)
        if numeric is not None and numeric >= self._next_id:
            self._next_id = numeric + 1

    def _fresh_id(self) -> int:
        while str(self._next_id) in self._ids_by_text:
            self._next_id += 1
        rid = self._next_id
        self._next_id += 1
        return rid

    def _insert(self, record: dict) -> None:
        rid = record[RECORD_ID]
        self._records[rid] = record
        self._ids_by_text[str(rid)] = rid
        self._note_id(rid)
        self.version += 1

    def validate(self, record: Mapping[str, Any], check_unknown: bool = True) -> ValidationResult:
        return validate_record(
            record,
            self.schema,
            related_stores=self.related_stores,
            extra=self.extra_validator,
            check_unknown=check_unknown,
        )

    def load(self, rows: Iterable[Any]) -> list:
        """Bulk-load document rows, keeping their ids when unique."""
        loaded = []
        for idx, row in enumerate(rows or []):
            if not isinstance(row, dict):
                logger.warning("record_load_skipped grid=%s index=%s reason=not_an_object", self.name, idx)
                continue
            record = copy.deepcopy(row)
            rid = record.get(RECORD_ID)
            if rid is None or rid == "" or self._resolve_id(rid) is not None:
                rid = self._fresh_id()
            record[RECORD_ID] = rid
            self._insert(record)
            loaded.append(rid)
        logger.info("records_loaded grid=%s count=%s", self.name, len(loaded))
        return loaded

    def create(self, candidate: Mapping[str, Any]) -> Any:
        if not isinstance(candidate, Mapping):
            result = ValidationResult()
            result.add("INVALID_PAYLOAD", "Record data must be an object", None)
            raise ValidationError(result)
        data = {k: v for k, v in candidate.items() if k not in SYSTEM_KEYS}
        data = self.schema.apply_defaults(data)
        result = self.validate(data)
        if not result.is_valid:
            logger.info("record_create_rejected grid=%s errors=%s", self.name, len(result.errors))
            raise ValidationError(result)
        rid = self._fresh_id()
        record = {RECORD_ID: rid}
        record.update(copy.deepcopy(data))
        self._insert(record)
        logger.info("record_created grid=%s record_id=%s", self.name, rid)
        return rid

    def get(self, record_id: Any) -> dict | None:
        rid = self._resolve_id(record_id)
        if rid is None:
            return None
        return copy.deepcopy(self._records[rid])

    def ids(self) -> list:
        return list(self._records.keys())

    def list(self, predicate: Predicate | None = None) -> list[dict]:
        items = [copy.deepcopy(r) for r in self._records.values()]
        if predicate is None:
            return items
        return [r for r in items if predicate(r)]

    def update(self, record_id: Any, partial: Mapping[str, Any]) -> dict:
        rid = self._require_id(record_id)
        if not isinstance(partial, Mapping):
            raise SchemaError("Update payload must be an object", None, code="SCHEMA_INVALID_PAYLOAD")
        changes = dict(partial)
        if RECORD_ID in changes:
            if str(changes.pop(RECORD_ID)) != str(rid):
                raise SchemaError("Record id is immutable", RECORD_ID, code="SCHEMA_ID_IMMUTABLE")
        for key in changes:
            if key in SYSTEM_KEYS:
                raise SchemaError(f"{key} is managed by delete/restore", key, code="SCHEMA_RESERVED_FIELD")
            if self.schema.field(key).computed:
                raise SchemaError(f"{key} is computed and cannot be edited", key, code="SCHEMA_FIELD_NOT_EDITABLE")

        merged = copy.deepcopy(self._records[rid])
        merged.update(copy.deepcopy(changes))
        candidate = {k: v for k, v in merged.items() if k not in SYSTEM_KEYS}
        result = self.validate(candidate, check_unknown=False)
        if not result.is_valid:
            logger.info("record_update_rejected grid=%s record_id=%s errors=%s", self.name, rid, len(result.errors))
            raise ValidationError(result, rid)
        self._records[rid] = merged
        self.version += 1
        logger.info("record_updated grid=%s record_id=%s fields=%s", self.name, rid, sorted(changes.keys()))
        return copy.deepcopy(merged)

    def delete(self, record_id: Any, soft: bool = False) -> dict:
        rid = self._require_id(record_id)
        if soft:
            record = self._records[rid]
            if not record.get(DELETED_FLAG):
                record[DELETED_FLAG] = True
                record[DELETED_AT] = self._clock()
                self.version += 1
            logger.info("record_soft_deleted grid=%s record_id=%s", self.name, rid)
            return copy.deepcopy(record)
        removed = self._records.pop(rid)
        self._ids_by_text.pop(str(rid), None)
        self.version += 1
        logger.info("record_deleted grid=%s record_id=%s", self.name, rid)
        for listener in list(self._delete_listeners):
            listener(rid)
        return removed

    def restore(self, record_id: Any) -> dict:
        rid = self._require_id(record_id)
        record = self._records[rid]
        record.pop(DELETED_FLAG, None)
        record.pop(DELETED_AT, None)
        self.version += 1
        logger.info("record_restored grid=%s record_id=%s", self.name, rid)
        return copy.deepcopy(record)

    def is_deleted(self, record_id: Any) -> bool:
        rid = self._require_id(record_id)
        return bool(self._records[rid].get(DELETED_FLAG))

    def add_delete_listener(self, listener: DeleteListener) -> None:
        self._delete_listeners.append(listener)

    def remove_delete_listener(self, listener: DeleteListener) -> bool:
        try:
            self._delete_listeners.remove(listener)
            return True
        except ValueError:
            return False
