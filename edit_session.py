"""Single-row inline edit state machine.

States are ``idle`` and ``editing``. At most one session exists per
controller; starting another while one is active is a conflict the caller
must resolve by committing or cancelling first. A hard delete of the row
being edited cancels the session.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from grid_errors import ConflictError, NotFoundError, SchemaError, ValidationError
from grid_events import GridCallbacks
from grid_schema import SYSTEM_KEYS
from record_store import RecordStore

logger = logging.getLogger("datagrid.edit")

IDLE = "idle"
EDITING = "editing"


@dataclass
class EditSession:
    record_id: Any
    draft: Dict[str, Any] = field(default_factory=dict)
    original_snapshot: Dict[str, Any] = field(default_factory=dict)

    def changes(self) -> dict:
        return {
            key: value
            for key, value in self.draft.items()
            if key not in self.original_snapshot or self.original_snapshot[key] != value
        }

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "draft": copy.deepcopy(self.draft),
            "original_snapshot": copy.deepcopy(self.original_snapshot),
            "changes": copy.deepcopy(self.changes()),
        }


class EditSessionController:
    def __init__(self, store: RecordStore, callbacks: GridCallbacks | None = None) -> None:
        self.store = store
        self.callbacks = callbacks or GridCallbacks()
        self._session: EditSession | None = None

    @property
    def state(self) -> str:
        return EDITING if self._session is not None else IDLE

    @property
    def session(self) -> EditSession | None:
        return copy.deepcopy(self._session) if self._session is not None else None

    @property
    def record_id(self) -> Any:
        return self._session.record_id if self._session is not None else None

    def is_editing(self, record_id: Any = None) -> bool:
        if self._session is None:
            return False
        if record_id is None:
            return True
        return str(self._session.record_id) == str(record_id)

    def is_dirty(self) -> bool:
        return self._session is not None and bool(self._session.changes())

    def _require_session(self) -> EditSession:
        if self._session is None:
            raise ConflictError("No active edit session", None, code="NO_ACTIVE_EDIT")
        return self._session

    def start_edit(self, record_id: Any) -> EditSession:
        if self._session is not None:
            raise ConflictError(
                f"Record {self._session.record_id} is already being edited",
                self._session.record_id,
            )
        record = self.store.get(record_id)
        if record is None:
            raise NotFoundError(record_id)
        snapshot = {k: v for k, v in record.items() if k not in SYSTEM_KEYS}
        self._session = EditSession(
            record_id=record["id"],
            draft=copy.deepcopy(snapshot),
            original_snapshot=copy.deepcopy(snapshot),
        )
        logger.info("edit_started grid=%s record_id=%s", self.store.name, record["id"])
        return copy.deepcopy(self._session)

    def set_field(self, key: str, value: Any) -> None:
        session = self._require_session()
        fschema = self.store.schema.field(key)
        if fschema.computed or not fschema.edit.interactive:
            raise SchemaError(f"{key} is not editable", key, code="SCHEMA_FIELD_NOT_EDITABLE")
        session.draft[key] = copy.deepcopy(value)
        if self.callbacks.on_field_edit is not None:
            self.callbacks.on_field_edit(session.record_id, key, value)

    def set_fields(self, values: Dict[str, Any]) -> None:
        for key in values:
            fschema = self.store.schema.field(key)
            if fschema.computed or not fschema.edit.interactive:
                raise SchemaError(f"{key} is not editable", key, code="SCHEMA_FIELD_NOT_EDITABLE")
        for key, value in values.items():
            self.set_field(key, value)

    def commit(self) -> dict:
        session = self._require_session()
        if self.store.get(session.record_id) is None:
            self._session = None
            raise NotFoundError(session.record_id)
        result = self.store.validate(session.draft, check_unknown=False)
        if not result.is_valid:
            logger.info("edit_commit_rejected grid=%s record_id=%s errors=%s", self.store.name, session.record_id, len(result.errors))
            raise ValidationError(result, session.record_id)
        changes = session.changes()
        if changes:
            updated = self.store.update(session.record_id, changes)
        else:
            updated = self.store.get(session.record_id)
        self._session = None
        logger.info("edit_committed grid=%s record_id=%s fields=%s", self.store.name, updated["id"], sorted(changes.keys()))
        if self.callbacks.on_row_save is not None:
            self.callbacks.on_row_save(copy.deepcopy(updated))
        return updated

    def cancel(self) -> bool:
        if self._session is None:
            return False
        logger.info("edit_cancelled grid=%s record_id=%s", self.store.name, self._session.record_id)
        self._session = None
        return True

    def force_cancel(self, record_id: Any) -> bool:
        """Drop the session if it targets ``record_id``; used on hard delete."""
        if not self.is_editing(record_id):
            return False
        return self.cancel()
