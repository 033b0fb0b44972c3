"""Change notifications from a grid context to its render adapter."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping

from gridkit.record_json import check_serializable
from grid_errors import GridError

logger = logging.getLogger("datagrid.events")

Event = Dict[str, Any]
Handler = Callable[[Event], None]

ALL_EVENTS = "*"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

EVENT_NAMES = frozenset(
    {
        "grid.record.created",
        "grid.record.updated",
        "grid.record.deleted",
        "grid.record.restored",
        "grid.selection.changed",
        "grid.page.changed",
        "grid.query.changed",
        "grid.edit.started",
        "grid.edit.committed",
        "grid.edit.cancelled",
        "grid.import.committed",
    }
)


class EventValidationError(GridError):
    def __init__(self, code: str, message: str, path: str | None = None) -> None:
        super().__init__(code, message, path)


@dataclass
class GridCallbacks:
    """Capabilities a host may plug into a grid context."""

    on_row_save: Callable[[dict], None] | None = None
    on_validate: Callable[[Mapping[str, Any]], Mapping[str, str] | None] | None = None
    on_field_edit: Callable[[Any, str, Any], None] | None = None
    on_render: Callable[[Event], None] | None = None


def _timestamp_ok(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return False
    return True


def validate_event(event: Any) -> None:
    """Check the ``{name, payload, meta}`` envelope; raises EventValidationError."""
    if not isinstance(event, dict):
        raise EventValidationError("EVENT_INVALID", "Event must be an object")
    name = event.get("name")
    if name not in EVENT_NAMES:
        raise EventValidationError("EVENT_NAME_INVALID", f"Unknown event name: {name!r}", "name")

    payload = event.get("payload")
    if not isinstance(payload, dict):
        raise EventValidationError("PAYLOAD_INVALID", "Event payload must be an object", "payload")
    try:
        check_serializable(payload)
    except (TypeError, ValueError) as exc:
        raise EventValidationError("PAYLOAD_INVALID", str(exc), "payload") from exc

    meta = event.get("meta")
    if not isinstance(meta, dict):
        raise EventValidationError("META_INVALID", "Event meta must be an object", "meta")
    for key in ("event_id", "grid"):
        if not isinstance(meta.get(key), str) or not meta[key]:
            raise EventValidationError(f"META_{key.upper()}_INVALID", f"meta.{key} must be a non-empty string", f"meta.{key}")
    if not _timestamp_ok(meta.get("occurred_at")):
        raise EventValidationError(
            "META_OCCURRED_AT_INVALID",
            f"meta.occurred_at must be a UTC timestamp like {TIMESTAMP_FORMAT}",
            "meta.occurred_at",
        )


def make_event(name: str, payload: dict, grid: str) -> Event:
    event = {
        "name": name,
        "payload": copy.deepcopy(payload),
        "meta": {
            "event_id": str(uuid.uuid4()),
            "occurred_at": datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT),
            "grid": grid,
        },
    }
    validate_event(event)
    return event


class GridEventBus:
    """In-process fan-out; a failing handler is logged and the rest still run."""

    def __init__(self, keep_last: int = 50) -> None:
        self._handlers: Dict[str, List[Handler]] = {}
        self._recent: List[Event] = []
        self._keep_last = keep_last

    def subscribe(self, name: str, handler: Handler) -> None:
        self._handlers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> bool:
        handlers = self._handlers.get(name, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            self._handlers.pop(name)
        return True

    def recent(self) -> list[Event]:
        return list(self._recent)

    def publish(self, event: Event) -> None:
        validate_event(event)
        self._recent = (self._recent + [event])[-self._keep_last :]
        targets = self._handlers.get(event["name"], []) + self._handlers.get(ALL_EVENTS, [])
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("grid_event_handler_failed event=%s grid=%s", event["name"], event["meta"]["grid"])
