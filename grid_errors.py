"""Error taxonomy for the grid engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from record_validation import ValidationResult


@dataclass
class GridError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def to_issue(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": None}


class SchemaError(GridError):
    def __init__(self, message: str, path: str | None = None, code: str = "SCHEMA_UNKNOWN_FIELD") -> None:
        super().__init__(code, message, path)


class NotFoundError(GridError):
    def __init__(self, record_id: Any) -> None:
        super().__init__("RECORD_NOT_FOUND", f"Record not found: {record_id}", "id")
        self.record_id = record_id


class ConflictError(GridError):
    def __init__(self, message: str, active_record_id: Any = None, code: str = "EDIT_CONFLICT") -> None:
        super().__init__(code, message, "id")
        self.active_record_id = active_record_id


class ValidationError(GridError):
    def __init__(self, result: "ValidationResult", record_id: Any = None) -> None:
        summary = "; ".join(result.errors) if result.errors else "Record is invalid"
        super().__init__("VALIDATION_FAILED", summary, None)
        self.result = result
        self.record_id = record_id

    def to_issue(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "path": self.path,
            "detail": self.result.to_dict(),
        }


class ImportFormatError(GridError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("IMPORT_FORMAT_INVALID", message, path)
