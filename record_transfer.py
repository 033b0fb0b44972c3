"""Record import and export in record-sequence (JSON) and delimited-text (CSV) form."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from gridkit.record_json import dumps_records
from gridkit.values import to_bool, to_number, to_text
from grid_errors import ImportFormatError, ValidationError
from grid_schema import RECORD_ID, SYSTEM_KEYS, UNRESOLVED, FieldSchema, SchemaModel
from record_store import RecordStore
from record_validation import ValidationResult

logger = logging.getLogger("datagrid.transfer")

FORMATS = ("records", "csv")


@dataclass
class ImportRow:
    index: int
    record: dict
    result: ValidationResult

    def to_dict(self) -> dict:
        return {"index": self.index, "record": dict(self.record), "validation": self.result.to_dict()}


@dataclass
class ImportReport:
    total: int = 0
    created: List[Any] = field(default_factory=list)
    failures: List[ImportRow] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "created": list(self.created),
            "failures": [f.to_dict() for f in self.failures],
        }


def _check_format(fmt: str) -> str:
    fmt = (fmt or "records").strip().lower()
    if fmt == "json":
        fmt = "records"
    if fmt not in FORMATS:
        raise ImportFormatError(f"Unsupported format: {fmt}", "format")
    return fmt


def coerce_value(fschema: FieldSchema | None, raw: Any) -> Any:
    """Convert delimited-text cells to the field's value type where they parse."""
    if not isinstance(raw, str):
        return raw
    if raw.strip() == "":
        return None
    if fschema is None:
        return raw
    if fschema.value_type == "number":
        parsed = to_number(raw)
        return raw if parsed is None else parsed
    if fschema.value_type == "boolean":
        flag = to_bool(raw)
        return raw if flag is None else flag
    return raw


def _parse_json(text: str) -> list[dict]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Invalid JSON: {exc.msg}", f"line {exc.lineno}")
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data = data["data"]
    if not isinstance(data, list):
        raise ImportFormatError("Expected a JSON array of records", "$")
    for idx, row in enumerate(data):
        if not isinstance(row, dict):
            raise ImportFormatError("Every record must be an object", f"$[{idx}]")
    return data


def _parse_csv(text: str, schema: SchemaModel) -> list[dict]:
    reader = csv.DictReader(io.StringIO(text))
    try:
        if not reader.fieldnames:
            raise ImportFormatError("CSV input has no header row", "header")
        rows = []
        for row in reader:
            if None in row:
                raise ImportFormatError(f"Row {reader.line_num} has more cells than the header", f"line {reader.line_num}")
            record = {}
            for column, raw in row.items():
                column = column.strip()
                fschema = schema.field(column) if schema.has_field(column) else None
                record[column] = coerce_value(fschema, raw)
            rows.append(record)
    except csv.Error as exc:
        raise ImportFormatError(f"CSV input is malformed: {exc}", f"line {reader.line_num}") from exc
    return rows


def decode_payload(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ImportFormatError(f"Import payload is not valid UTF-8 (byte {exc.start})", f"byte {exc.start}") from exc


def parse_records(payload: str | bytes | Sequence[dict], schema: SchemaModel, fmt: str = "records") -> list[dict]:
    fmt = _check_format(fmt)
    if isinstance(payload, (list, tuple)):
        return [dict(r) for r in payload]
    if isinstance(payload, bytes):
        payload = decode_payload(payload)
    if not isinstance(payload, str):
        raise ImportFormatError("Import payload must be text or a list of records", None)
    text = payload.lstrip("\ufeff")
    if fmt == "records":
        return _parse_json(text)
    return _parse_csv(text, schema)


def _candidate(row: dict, schema: SchemaModel) -> dict:
    data = {k: v for k, v in row.items() if k not in SYSTEM_KEYS}
    return schema.apply_defaults(data)


def preview_import(rows: Iterable[dict], store: RecordStore) -> list[ImportRow]:
    """Validate every incoming row without touching the store."""
    preview = []
    for idx, row in enumerate(rows):
        candidate = _candidate(row, store.schema)
        preview.append(ImportRow(index=idx, record=candidate, result=store.validate(candidate)))
    invalid = sum(1 for p in preview if not p.result.is_valid)
    logger.info("import_preview grid=%s rows=%s invalid=%s", store.name, len(preview), invalid)
    return preview


def commit_import(rows: Iterable[dict], store: RecordStore) -> ImportReport:
    """Create every valid row; failures are collected, not fatal."""
    report = ImportReport()
    for idx, row in enumerate(rows):
        report.total += 1
        try:
            report.created.append(store.create(row))
        except ValidationError as exc:
            report.failures.append(ImportRow(index=idx, record=_candidate(row, store.schema), result=exc.result))
    logger.info(
        "import_committed grid=%s rows=%s created=%s failed=%s",
        store.name,
        report.total,
        len(report.created),
        len(report.failures),
    )
    return report


def export_rows(
    records: Iterable[dict],
    schema: SchemaModel,
    fields: Sequence[str] | None = None,
    include_id: bool = True,
    related_stores: Any = None,
) -> list[dict]:
    columns = list(fields) if fields else schema.keys()
    for column in columns:
        schema.field(column)
    rows = []
    for record in records:
        row = {RECORD_ID: record.get(RECORD_ID)} if include_id else {}
        for column in columns:
            if schema.is_computed(column):
                value = schema.resolve_computed(column, record, related_stores)
                row[column] = None if value is UNRESOLVED else value
            else:
                row[column] = record.get(column)
        rows.append(row)
    return rows


def export_records(
    records: Iterable[dict],
    schema: SchemaModel,
    fmt: str = "records",
    fields: Sequence[str] | None = None,
    include_id: bool = True,
    related_stores: Any = None,
) -> str:
    fmt = _check_format(fmt)
    rows = export_rows(records, schema, fields=fields, include_id=include_id, related_stores=related_stores)
    if fmt == "records":
        return dumps_records(rows, indent=2)
    out = io.StringIO()
    columns = ([RECORD_ID] if include_id else []) + (list(fields) if fields else schema.keys())
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([to_text(row.get(c)) for c in columns])
    return out.getvalue()
