"""Record validation against a normalized grid schema."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping

from gridkit.values import is_empty, to_bool, to_date, to_number, to_text
from grid_schema import SYSTEM_KEYS, FieldSchema, SchemaModel, compile_pattern

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
_PHONE_RE = re.compile(r"^\+?[\d\s().\-/]+(\s*(x|ext\.?)\s*\d+)?$", re.IGNORECASE)
_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
_MIN_PHONE_DIGITS = 7

ExtraValidator = Callable[[Mapping[str, Any]], Mapping[str, str] | None]


@dataclass
class ValidationResult:
    is_valid: bool = True
    field_errors: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    issues: List[dict] = field(default_factory=list)

    def add(self, code: str, message: str, path: str | None) -> None:
        self.is_valid = False
        self.errors.append(message)
        self.issues.append({"code": code, "message": message, "path": path})
        if path is not None:
            self.field_errors.setdefault(path, message)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "field_errors": dict(self.field_errors),
            "errors": list(self.errors),
            "issues": [dict(i) for i in self.issues],
        }


def is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value.strip()))


def is_phone(value: str) -> bool:
    text = value.strip()
    digits = sum(1 for ch in text if ch.isdigit())
    return bool(_PHONE_RE.match(text)) and digits >= _MIN_PHONE_DIGITS


def is_url(value: str) -> bool:
    return bool(_URL_RE.match(value.strip()))


def _reference_exists(fschema: FieldSchema, value: Any, related_stores: Mapping[str, Any] | None) -> bool | None:
    ref = fschema.reference
    store = (related_stores or {}).get(ref.entity) if ref else None
    if store is None:
        return None
    if ref.value_key == "id":
        return store.get(value) is not None
    wanted = str(value)
    return any(str(rec.get(ref.value_key)) == wanted for rec in store.list())


def _check_type(fschema: FieldSchema, value: Any, result: ValidationResult, related_stores: Mapping[str, Any] | None) -> None:
    key = fschema.key
    label = fschema.label
    vtype = fschema.value_type
    if vtype == "number":
        if to_number(value) is None:
            result.add("TYPE_MISMATCH", f"{label} must be a number", key)
    elif vtype == "date":
        if to_date(value) is None:
            result.add("INVALID_DATE", f"{label} must be a valid date (YYYY-MM-DD)", key)
    elif vtype == "boolean":
        if to_bool(value) is None:
            result.add("TYPE_MISMATCH", f"{label} must be true or false", key)
    elif vtype == "email":
        if not isinstance(value, str) or not is_email(value):
            result.add("INVALID_EMAIL", f"{label} must be a valid email", key)
    elif vtype == "phone":
        if not isinstance(value, str) or not is_phone(value):
            result.add("INVALID_PHONE", f"{label} must be a valid phone number", key)
    elif vtype == "url":
        if not isinstance(value, str) or not is_url(value):
            result.add("INVALID_URL", f"{label} must be a valid URL", key)
    elif vtype == "enum":
        if fschema.options:
            allowed = [opt["value"] for opt in fschema.options]
            if str(value) not in {str(v) for v in allowed}:
                result.add("INVALID_ENUM", f"{label} must be one of {allowed}", key)
        elif fschema.reference is not None:
            if _reference_exists(fschema, value, related_stores) is False:
                result.add("INVALID_REFERENCE", f"{label} refers to a missing {fschema.reference.entity} record", key)
    elif vtype in ("string", "text"):
        if isinstance(value, (dict, list)):
            result.add("TYPE_MISMATCH", f"{label} must be text", key)


def _check_hints(fschema: FieldSchema, value: Any, result: ValidationResult) -> None:
    spec = fschema.edit
    text = to_text(value)
    if spec.maxlength is not None and len(text) > spec.maxlength:
        result.add("TOO_LONG", f"{fschema.label} must be at most {spec.maxlength} characters", fschema.key)
        return
    if spec.pattern and not compile_pattern(spec.pattern).fullmatch(text):
        result.add("PATTERN_MISMATCH", f"{fschema.label} has an invalid format", fschema.key)


def validate_record(
    record: Mapping[str, Any],
    schema: SchemaModel,
    related_stores: Mapping[str, Any] | None = None,
    extra: ExtraValidator | None = None,
    check_unknown: bool = True,
) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(record, Mapping):
        result.add("INVALID_PAYLOAD", "Record data must be an object", None)
        return result

    for fschema in schema.fields:
        if fschema.computed:
            continue
        value = record.get(fschema.key)
        if is_empty(value):
            if fschema.required:
                result.add("REQUIRED_FIELD", f"{fschema.label} is required", fschema.key)
            continue
        before = len(result.issues)
        _check_type(fschema, value, result, related_stores)
        if len(result.issues) == before:
            _check_hints(fschema, value, result)

    if check_unknown:
        for key in record.keys():
            if key in SYSTEM_KEYS or schema.has_field(key):
                continue
            result.add("UNKNOWN_FIELD", f"Unknown field: {key}", key)

    if extra is not None:
        extra_errors = extra(record) or {}
        for key, message in extra_errors.items():
            result.add("CUSTOM_RULE", str(message), key)
    return result
