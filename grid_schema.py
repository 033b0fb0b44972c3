"""Field schema normalization and lookup for the grid engine.

Raw schemas arrive in a few shapes: a mapping of field key to definition,
a list of definitions carrying ``key``/``id``, the widget-hint shape
(``htmlElement``/``htmlType``/``css``/``displayName``) and the explicit
``modes`` shape. ``normalize_schema`` turns all of them into one immutable
representation at load time; nothing downstream branches on shape.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Tuple

from grid_errors import SchemaError

logger = logging.getLogger("datagrid.schema")

MODES = ("title", "display", "edit")
WIDGETS = ("label", "text-input", "date-input", "select", "textarea", "checkbox")
VALUE_TYPES = ("string", "text", "number", "date", "email", "phone", "url", "boolean", "enum")
# Numbers, dates and booleans are only searched when a field sets ``searchable``.
SEARCHABLE_TYPES = frozenset({"string", "text", "email", "phone", "url", "enum"})

RECORD_ID = "id"
DELETED_FLAG = "isDeleted"
DELETED_AT = "deletedAt"
SYSTEM_KEYS = frozenset({RECORD_ID, DELETED_FLAG, DELETED_AT})

_TYPE_ALIASES = {
    "str": "string",
    "textarea": "text",
    "int": "number",
    "integer": "number",
    "float": "number",
    "decimal": "number",
    "currency": "number",
    "datetime": "date",
    "bool": "boolean",
    "tel": "phone",
    "enum-reference": "enum",
    "select": "enum",
    "lookup": "enum",
}

_HTML_ELEMENT_WIDGETS = {
    "select": "select",
    "textarea": "textarea",
    "label": "label",
    "span": "label",
}

_HTML_TYPE_WIDGETS = {
    "date": "date-input",
    "datetime-local": "date-input",
    "checkbox": "checkbox",
}

_TYPE_DEFAULT_WIDGETS = {
    "date": "date-input",
    "text": "textarea",
    "boolean": "checkbox",
    "enum": "select",
}


class _Unresolved:
    _instance: "_Unresolved | None" = None

    def __new__(cls) -> "_Unresolved":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = _Unresolved()


@dataclass(frozen=True)
class ModeSpec:
    widget: str
    visible: bool = True
    input_type: str | None = None
    placeholder: str | None = None
    maxlength: int | None = None
    rows: int | None = None
    pattern: str | None = None
    css: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def interactive(self) -> bool:
        return self.widget != "label"

    def to_dict(self) -> dict:
        return {
            "widget": self.widget,
            "visible": self.visible,
            "input_type": self.input_type,
            "placeholder": self.placeholder,
            "maxlength": self.maxlength,
            "rows": self.rows,
            "pattern": self.pattern,
            "css": dict(self.css),
        }


@dataclass(frozen=True)
class ComputedRef:
    entity: str
    fields: Tuple[str, ...]
    local_key: str
    separator: str = ", "


@dataclass(frozen=True)
class EnumReference:
    entity: str
    value_key: str = RECORD_ID
    label_key: str | None = None


@dataclass(frozen=True)
class FieldSchema:
    key: str
    value_type: str
    label: str
    title: ModeSpec
    display: ModeSpec
    edit: ModeSpec
    required: bool = False
    searchable: bool = True
    computed: bool = False
    computed_from: ComputedRef | None = None
    options: Tuple[Dict[str, Any], ...] = ()
    reference: EnumReference | None = None
    default: Any = None
    has_default: bool = False

    def mode(self, mode: str) -> ModeSpec:
        if mode not in MODES:
            raise SchemaError(f"Unknown mode: {mode}", mode, code="SCHEMA_UNKNOWN_MODE")
        return getattr(self, mode)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


def _issue(code: str, message: str, path: str | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": None}


def _title_case(value: str) -> str:
    parts = [p for p in value.replace("-", "_").split("_") if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts) if parts else value


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _normalize_type(key: str, fdef: dict, issues: list[dict]) -> str:
    raw = fdef.get("type") or fdef.get("valueType") or fdef.get("value_type") or "string"
    if not isinstance(raw, str):
        issues.append(_issue("TYPE_UNKNOWN", f"{key}: type must be a string", key))
        return "string"
    vtype = _TYPE_ALIASES.get(raw.strip().lower(), raw.strip().lower())
    if vtype not in VALUE_TYPES:
        issues.append(_issue("TYPE_UNKNOWN", f"{key}: unknown type {raw!r}, treated as string", key))
        return "string"
    return vtype


def _normalize_options(raw: Any) -> Tuple[Dict[str, Any], ...]:
    if not isinstance(raw, list):
        return ()
    options = []
    for opt in raw:
        if isinstance(opt, dict) and "value" in opt:
            options.append({"value": opt["value"], "label": str(opt.get("label", opt["value"]))})
        elif isinstance(opt, (str, int, float)) and not isinstance(opt, bool):
            options.append({"value": opt, "label": str(opt)})
    return tuple(options)


def _split_ref(value: str) -> tuple[str, str]:
    entity, _, key = value.partition(".")
    return entity.strip(), key.strip()


def _normalize_reference(key: str, fdef: dict, issues: list[dict]) -> EnumReference | None:
    ref = fdef.get("reference")
    if isinstance(ref, dict):
        entity = ref.get("entity")
        if not isinstance(entity, str) or not entity:
            issues.append(_issue("REFERENCE_INVALID", f"{key}: reference.entity is required", key))
            return None
        return EnumReference(
            entity=entity,
            value_key=ref.get("valueKey") or ref.get("value_key") or RECORD_ID,
            label_key=ref.get("labelKey") or ref.get("label_key"),
        )
    foreign = fdef.get("foreignKey")
    if not isinstance(foreign, str) or not foreign:
        return None
    entity, value_key = _split_ref(foreign)
    if not entity:
        issues.append(_issue("REFERENCE_INVALID", f"{key}: foreignKey must be entity.key", key))
        return None
    label_key = None
    display = fdef.get("foreignKeyDisplay")
    if isinstance(display, str) and display:
        display_entity, label_key = _split_ref(display)
        if display_entity and display_entity != entity:
            issues.append(_issue("REFERENCE_INVALID", f"{key}: foreignKeyDisplay must name {entity}", key))
            label_key = None
    return EnumReference(entity=entity, value_key=value_key or RECORD_ID, label_key=label_key or None)


def _normalize_computed(key: str, fdef: dict, issues: list[dict]) -> ComputedRef | None:
    source = fdef.get("computedFrom") or fdef.get("computed_from")
    local_key = fdef.get("computedKey") or fdef.get("computed_key")
    if isinstance(source, dict):
        entity = source.get("entity")
        fields = source.get("fields") or source.get("field")
        local_key = local_key or source.get("key")
        if isinstance(fields, str):
            fields = [f.strip() for f in fields.split(",") if f.strip()]
        if not isinstance(entity, str) or not entity or not fields:
            issues.append(_issue("COMPUTED_SOURCE_INVALID", f"{key}: computedFrom needs entity and fields", key))
            return None
        return ComputedRef(entity=entity, fields=tuple(fields), local_key=local_key or key)
    if isinstance(source, str) and source.strip():
        entity = None
        fields: list[str] = []
        for part in source.split(","):
            part = part.strip()
            if not part:
                continue
            if "." in part:
                part_entity, part_field = _split_ref(part)
                if entity is None:
                    entity = part_entity
                elif part_entity != entity:
                    issues.append(_issue("COMPUTED_SOURCE_INVALID", f"{key}: computedFrom mixes entities", key))
                    return None
                fields.append(part_field)
            else:
                fields.append(part)
        if not entity or not fields:
            issues.append(_issue("COMPUTED_SOURCE_INVALID", f"{key}: computedFrom must be entity.field[,field]", key))
            return None
        return ComputedRef(entity=entity, fields=tuple(fields), local_key=local_key or key)
    issues.append(_issue("COMPUTED_SOURCE_MISSING", f"{key}: computed field has no computedFrom", key))
    return None


def _hint_values(source: Any, key: str, issues: list[dict]) -> dict:
    if not isinstance(source, dict):
        return {}
    hints: dict = {}
    for name in ("placeholder", "input_type", "inputType"):
        if isinstance(source.get(name), str):
            hints["input_type" if name == "inputType" else name] = source[name]
    for name in ("maxlength", "rows"):
        parsed = _as_int(source.get(name))
        if parsed is not None:
            hints[name] = parsed
    pattern = source.get("pattern")
    if isinstance(pattern, str) and pattern:
        try:
            compile_pattern(pattern)
            hints["pattern"] = pattern
        except re.error as exc:
            issues.append(_issue("PATTERN_INVALID", f"{key}: invalid pattern dropped ({exc})", key))
    return hints


def _legacy_edit_widget(fdef: dict) -> str | None:
    element = fdef.get("htmlElement")
    if not isinstance(element, str) or not element:
        return None
    element = element.strip().lower()
    if element == "input":
        html_type = fdef.get("htmlType")
        if isinstance(html_type, str):
            return _HTML_TYPE_WIDGETS.get(html_type.strip().lower(), "text-input")
        return "text-input"
    return _HTML_ELEMENT_WIDGETS.get(element)


def _normalize_modes(key: str, fdef: dict, value_type: str, computed: bool, issues: list[dict]) -> dict[str, ModeSpec]:
    html_type = fdef.get("htmlType")
    visible = fdef.get("visible", True) is not False and html_type != "hidden"
    base_hints = _hint_values(fdef, key, issues)
    base_hints.update(_hint_values(fdef.get("css"), key, issues))
    if isinstance(html_type, str) and html_type and html_type != "hidden":
        base_hints.setdefault("input_type", html_type)
    css = {k: v for k, v in (fdef.get("css") or {}).items()} if isinstance(fdef.get("css"), dict) else {}

    raw_modes = fdef.get("modes") if isinstance(fdef.get("modes"), dict) else {}
    legacy_widget = _legacy_edit_widget(fdef)
    explicit_edit = legacy_widget is not None
    defaults = {
        "title": "label",
        "display": "label",
        "edit": legacy_widget or _TYPE_DEFAULT_WIDGETS.get(value_type, "text-input"),
    }

    specs: dict[str, ModeSpec] = {}
    for mode in MODES:
        override = raw_modes.get(mode)
        widget = defaults[mode]
        mode_visible = visible
        hints = dict(base_hints) if mode == "edit" else {}
        mode_css = dict(css) if mode == "edit" else {}
        if isinstance(override, dict):
            raw_widget = override.get("widget")
            if isinstance(raw_widget, str):
                if raw_widget in WIDGETS:
                    widget = raw_widget
                    if mode == "edit":
                        explicit_edit = True
                else:
                    issues.append(_issue("WIDGET_UNKNOWN", f"{key}: unknown {mode} widget {raw_widget!r}", key))
            if "visible" in override:
                mode_visible = override.get("visible") is not False
            hints.update(_hint_values(override, key, issues))
            if isinstance(override.get("css"), dict):
                mode_css.update(override["css"])
        if mode == "edit" and computed and widget != "label":
            if explicit_edit:
                issues.append(_issue("COMPUTED_EDIT_FORCED", f"{key}: computed field edit widget forced to label", key))
            widget = "label"
        specs[mode] = ModeSpec(widget=widget, visible=mode_visible, css=mode_css, **hints)
    return specs


def _normalize_field(key: str, fdef: dict, issues: list[dict]) -> FieldSchema:
    value_type = _normalize_type(key, fdef, issues)
    reference = _normalize_reference(key, fdef, issues)
    if reference is not None:
        value_type = "enum"
    computed = bool(fdef.get("computed"))
    computed_from = _normalize_computed(key, fdef, issues) if computed else None
    modes = _normalize_modes(key, fdef, value_type, computed, issues)
    label = fdef.get("displayName") or fdef.get("label") or _title_case(key)
    searchable = fdef.get("searchable")
    if not isinstance(searchable, bool):
        searchable = computed or value_type in SEARCHABLE_TYPES
    return FieldSchema(
        key=key,
        value_type=value_type,
        label=str(label),
        title=modes["title"],
        display=modes["display"],
        edit=modes["edit"],
        required=bool(fdef.get("required")) and not computed,
        searchable=searchable,
        computed=computed,
        computed_from=computed_from,
        options=_normalize_options(fdef.get("options") or fdef.get("values")),
        reference=reference,
        default=fdef.get("default"),
        has_default="default" in fdef,
    )


def normalize_schema(raw: Any) -> tuple[list[FieldSchema], list[dict]]:
    """Normalize any accepted schema shape; returns (fields, warning issues)."""
    issues: list[dict] = []
    if raw is None:
        issues.append(_issue("SCHEMA_MISSING", "No schema supplied, using an empty schema"))
        return [], issues
    if isinstance(raw, dict):
        items = list(raw.items())
    elif isinstance(raw, list):
        items = []
        for idx, fdef in enumerate(raw):
            fkey = fdef.get("key") or fdef.get("id") if isinstance(fdef, dict) else None
            if not isinstance(fkey, str) or not fkey:
                issues.append(_issue("FIELD_INVALID", f"Field at index {idx} has no key", f"[{idx}]"))
                continue
            items.append((fkey, fdef))
    else:
        raise SchemaError("Schema must be a mapping or a list", None, code="SCHEMA_INVALID")

    fields: list[FieldSchema] = []
    seen: set[str] = set()
    for fkey, fdef in items:
        if not isinstance(fdef, dict):
            issues.append(_issue("FIELD_INVALID", f"{fkey}: field definition must be an object", fkey))
            continue
        if fkey in SYSTEM_KEYS:
            issues.append(_issue("FIELD_RESERVED", f"{fkey}: reserved key ignored", fkey))
            continue
        if fkey in seen:
            raise SchemaError(f"Duplicate field key: {fkey}", fkey, code="SCHEMA_DUPLICATE_FIELD")
        seen.add(fkey)
        fields.append(_normalize_field(fkey, fdef, issues))
    for issue in issues:
        logger.warning("schema_issue code=%s path=%s message=%s", issue["code"], issue["path"], issue["message"])
    return fields, issues


class SchemaModel:
    def __init__(self, fields: List[FieldSchema], issues: List[dict] | None = None) -> None:
        self._fields: Dict[str, FieldSchema] = {}
        for fschema in fields:
            if fschema.key in self._fields:
                raise SchemaError(f"Duplicate field key: {fschema.key}", fschema.key, code="SCHEMA_DUPLICATE_FIELD")
            self._fields[fschema.key] = fschema
        self.issues = list(issues or [])

    @classmethod
    def from_raw(cls, raw: Any) -> "SchemaModel":
        fields, issues = normalize_schema(raw)
        return cls(fields, issues)

    @property
    def fields(self) -> Tuple[FieldSchema, ...]:
        return tuple(self._fields.values())

    def keys(self) -> list[str]:
        return list(self._fields.keys())

    def has_field(self, key: str) -> bool:
        return key in self._fields

    def field(self, key: str) -> FieldSchema:
        fschema = self._fields.get(key)
        if fschema is None:
            raise SchemaError(f"Unknown field: {key}", key)
        return fschema

    def get_field_keys(self, mode: str) -> list[str]:
        if mode not in MODES:
            raise SchemaError(f"Unknown mode: {mode}", mode, code="SCHEMA_UNKNOWN_MODE")
        return [key for key, fschema in self._fields.items() if fschema.mode(mode).visible]

    def get_mode_spec(self, key: str, mode: str) -> ModeSpec:
        return self.field(key).mode(mode)

    def is_computed(self, key: str) -> bool:
        return self.field(key).computed

    def searchable_keys(self) -> list[str]:
        return [key for key, fschema in self._fields.items() if fschema.searchable]

    def resolve_computed(self, key: str, record: Mapping[str, Any], related_stores: Mapping[str, Any] | None) -> Any:
        fschema = self.field(key)
        if not fschema.computed:
            return record.get(key)
        ref = fschema.computed_from
        if ref is None:
            return record.get(key, UNRESOLVED)
        store = (related_stores or {}).get(ref.entity)
        foreign_id = record.get(ref.local_key)
        if store is None or foreign_id is None or foreign_id == "":
            return UNRESOLVED
        related = store.get(foreign_id)
        if related is None:
            return UNRESOLVED
        if len(ref.fields) == 1:
            return related.get(ref.fields[0])
        parts = [related.get(name) for name in ref.fields]
        return ref.separator.join(str(p) for p in parts if p not in (None, ""))

    def options_for(self, key: str, related_stores: Mapping[str, Any] | None = None) -> list[dict]:
        fschema = self.field(key)
        if fschema.options:
            return [dict(opt) for opt in fschema.options]
        ref = fschema.reference
        if ref is None:
            return []
        store = (related_stores or {}).get(ref.entity)
        if store is None:
            return []
        options = []
        for rec in store.list(lambda r: not r.get(DELETED_FLAG)):
            value = rec.get(ref.value_key)
            label = rec.get(ref.label_key) if ref.label_key else value
            options.append({"value": value, "label": "" if label is None else str(label)})
        return options

    def display_value(self, key: str, record: Mapping[str, Any], related_stores: Mapping[str, Any] | None = None) -> Any:
        fschema = self.field(key)
        if fschema.computed:
            value = self.resolve_computed(key, record, related_stores)
            return None if value is UNRESOLVED else value
        value = record.get(key)
        if fschema.value_type == "enum" and value is not None:
            for opt in self.options_for(key, related_stores):
                if str(opt["value"]) == str(value):
                    return opt["label"]
        return value

    def apply_defaults(self, data: Mapping[str, Any]) -> dict:
        updated = dict(data)
        for key, fschema in self._fields.items():
            if not fschema.has_default or fschema.computed:
                continue
            if key in updated and updated.get(key) not in (None, ""):
                continue
            updated[key] = fschema.default
        return updated

    def columns(self, mode: str) -> list[dict]:
        return [
            {
                "key": key,
                "label": self._fields[key].label,
                "value_type": self._fields[key].value_type,
                "required": self._fields[key].required,
                "computed": self._fields[key].computed,
                "spec": self._fields[key].mode(mode).to_dict(),
            }
            for key in self.get_field_keys(mode)
        ]
