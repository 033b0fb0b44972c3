from __future__ import annotations

from typing import Any

from jinja2 import StrictUndefined
from jinja2.sandbox import ImmutableSandboxedEnvironment

from gridkit.values import to_text
from grid_context import GridContext

_ALLOWED_FILTERS = {
    "default",
    "e",
    "escape",
    "length",
    "lower",
    "trim",
    "upper",
}

_ALLOWED_TESTS = {
    "defined",
    "none",
    "equalto",
}

GRID_TEMPLATE = """\
<table class="grid" data-grid="{{ grid }}">
<thead>
<tr>
<th class="grid-select"><input type="checkbox" data-master="{{ master }}"{% if master == "all" %} checked{% endif %}></th>
{% for col in columns %}<th data-key="{{ col["key"] }}"{% if col["style"] %} style="{{ col["style"] }}"{% endif %}>{{ col["label"] }}</th>
{% endfor %}</tr>
</thead>
<tbody>
{% for row in rows %}<tr data-id="{{ row["id"] }}" class="grid-row {{ row["mode"] }}{% if row["deleted"] %} deleted{% endif %}">
<td class="grid-select"><input type="checkbox"{% if row["selected"] %} checked{% endif %}></td>
{% for cell in row["cells"] %}<td data-key="{{ cell["key"] }}">
{%- if cell["widget"] == "text-input" or cell["widget"] == "date-input" -%}
<input type="{{ cell["input_type"] }}" name="{{ cell["key"] }}" value="{{ cell["text"] }}"{% if cell["placeholder"] %} placeholder="{{ cell["placeholder"] }}"{% endif %}{% if cell["maxlength"] %} maxlength="{{ cell["maxlength"] }}"{% endif %}{% if cell["pattern"] %} pattern="{{ cell["pattern"] }}"{% endif %}>
{%- elif cell["widget"] == "textarea" -%}
<textarea name="{{ cell["key"] }}"{% if cell["rows"] %} rows="{{ cell["rows"] }}"{% endif %}{% if cell["maxlength"] %} maxlength="{{ cell["maxlength"] }}"{% endif %}>{{ cell["text"] }}</textarea>
{%- elif cell["widget"] == "select" -%}
<select name="{{ cell["key"] }}"><option value=""></option>{% for opt in cell["options"] %}<option value="{{ opt["value"] }}"{% if opt["selected"] %} selected{% endif %}>{{ opt["label"] }}</option>{% endfor %}</select>
{%- elif cell["widget"] == "checkbox" -%}
<input type="checkbox" name="{{ cell["key"] }}"{% if cell["checked"] %} checked{% endif %}>
{%- else -%}
{{ cell["text"] }}
{%- endif -%}
</td>
{% endfor %}</tr>
{% else %}<tr class="grid-empty"><td colspan="{{ (columns | length) + 1 }}">No records</td></tr>
{% endfor %}</tbody>
</table>
<nav class="grid-pager" data-page="{{ page["page_number"] }}">Page {{ page["page_number"] }} of {{ page["total_pages"] }} ({{ page["total_records"] }} records)</nav>
"""


class _LockedSandbox(ImmutableSandboxedEnvironment):
    def is_safe_attribute(self, obj, attr, value) -> bool:
        return False

    def is_safe_callable(self, obj) -> bool:
        return False


def _env() -> _LockedSandbox:
    env = _LockedSandbox(autoescape=True, undefined=StrictUndefined)
    env.globals = {}
    env.filters = {key: val for key, val in env.filters.items() if key in _ALLOWED_FILTERS}
    env.tests = {key: val for key, val in env.tests.items() if key in _ALLOWED_TESTS}
    return env


def _style(css: dict) -> str:
    return "; ".join(f"{key}: {val}" for key, val in css.items())


def format_cell(value: Any, value_type: str) -> str:
    if value is None:
        return ""
    if value_type == "boolean" and isinstance(value, bool):
        return "Yes" if value else "No"
    return to_text(value)


def _cell(ctx: GridContext, key: str, value: Any, mode: str, options: dict[str, list[dict]]) -> dict:
    fschema = ctx.schema.field(key)
    spec = fschema.mode(mode)
    cell = {
        "key": key,
        "widget": spec.widget if mode == "edit" else "label",
        "text": format_cell(value, fschema.value_type),
        "input_type": spec.input_type or ("date" if spec.widget == "date-input" else "text"),
        "placeholder": spec.placeholder,
        "maxlength": spec.maxlength,
        "rows": spec.rows,
        "pattern": spec.pattern,
        "checked": bool(value) if isinstance(value, bool) else False,
        "options": [],
    }
    if cell["widget"] == "select":
        cell["options"] = [
            {"value": opt["value"], "label": opt["label"], "selected": value is not None and str(opt["value"]) == str(value)}
            for opt in options.get(key, [])
        ]
    return cell


def build_render_context(ctx: GridContext) -> dict:
    state = ctx.render_state()
    title_columns = ctx.schema.columns("title")
    options = {
        key: ctx.schema.options_for(key, ctx.store.related_stores)
        for key in ctx.schema.get_field_keys("edit")
        if ctx.schema.get_mode_spec(key, "edit").widget == "select"
    }
    rows = []
    for row in state["rows"]:
        cells = [_cell(ctx, col["key"], row["values"].get(col["key"]), row["mode"], options) for col in title_columns]
        rows.append(
            {
                "id": row["id"],
                "mode": row["mode"],
                "selected": row["selected"],
                "deleted": row["deleted"],
                "cells": cells,
            }
        )
    return {
        "grid": state["grid"],
        "columns": [
            {"key": col["key"], "label": col["label"], "style": _style(col["spec"]["css"])}
            for col in title_columns
        ],
        "rows": rows,
        "page": state["page"],
        "master": state["selection"]["master"],
    }


def render_grid(ctx: GridContext, template_text: str | None = None) -> str:
    """Render the current page of a grid as an HTML table."""
    env = _env()
    tmpl = env.from_string(template_text or GRID_TEMPLATE)
    return tmpl.render(build_render_context(ctx))
