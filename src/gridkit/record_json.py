"""Deterministic JSON serialization for flat record sequences."""

from __future__ import annotations

import json
import math
from datetime import date, datetime
from typing import Any


class RecordJsonTypeError(TypeError):
    """Raised when a record value cannot be serialized."""


def _prepare(obj: Any, path: str = "$") -> Any:
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise RecordJsonTypeError(
                    f"Unsupported key type at {path}: {type(key).__name__}"
                )
            out[key] = _prepare(value, f"{path}.{key}")
        return out
    if isinstance(obj, (list, tuple)):
        return [_prepare(item, f"{path}[{idx}]") for idx, item in enumerate(obj)]
    if obj is None:
        return None
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return obj
    if isinstance(obj, (str, int, bool)):
        return obj
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    raise RecordJsonTypeError(
        f"Unsupported type at {path}: {type(obj).__name__}"
    )


def dumps_records(obj: Any, indent: int | None = None) -> str:
    """Serialize records to JSON.

    Rules:
    - Preserve key order (column order) and list order.
    - Dates become ISO-8601 strings.
    - UTF-8 with non-ASCII preserved.
    - NaN and infinities are rejected.
    """
    prepared = _prepare(obj)
    separators = (",", ":") if indent is None else (",", ": ")
    return json.dumps(
        prepared,
        ensure_ascii=False,
        separators=separators,
        indent=indent,
        allow_nan=False,
    )


def check_serializable(obj: Any) -> None:
    _prepare(obj)
