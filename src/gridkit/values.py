"""Value coercion and comparison helpers shared by the grid engine."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Tuple

_TRUE_WORDS = {"true", "yes", "y", "1", "on"}
_FALSE_WORDS = {"false", "no", "n", "0", "off"}


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_empty(value: Any) -> bool:
    """True for None, blank strings and empty containers."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def to_number(value: Any) -> int | float | None:
    """Parse a numeric value; returns None when it does not parse or is not finite."""
    if is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = float(text)
    except ValueError:
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if is_number(value) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _sign(diff: Any) -> int:
    return (diff > 0) - (diff < 0)


def compare(left: Any, right: Any, value_type: str | None = None) -> int | None:
    """Three-way compare that never raises.

    Numbers compare numerically and dates chronologically when both sides
    parse; everything else falls back to lexical comparison of the text form.
    Returns None when either side is missing.
    """
    if left is None or right is None:
        return None
    if value_type == "number" or (is_number(left) and is_number(right)):
        lnum, rnum = to_number(left), to_number(right)
        if lnum is not None and rnum is not None:
            return _sign(lnum - rnum)
    if value_type == "date":
        ldate, rdate = to_date(left), to_date(right)
        if ldate is not None and rdate is not None:
            return _sign(ldate.toordinal() - rdate.toordinal())
    if value_type == "boolean":
        lbool, rbool = to_bool(left), to_bool(right)
        if lbool is not None and rbool is not None:
            return _sign(int(lbool) - int(rbool))
    ltext, rtext = to_text(left), to_text(right)
    if ltext == rtext:
        return 0
    return -1 if ltext < rtext else 1


def sort_key(value: Any, value_type: str | None = None) -> Tuple:
    """Key that orders numbers, then dates, then text; missing values last."""
    if is_empty(value):
        return (3,)
    if value_type == "number" or is_number(value):
        num = to_number(value)
        if num is not None:
            return (0, num)
    if value_type == "date":
        parsed = to_date(value)
        if parsed is not None:
            return (1, parsed.toordinal())
    if value_type == "boolean":
        flag = to_bool(value)
        if flag is not None:
            return (0, int(flag))
    return (2, to_text(value).casefold())
