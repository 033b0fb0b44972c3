"""Grid kernel utilities."""

from .record_json import RecordJsonTypeError, check_serializable, dumps_records
from .values import compare, is_empty, is_number, sort_key, to_bool, to_date, to_number, to_text

__all__ = [
    "RecordJsonTypeError",
    "check_serializable",
    "compare",
    "dumps_records",
    "is_empty",
    "is_number",
    "sort_key",
    "to_bool",
    "to_date",
    "to_number",
    "to_text",
]
