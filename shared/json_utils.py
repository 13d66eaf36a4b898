"""
Helpers for moving values between Firestore documents and JSON columns.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_json_compatible(value: Any) -> Any:
    """
    Turn a Firestore value into plain JSON types.

    Timestamps become ISO-8601 strings in UTC; tuples and sets become lists.
    Anything else that JSON cannot hold is stringified.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    return str(value)
