"""Shared JSON serialization utilities for type-safe JSON encoding."""

import base64
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, (datetime, date)):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        return True, float(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, (bytes, bytearray)):
        return True, base64.b64encode(bytes(obj)).decode("ascii")
    if isinstance(obj, (set, frozenset)):
        return True, sorted(obj, key=str)
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer.

    Keeps numeric types numeric instead of converting everything to strings:
    - datetime/date -> ISO 8601 string
    - Decimal -> float
    - Path -> string
    - bytes -> base64 string
    - sets -> sorted list
    - Enums -> value
    - Everything else -> string (fallback)

    Used by the JSON log formatter and by the raw event mapper, which
    serializes arbitrary host payloads and invocation context.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation with proper types
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "value"):
        return obj.value
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    return str(obj)


__all__ = ["json_serializer"]
