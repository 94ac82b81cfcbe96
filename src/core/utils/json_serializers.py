"""Shared JSON serialization utilities for type-safe JSON encoding."""

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
        return True, bytes(obj).decode("utf-8", errors="replace")
    if isinstance(obj, (set, frozenset)):
        return True, sorted(obj, key=str)
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer used as ``json.dumps(default=...)``.

    - datetime/date → ISO 8601 string
    - Decimal → float
    - Path → string
    - bytes → UTF-8 text (invalid sequences replaced)
    - sets → sorted list
    - Enums → value
    - Everything else → string (fallback)

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
        return obj.__dict__
    return str(obj)


def format_bytes(num_bytes: int) -> str:
    """Human-readable byte count, e.g. ``1.5 MB``."""
    value = float(num_bytes)
    for unit in ("B", "kB", "MB", "GB"):
        if abs(value) < 1000 or unit == "GB":
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} TB"


__all__ = ["json_serializer", "format_bytes"]
