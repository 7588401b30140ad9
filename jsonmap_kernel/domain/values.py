"""
JSON value helpers -- pure functions over JSON-compatible Python values.

Responsibility:
    Shared conventions for turning schema-less JSON values into text and
    numbers, and for comparing values by their serialized form.  Every engine
    component uses these so that "stringified" and "numeric" mean the same
    thing in templates, value matching, aggregation and diffing.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Conventions:
    - Text follows JSON rendering: ``true``/``false``, integral floats
      without a fractional part, objects/arrays as compact JSON.  ``None``
      renders as the empty string.
    - Booleans are never numbers.
    - Serialized equality ignores object key order and treats ``1`` and
      ``1.0`` as equal.
"""

from __future__ import annotations

import json
import math
from decimal import Decimal, InvalidOperation
from typing import Any


class _Missing:
    """Sentinel for an absent value (distinct from a present ``None``)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def to_text(value: Any) -> str:
    """Render a JSON value as text."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def to_number(value: Any) -> int | float | None:
    """
    Coerce a JSON value to a number, or ``None`` when it is not numeric.

    Numeric strings are accepted (surrounding whitespace ignored).  NaN and
    infinities are not numbers here.
    """
    if value is None or value is MISSING or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else None
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            pass
        try:
            parsed = Decimal(s)
        except InvalidOperation:
            return None
        return float(parsed) if parsed.is_finite() else None
    return None


def _normalize(value: Any) -> Any:
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Deterministic serialization used for equality and fingerprints."""
    return json.dumps(
        _normalize(value), sort_keys=True, separators=(",", ":"), default=str
    )


def json_equal(left: Any, right: Any) -> bool:
    """Serialized equality of two JSON values."""
    return canonical_json(left) == canonical_json(right)
