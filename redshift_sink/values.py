"""Field value classification and rendering.

Record payloads are loosely typed (whatever JSON or msgpack decoding
produced). Every value is classified into a ``ValueKind`` first and then
rendered to the text that goes into a Redshift varchar column.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Callable, Dict, Optional

__all__ = ["ValueKind", "classify_value", "render_value", "to_json_text"]


class ValueKind(Enum):
    NULL = "null"
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    MAPPING = "mapping"
    SEQUENCE = "sequence"


def classify_value(value: Any) -> ValueKind:
    """Return the kind of a decoded field value.

    bool is checked before int because ``True`` is an ``int``.
    """
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, (str, bytes)):
        return ValueKind.TEXT
    if isinstance(value, dict):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.SEQUENCE
    # Anything else (msgpack ext types, datetimes) is treated as text.
    return ValueKind.TEXT


def to_json_text(value: Any) -> str:
    """Serialize a nested value as compact JSON."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _render_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _render_boolean(value: Any) -> str:
    return "true" if value else "false"


_RENDERERS: Dict[ValueKind, Callable[[Any], Optional[str]]] = {
    ValueKind.NULL: lambda value: None,
    ValueKind.TEXT: _render_text,
    ValueKind.NUMBER: str,
    ValueKind.BOOLEAN: _render_boolean,
    ValueKind.MAPPING: to_json_text,
    ValueKind.SEQUENCE: to_json_text,
}


def render_value(value: Any) -> Optional[str]:
    """Render a field value as column text.

    Returns None for null and for values whose text is empty, so callers
    can tell "no value" apart from a real one.

    >>> render_value({"foo": "var"})
    '{"foo":"var"}'
    >>> render_value("") is None
    True
    """
    text = _RENDERERS[classify_value(value)](value)
    if not text:
        return None
    return text
