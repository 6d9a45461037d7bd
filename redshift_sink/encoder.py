"""Record to delimited-line encoding.

Turns one record into one line whose fields follow the destination
table's column order, escaped the way ``COPY ... ESCAPE`` expects:

    columns = ("key_a", "key_b", "key_c", "key_d")
    encoder.encode(columns, '{"key_a": "val_a", "key_b": "val_b"}')
    # -> 'val_a\\tval_b\\t\\t\\n'
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from redshift_sink.errors import RecordDecodeError
from redshift_sink.observability import SinkLogger, get_sink_logger
from redshift_sink.values import render_value

__all__ = [
    "LineEncoder",
    "decode_json_record",
    "escape_value",
    "format_passthrough",
    "record_field_names",
    "unescape_value",
]

Record = Union[str, bytes, Mapping[str, Any], None]


_ALWAYS_ESCAPED = ("\\", "\t", "\n")


def escape_value(value: str, delimiter: str = "\t") -> str:
    """Escape backslash, tab, newline and ``delimiter`` for ``COPY ... ESCAPE``.

    Backslashes are doubled first so the escapes inserted afterwards are
    not escaped again.
    """
    escaped = value.replace("\\", "\\\\").replace("\t", "\\\t").replace("\n", "\\\n")
    if delimiter and delimiter not in _ALWAYS_ESCAPED:
        escaped = escaped.replace(delimiter, "\\" + delimiter)
    return escaped


def unescape_value(value: str) -> str:
    """Inverse of :func:`escape_value`."""
    out: List[str] = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            out.append(next(chars, "\\"))
        else:
            out.append(ch)
    return "".join(out)


def decode_json_record(payload: Union[str, bytes]) -> Dict[str, Any]:
    """Parse the JSON text of a structured record.

    Raises:
        RecordDecodeError: If the text is not JSON or not a JSON object
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    try:
        decoded = json.loads(payload)
    except ValueError as e:
        raise RecordDecodeError("failed to parse json.", payload=payload, cause=e)
    if not isinstance(decoded, dict):
        raise RecordDecodeError(
            "json record is not an object.", payload=payload
        )
    return decoded


def record_field_names(record: Record) -> List[str]:
    """Field names of a record, in record order.

    Returns an empty list for records that cannot be decoded.
    """
    if record is None:
        return []
    if isinstance(record, Mapping):
        return [str(key) for key in record.keys()]
    if not record:
        return []
    try:
        return [str(key) for key in decode_json_record(record).keys()]
    except RecordDecodeError:
        return []


def format_passthrough(record: Mapping[str, Any], field: str) -> str:
    """Return the pre-formatted line held in ``field`` plus a newline."""
    value = record.get(field)
    if value is None:
        value = ""
    elif isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return f"{value}\n"


class LineEncoder:
    """Encodes structured records into delimited lines."""

    def __init__(self, delimiter: str = "\t", logger: Optional[SinkLogger] = None):
        self.delimiter = delimiter
        self.logger = logger or get_sink_logger(__name__)

    def generate_line(self, values: Sequence[Optional[str]]) -> str:
        escaped = [escape_value(v, self.delimiter) if v else "" for v in values]
        return self.delimiter.join(escaped) + "\n"

    def column_values(
        self, columns: Sequence[str], record: Mapping[str, Any]
    ) -> List[Optional[str]]:
        return [render_value(record.get(column)) for column in columns]

    def encode(self, columns: Sequence[str], record: Record) -> Optional[str]:
        """Encode one record, or return None when the line is suppressed.

        ``record`` is either JSON text or an already decoded mapping.

        Raises:
            RecordDecodeError: If JSON text cannot be parsed
        """
        if record is None:
            return None
        if isinstance(record, Mapping):
            mapping = record
        elif isinstance(record, (str, bytes)):
            if not record:
                return None
            mapping = decode_json_record(record)
        else:
            raise RecordDecodeError(
                f"unsupported record type {type(record).__name__}.",
                payload=repr(record),
            )

        values = self.column_values(columns, mapping)
        if all(not v for v in values):
            self.logger.warning(
                "no data match for table columns on redshift. record=%s table_columns=%s",
                _short(record),
                list(columns),
            )
            return None

        return self.generate_line(values)


def _short(record: Record, limit: int = 500) -> str:
    if isinstance(record, bytes):
        text = record.decode("utf-8", errors="replace")
    elif isinstance(record, str):
        text = record
    else:
        try:
            text = json.dumps(record, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = repr(record)
    return text if len(text) <= limit else text[:limit] + "..."
