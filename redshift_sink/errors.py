"""Exception hierarchy for the Redshift sink.

Every error carries a short message plus a ``details`` mapping and an
optional ``suggestion``; ``str()`` renders all three, ``to_dict()`` feeds
structured logs. Fatal errors are raised ``from`` the driver or SDK
exception that caused them.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "SinkError",
    "ConfigurationError",
    "WarehouseError",
    "StorageError",
    "RecordDecodeError",
]


def _cause_details(cause: Optional[BaseException]) -> Dict[str, Any]:
    if cause is None:
        return {}
    return {"cause": str(cause).strip(), "cause_type": type(cause).__name__}


def _present(**items: Any) -> Dict[str, Any]:
    return {key: value for key, value in items.items() if value is not None and value != ""}


class SinkError(Exception):
    """Base class for sink failures."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = dict(details or {})
        self.suggestion = suggestion
        super().__init__(self._render())

    def _render(self) -> str:
        lines = [self.message]
        if self.details:
            lines.append("\nDetails:")
            lines.extend(f"  {key}: {value}" for key, value in self.details.items())
        if self.suggestion:
            lines.append(f"\nSuggestion: {self.suggestion}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(SinkError):
    """Invalid or incomplete sink options."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.field = field
        self.value = value
        merged = _present(field=field, value=None if value is None else str(value))
        merged.update(details or {})
        super().__init__(message, details=merged, suggestion=suggestion)


class WarehouseError(SinkError):
    """Redshift could not be reached or rejected a statement.

    The chunk was not loaded; the caller is expected to retry it.
    """

    DEFAULT_SUGGESTION = (
        "Check that the cluster is reachable and the credentials "
        "have access to the destination schema."
    )

    def __init__(
        self,
        message: str,
        *,
        host: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.host = host
        self.operation = operation
        self.cause = cause
        merged = _present(host=host, operation=operation)
        merged.update(_cause_details(cause))
        merged.update(details or {})
        super().__init__(
            message, details=merged, suggestion=suggestion or self.DEFAULT_SUGGESTION
        )


class StorageError(SinkError):
    """The archive could not be written to S3."""

    def __init__(
        self,
        message: str,
        *,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.bucket = bucket
        self.key = key
        self.cause = cause
        merged = _present(bucket=bucket, key=key)
        merged.update(_cause_details(cause))
        merged.update(details or {})
        super().__init__(message, details=merged, suggestion=suggestion)


class RecordDecodeError(SinkError):
    """One record could not be decoded; it is skipped, the chunk goes on."""

    PAYLOAD_PREVIEW = 200

    def __init__(
        self,
        message: str,
        *,
        payload: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.payload = payload
        self.cause = cause
        details = _cause_details(cause)
        if payload is not None:
            details["payload"] = payload[: self.PAYLOAD_PREVIEW]
        super().__init__(message, details=details)
