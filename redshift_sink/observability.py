"""Logging and delivery metrics for the sink.

Every component logs through a ``SinkLogger``: a ``logging.LoggerAdapter``
that appends the configured ``log_suffix`` to each message and attaches the
current delivery's context (table, chunk key) as ``extra`` fields, so the
JSON formatter can emit them as structured data.

Example:
    setup_logging(json_format=True)
    log = get_sink_logger("redshift_sink.sink", log_suffix="id:5 host:web-1")
    log.set_context(table="access_log")
    log.info("completed copying to redshift. s3_uri=%s", uri)
"""

from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, MutableMapping, Optional, Tuple

__all__ = [
    "DeliveryMetrics",
    "JSONFormatter",
    "PhaseTimer",
    "SinkLogger",
    "get_sink_logger",
    "setup_logging",
]

NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per log line.

    Anything passed through ``extra`` ends up under the ``"extra"`` key:

        {"timestamp": "2025-01-15T10:30:00.123000Z", "level": "INFO",
         "logger": "redshift_sink.warehouse.loader",
         "message": "completed copying to redshift. s3_uri=s3://...",
         "extra": {"table": "access_log"}}
    """

    def __init__(self, exclude_fields: Optional[List[str]] = None):
        super().__init__()
        self.exclude_fields = set(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        payload = self._base_fields(record)
        extra = self._extra_fields(record)
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)

    def _base_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        fields: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.pathname}:{record.lineno}",
        }
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        return fields

    def _extra_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in self.exclude_fields
        }


class SinkLogger(logging.LoggerAdapter):
    """Logger adapter carrying a message suffix and delivery context.

    Explicit ``extra`` values passed to a call win over the context.
    """

    def __init__(self, name: str, log_suffix: str = ""):
        super().__init__(logging.getLogger(name), {})
        self.log_suffix = log_suffix or ""

    @property
    def name(self) -> str:
        return self.logger.name

    def child(self, name: str) -> "SinkLogger":
        """Logger for ``name`` with a copy of this suffix and context."""
        other = SinkLogger(name, log_suffix=self.log_suffix)
        other.extra = dict(self.extra)
        return other

    def set_context(self, **kwargs: Any) -> None:
        self.extra.update(kwargs)

    def clear_context(self) -> None:
        self.extra.clear()

    def format_message(self, msg: str) -> str:
        return f"{msg} {self.log_suffix}" if self.log_suffix else msg

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return self.format_message(str(msg)), kwargs

    def metric(self, name: str, value: Any, unit: Optional[str] = None, **tags: Any) -> None:
        """Log ``METRIC name=value`` with the value as structured fields."""
        extra: Dict[str, Any] = {"metric_name": name, "metric_value": value}
        if unit:
            extra["metric_unit"] = unit
        extra.update(tags)
        self.info("METRIC %s=%s", name, value, extra=extra)


def get_sink_logger(name: str, log_suffix: str = "") -> SinkLogger:
    return SinkLogger(name, log_suffix=log_suffix)


@dataclass
class PhaseTimer:
    """Wall time of one named phase."""

    name: str
    started: float = 0.0
    finished: Optional[float] = None

    def start(self) -> "PhaseTimer":
        self.started = time.perf_counter()
        return self

    def stop(self) -> float:
        self.finished = time.perf_counter()
        return self.elapsed

    @property
    def elapsed(self) -> float:
        end = self.finished if self.finished is not None else time.perf_counter()
        return end - self.started


class DeliveryMetrics:
    """Phase timings and counters for one chunk delivery."""

    def __init__(self, table: str, chunk_key: str):
        self.table = table
        self.chunk_key = chunk_key
        self.phases: List[PhaseTimer] = []
        self.counters: Dict[str, Any] = {}
        self._clock = PhaseTimer("total").start()

    @contextmanager
    def time_phase(self, name: str) -> Iterator[PhaseTimer]:
        timer = PhaseTimer(name).start()
        self.phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def record(self, name: str, value: Any) -> None:
        self.counters[name] = value

    @property
    def total_duration(self) -> float:
        return self._clock.elapsed

    def to_log_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "table": self.table,
            "chunk_key": self.chunk_key,
            "total_seconds": round(self.total_duration, 3),
        }
        data.update(
            (f"{timer.name}_seconds", round(timer.elapsed, 3)) for timer in self.phases
        )
        data.update(self.counters)
        return data

    def emit(self, logger: SinkLogger) -> None:
        """One METRIC line per phase and per counter."""
        for timer in self.phases:
            logger.metric(
                f"{timer.name}_duration", round(timer.elapsed, 3), unit="seconds", table=self.table
            )
        for name, value in self.counters.items():
            logger.metric(name, value, table=self.table)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Replace the root logger's handlers with console (and file) output."""
    level = logging.DEBUG if verbose else logging.INFO
    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
