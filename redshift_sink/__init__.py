"""Buffered log sink that delivers record chunks to Amazon Redshift via S3.

Each chunk is encoded into delimited lines matching the destination
table, gzipped, uploaded to S3 and loaded with a single ``COPY``.

Usage:
    python -m redshift_sink deliver --config sink.yaml --input records.jsonl
"""

from redshift_sink.chunk import Chunk
from redshift_sink.config import RecordFormat, SinkConfig, load_config
from redshift_sink.errors import (
    ConfigurationError,
    RecordDecodeError,
    SinkError,
    StorageError,
    WarehouseError,
)
from redshift_sink.sink import DeliveryResult, DeliveryStatus, RedshiftSink

__version__ = "1.0.0"

__all__ = [
    "Chunk",
    "ConfigurationError",
    "DeliveryResult",
    "DeliveryStatus",
    "RecordDecodeError",
    "RecordFormat",
    "RedshiftSink",
    "SinkConfig",
    "SinkError",
    "StorageError",
    "WarehouseError",
    "load_config",
]
