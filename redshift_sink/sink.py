"""Chunk delivery: records -> gzip on S3 -> COPY into Redshift.

The buffering framework calls ``format`` once per record and ``write``
once per chunk. ``write`` runs these steps:

    provision table (optional, json/msgpack only)
    -> fetch table columns          (absent table: NO_DATA)
    -> encode + gzip to a temp file (nothing written: NO_DATA)
    -> upload to S3
    -> COPY                         (bad data: DISCARDED, other errors raise)

Each call owns its temp file, connections and S3 key, so ``write`` can run
on several threads at once with one shared ``RedshiftSink``.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import msgpack

from redshift_sink.archive import ArchiveBuilder
from redshift_sink.chunk import Chunk
from redshift_sink.config import RecordFormat, SinkConfig
from redshift_sink.encoder import LineEncoder, format_passthrough, record_field_names
from redshift_sink.errors import WarehouseError
from redshift_sink.observability import DeliveryMetrics, SinkLogger, get_sink_logger
from redshift_sink.storage.s3 import S3Uploader
from redshift_sink.values import to_json_text
from redshift_sink.warehouse.catalog import SchemaFetcher, TableSchema
from redshift_sink.warehouse.connections import ConnectFn, RedshiftConnector
from redshift_sink.warehouse.loader import LoadExecutor
from redshift_sink.warehouse.provisioner import ProvisionResult, TableProvisioner

__all__ = [
    "DeliveryResult",
    "DeliveryStatus",
    "RedshiftSink",
    "table_name_from_chunk_key",
]

_EXTENSION = re.compile(r"\..*")


class DeliveryStatus(Enum):
    LOADED = "loaded"
    DISCARDED = "discarded"  # COPY rejected the data; not retried
    NO_DATA = "no_data"


@dataclass
class DeliveryResult:
    """Outcome of one ``write`` call.

    Truthy when the chunk is done with (loaded or discarded), falsy when
    it was skipped because there was nothing to load.
    """

    status: DeliveryStatus
    table_name: str
    s3_uri: Optional[str] = None
    records: int = 0
    lines_written: int = 0

    def __bool__(self) -> bool:
        return self.status is not DeliveryStatus.NO_DATA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "table_name": self.table_name,
            "s3_uri": self.s3_uri,
            "records": self.records,
            "lines_written": self.lines_written,
        }


def table_name_from_chunk_key(key: str) -> str:
    """Derive a table name from a chunk key.

    The key is a routing tag or a buffer file path; the name is its base
    name up to the first dot.

    >>> table_name_from_chunk_key("/var/buffer/access_log.b5f1c.log")
    'access_log'
    >>> table_name_from_chunk_key("nginx.access")
    'nginx'
    """
    return _EXTENSION.sub("", os.path.basename(key), count=1)


class RedshiftSink:
    """Delivers chunks of records into Redshift through S3.

    Args:
        config: Validated sink configuration
        connect: Driver connect function (defaults to ``psycopg2.connect``)
        s3_client: Preconfigured boto3 S3 client
        clock: Current-time source for S3 keys
        logger: Base logger; defaults to one carrying ``config.log_suffix``
    """

    def __init__(
        self,
        config: SinkConfig,
        *,
        connect: Optional[ConnectFn] = None,
        s3_client: Any = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[SinkLogger] = None,
    ):
        self.config = config
        self.logger = logger or get_sink_logger(__name__, config.log_suffix)

        self.connector = RedshiftConnector(config.db_conf, connect=connect)
        self.encoder = LineEncoder(
            config.delimiter, logger=self.logger.child("redshift_sink.encoder")
        )
        self.archive_builder = ArchiveBuilder(
            config.record_format,
            self.encoder,
            logger=self.logger.child("redshift_sink.archive"),
        )
        self.schema_fetcher = SchemaFetcher(
            self.connector,
            config.redshift_schemaname,
            logger=self.logger.child("redshift_sink.warehouse.catalog"),
        )
        self.provisioner = TableProvisioner(
            self.connector,
            config.redshift_schemaname,
            varchar_length=config.varchar_length,
            use_default_schema=config.uses_default_schema,
            logger=self.logger.child("redshift_sink.warehouse.provisioner"),
        )
        self.uploader = S3Uploader.from_config(
            config,
            client=s3_client,
            clock=clock,
            logger=self.logger.child("redshift_sink.storage.s3"),
        )
        self.loader = LoadExecutor(
            self.connector,
            schema_name=config.redshift_schemaname,
            aws_key_id=config.aws_key_id,
            aws_sec_key=config.aws_sec_key,
            delimiter=config.delimiter,
            copy_base_options=config.redshift_copy_base_options,
            logger=self.logger.child("redshift_sink.warehouse.loader"),
        )

    @property
    def record_format(self) -> RecordFormat:
        return self.config.record_format

    def format(self, tag: str, event_time: Any, record: Mapping[str, Any]) -> bytes:
        """Serialize one record for appending to a chunk.

        ``tag`` and ``event_time`` are part of the buffering framework's
        calling convention; neither ends up in the line.
        """
        if self.record_format is RecordFormat.JSON:
            return msgpack.packb(to_json_text(record), use_bin_type=True)
        if self.record_format is RecordFormat.MSGPACK:
            return msgpack.packb(dict(record), use_bin_type=True, default=str)
        return format_passthrough(record, self.config.record_log_tag).encode("utf-8")

    def resolve_table_name(self, chunk: Chunk) -> str:
        if self.config.tag_table:
            return table_name_from_chunk_key(chunk.key)
        return self.config.redshift_tablename

    def sample_columns(self, chunk: Chunk) -> List[str]:
        """Field names of the first decodable record in the chunk."""
        for record in chunk.msgpack_each():
            names = record_field_names(record)
            if names:
                return names
        return []

    def provision(self, chunk: Chunk, table_name: str) -> ProvisionResult:
        return self.provisioner.ensure_table(table_name, self.sample_columns(chunk))

    def fetch_schema(self, table_name: str) -> Optional[TableSchema]:
        return self.schema_fetcher.fetch(table_name)

    def write(self, chunk: Chunk) -> DeliveryResult:
        """Deliver one chunk.

        Returns:
            DeliveryResult; falsy when there was nothing to load

        Raises:
            WarehouseError: Redshift is unreachable or COPY failed for a
                reason other than bad data
            StorageError: The archive could not be uploaded
        """
        table_name = self.resolve_table_name(chunk)
        log = self.logger.child(__name__)
        log.set_context(table=table_name, chunk_key=chunk.key)
        metrics = DeliveryMetrics(table_name, chunk.key)

        log.debug("start creating gz.")

        schema: Optional[TableSchema] = None
        if self.record_format.is_structured:
            if self.config.make_auto_table:
                with metrics.time_phase("provision"):
                    self.provision(chunk, table_name)
            with metrics.time_phase("fetch_schema"):
                schema = self.fetch_schema(table_name)

        with self.archive_builder.build(chunk, schema) as archive:
            if archive is None:
                log.debug("received no valid data. ")
                return DeliveryResult(DeliveryStatus.NO_DATA, table_name)

            metrics.record("records", archive.record_count)
            metrics.record("lines_written", archive.lines_written)
            metrics.record("bytes_written", archive.bytes_written)

            with metrics.time_phase("upload"):
                upload = self.uploader.upload(archive.path, size=archive.compressed_size)

        with metrics.time_phase("copy"):
            load = self.loader.execute(table_name, upload.uri)
        metrics.emit(log)

        result = DeliveryResult(
            DeliveryStatus.LOADED,
            table_name,
            s3_uri=upload.uri,
            records=archive.record_count,
            lines_written=archive.lines_written,
        )
        if load.success:
            return result
        if load.ignorable:
            result.status = DeliveryStatus.DISCARDED
            return result

        raise WarehouseError(
            "failed to copy data into redshift",
            host=self.config.redshift_host,
            operation="copy",
            cause=load.error,
            details={
                "s3_uri": upload.uri,
                "table": f"{self.config.redshift_schemaname}.{table_name}",
            },
        ) from load.error
