"""Gzip archive of one chunk, staged in a temporary file.

Usage:
    builder = ArchiveBuilder(RecordFormat.JSON, LineEncoder("\\t"))
    with builder.build(chunk, schema) as archive:
        if archive is None:
            return  # nothing to load
        uploader.upload(archive.path)
    # the temporary file is gone here, whatever happened inside the block
"""

from __future__ import annotations

import gzip
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Generator, Optional

from redshift_sink.chunk import Chunk
from redshift_sink.config import RecordFormat
from redshift_sink.encoder import LineEncoder
from redshift_sink.errors import RecordDecodeError
from redshift_sink.observability import SinkLogger, get_sink_logger
from redshift_sink.warehouse.catalog import TableSchema

__all__ = ["Archive", "ArchiveBuilder"]


@dataclass
class Archive:
    """A finished gzip file ready for upload."""

    path: str
    record_count: int = 0
    lines_written: int = 0
    bytes_written: int = 0

    @property
    def compressed_size(self) -> int:
        return os.path.getsize(self.path)


class ArchiveBuilder:
    """Compresses a chunk into a temporary gzip file."""

    def __init__(
        self,
        record_format: RecordFormat,
        encoder: LineEncoder,
        logger: Optional[SinkLogger] = None,
        temp_dir: Optional[str] = None,
    ):
        self.record_format = record_format
        self.encoder = encoder
        self.logger = logger or get_sink_logger(__name__)
        self.temp_dir = temp_dir

    @contextmanager
    def build(
        self, chunk: Chunk, schema: Optional[TableSchema] = None
    ) -> Generator[Optional[Archive], None, None]:
        """Yield the archive, or None when there is nothing to load.

        In structured formats a missing ``schema`` (table absent) yields
        None before the chunk is read.
        """
        if self.record_format.is_structured and schema is None:
            yield None
            return

        tmp = tempfile.NamedTemporaryFile(
            prefix="s3-", suffix=".gz", dir=self.temp_dir, delete=False
        )
        try:
            archive = Archive(path=tmp.name)
            with tmp:
                with gzip.GzipFile(fileobj=tmp, mode="wb") as gzw:
                    if self.record_format.is_structured:
                        self._write_structured(chunk, schema, gzw, archive)
                    else:
                        self._write_raw(chunk, gzw, archive)

            if archive.bytes_written == 0:
                yield None
            else:
                yield archive
        finally:
            try:
                os.unlink(tmp.name)
            except FileNotFoundError:
                pass

    def _write_raw(self, chunk: Chunk, gzw: BinaryIO, archive: Archive) -> None:
        archive.bytes_written = chunk.write_to(gzw)
        archive.record_count = archive.lines_written = chunk.count_lines()

    def _write_structured(
        self,
        chunk: Chunk,
        schema: TableSchema,
        gzw: BinaryIO,
        archive: Archive,
    ) -> None:
        columns = schema.columns
        for record in chunk.msgpack_each():
            archive.record_count += 1
            try:
                line = self.encoder.encode(columns, record)
            except RecordDecodeError as e:
                self.logger.warning(
                    "failed to create table text from record. %s",
                    e.message,
                    extra={"error_details": e.details},
                )
                continue
            if not line:
                continue
            data = line.encode("utf-8")
            gzw.write(data)
            archive.lines_written += 1
            archive.bytes_written += len(data)
