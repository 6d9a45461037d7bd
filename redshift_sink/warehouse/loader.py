"""COPY execution and outcome classification.

A COPY that Redshift rejects because of the data itself ("Load into table
'x' failed") is not retried: the rows are bad and would fail again. Every
other failure is fatal and the chunk is retried by the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import psycopg2

from redshift_sink.observability import SinkLogger, get_sink_logger
from redshift_sink.warehouse.connections import RedshiftConnector

__all__ = [
    "CopyCommand",
    "LoadErrorKind",
    "LoadExecutor",
    "LoadResult",
    "classify_load_error",
]

# ignore load table error. (invalid data format)
IGNORABLE_LOAD_ERROR = re.compile(r"^ERROR:\s+Load into table '[^']+' failed\.")


class LoadErrorKind(Enum):
    IGNORABLE = "ignorable"
    FATAL = "fatal"


def classify_load_error(error: BaseException) -> LoadErrorKind:
    """Classify a COPY failure by its message."""
    message = getattr(error, "pgerror", None) or str(error)
    if IGNORABLE_LOAD_ERROR.match(message.strip()):
        return LoadErrorKind.IGNORABLE
    return LoadErrorKind.FATAL


@dataclass
class LoadResult:
    """Outcome of one COPY."""

    success: bool
    s3_uri: str
    error_kind: Optional[LoadErrorKind] = None
    error: Optional[BaseException] = None

    @property
    def ignorable(self) -> bool:
        return self.error_kind is LoadErrorKind.IGNORABLE

    @property
    def fatal(self) -> bool:
        return self.error_kind is LoadErrorKind.FATAL


@dataclass(frozen=True)
class CopyCommand:
    """The COPY statement for one uploaded object."""

    schema_name: str
    table_name: str
    s3_uri: str
    aws_key_id: str
    aws_sec_key: str
    delimiter: str
    copy_base_options: str

    def _render(self, secret: str) -> str:
        return (
            f"copy {self.schema_name}.{self.table_name} from '{self.s3_uri}' "
            f"CREDENTIALS 'aws_access_key_id={self.aws_key_id};"
            f"aws_secret_access_key={secret}' "
            f"delimiter '{self.delimiter}' GZIP TRUNCATECOLUMNS ESCAPE "
            f"{self.copy_base_options};"
        )

    @property
    def sql(self) -> str:
        return self._render(self.aws_sec_key)

    @property
    def masked_sql(self) -> str:
        """The statement with the secret key hidden, for logs."""
        return self._render("***")


class LoadExecutor:
    """Runs COPY for an uploaded archive."""

    def __init__(
        self,
        connector: RedshiftConnector,
        *,
        schema_name: str,
        aws_key_id: str,
        aws_sec_key: str,
        delimiter: str,
        copy_base_options: str,
        logger: Optional[SinkLogger] = None,
    ):
        self.connector = connector
        self.schema_name = schema_name
        self.aws_key_id = aws_key_id
        self.aws_sec_key = aws_sec_key
        self.delimiter = delimiter
        self.copy_base_options = copy_base_options
        self.logger = logger or get_sink_logger(__name__)

    def build_command(self, table_name: str, s3_uri: str) -> CopyCommand:
        return CopyCommand(
            schema_name=self.schema_name,
            table_name=table_name,
            s3_uri=s3_uri,
            aws_key_id=self.aws_key_id,
            aws_sec_key=self.aws_sec_key,
            delimiter=self.delimiter,
            copy_base_options=self.copy_base_options,
        )

    def execute(self, table_name: str, s3_uri: str) -> LoadResult:
        """Run COPY and classify the outcome.

        Driver errors are returned, not raised. Connection failures raise
        ``WarehouseError`` from the connector.
        """
        command = self.build_command(table_name, s3_uri)
        self.logger.debug("start copying. s3_uri=%s", s3_uri)
        self.logger.debug("copy statement: %s", command.masked_sql)

        try:
            with self.connector.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(command.sql)
        except psycopg2.Error as e:
            kind = classify_load_error(e)
            self.logger.error(
                "failed to copy data into redshift. s3_uri=%s",
                s3_uri,
                extra={"error": str(e).strip(), "error_kind": kind.value},
            )
            return LoadResult(success=False, s3_uri=s3_uri, error_kind=kind, error=e)

        self.logger.info("completed copying to redshift. s3_uri=%s", s3_uri)
        return LoadResult(success=True, s3_uri=s3_uri)
