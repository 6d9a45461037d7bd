"""Destination table discovery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional, Tuple

import psycopg2

from redshift_sink.errors import WarehouseError
from redshift_sink.observability import SinkLogger, get_sink_logger
from redshift_sink.warehouse.connections import RedshiftConnector

__all__ = ["SchemaFetcher", "TableSchema", "fetch_table_columns"]

FETCH_COLUMNS_SQL = (
    "select column_name from INFORMATION_SCHEMA.COLUMNS "
    "where table_schema = %s and table_name = %s "
    "order by ordinal_position;"
)


@dataclass(frozen=True)
class TableSchema:
    """Ordered column names of a destination table."""

    schema_name: str
    table_name: str
    columns: Tuple[str, ...]

    def __iter__(self) -> Iterator[str]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


def fetch_table_columns(
    conn: Any, schema_name: str, table_name: str
) -> Optional[TableSchema]:
    """Query the catalog for a table's columns.

    Returns:
        The schema, or None when the catalog has no rows for the table

    Raises:
        WarehouseError: If the query cannot be executed
    """
    try:
        with conn.cursor() as cur:
            cur.execute(FETCH_COLUMNS_SQL, (schema_name, table_name))
            rows = cur.fetchall()
    except psycopg2.Error as e:
        raise WarehouseError(
            "failed to fetch the redshift table definition.",
            operation="fetch_columns",
            cause=e,
            details={"table": f"{schema_name}.{table_name}"},
        ) from e

    if not rows:
        return None
    return TableSchema(
        schema_name=schema_name,
        table_name=table_name,
        columns=tuple(row[0] for row in rows),
    )


class SchemaFetcher:
    """Looks up destination table columns on a fresh connection."""

    def __init__(
        self,
        connector: RedshiftConnector,
        schema_name: str,
        logger: Optional[SinkLogger] = None,
    ):
        self.connector = connector
        self.schema_name = schema_name
        self.logger = logger or get_sink_logger(__name__)

    def fetch(self, table_name: str) -> Optional[TableSchema]:
        with self.connector.connection() as conn:
            schema = fetch_table_columns(conn, self.schema_name, table_name)
        if schema is None:
            self.logger.warning(
                "no table on redshift. table_name=%s.%s", self.schema_name, table_name
            )
        else:
            self.logger.debug(
                "fetched %d columns for %s", len(schema), schema.qualified_name
            )
        return schema
