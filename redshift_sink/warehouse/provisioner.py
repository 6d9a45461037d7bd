"""Best-effort creation of destination schemas and tables.

Concurrent deliveries can race to create the same table. Only one CREATE
wins; Redshift rejects the others, and those errors are logged and
dropped here. Nothing in this module changes the outcome of a delivery.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Sequence

import psycopg2
from psycopg2 import sql

from redshift_sink.errors import WarehouseError
from redshift_sink.observability import SinkLogger, get_sink_logger
from redshift_sink.warehouse.connections import RedshiftConnector

__all__ = ["ProvisionResult", "TableProvisioner", "build_create_table_sql"]

TABLE_EXISTS_SQL = (
    "SELECT table_name FROM INFORMATION_SCHEMA.TABLES "
    "WHERE table_schema = %s AND table_name = %s;"
)
SCHEMA_EXISTS_SQL = "SELECT nspname FROM pg_namespace WHERE nspname = %s;"


class ProvisionResult(Enum):
    EXISTS = "exists"
    CREATED = "created"
    FAILED = "failed"
    SKIPPED = "skipped"


def build_create_table_sql(
    schema_name: str,
    table_name: str,
    columns: Sequence[str],
    varchar_length: int,
) -> sql.Composed:
    """CREATE TABLE ``schema_name.table_name`` with one varchar column per field name."""
    column_defs = sql.SQL(", ").join(
        sql.SQL("{} varchar({})").format(
            sql.Identifier(column), sql.Literal(int(varchar_length))
        )
        for column in columns
    )
    return sql.SQL("CREATE TABLE {}.{} ({});").format(
        sql.Identifier(schema_name), sql.Identifier(table_name), column_defs
    )


class TableProvisioner:
    """Creates a missing destination table from observed record keys."""

    def __init__(
        self,
        connector: RedshiftConnector,
        schema_name: str,
        varchar_length: int = 255,
        use_default_schema: bool = True,
        logger: Optional[SinkLogger] = None,
    ):
        self.connector = connector
        self.schema_name = schema_name
        self.varchar_length = varchar_length
        self.use_default_schema = use_default_schema
        self.logger = logger or get_sink_logger(__name__)

    def ensure_table(self, table_name: str, columns: Sequence[str]) -> ProvisionResult:
        """Create ``table_name`` unless it already exists.

        Raises:
            WarehouseError: If the existence checks cannot run. Failures
                of the CREATE statements themselves are only logged.
        """
        columns = list(dict.fromkeys(columns))
        if not columns:
            return ProvisionResult.SKIPPED

        with self.connector.connection() as conn:
            if self._count(conn, TABLE_EXISTS_SQL, (self.schema_name, table_name)) >= 1:
                return ProvisionResult.EXISTS

            if not self.use_default_schema:
                self._ensure_schema(conn)

            statement = build_create_table_sql(
                self.schema_name, table_name, columns, self.varchar_length
            )
            if not self._execute_ddl(conn, statement):
                self.logger.error(
                    "failed CREATE TABLE table_name: %s",
                    f"{self.schema_name}.{table_name}",
                )
                return ProvisionResult.FAILED

        self.logger.info(
            "TABLE CREATED: => %s.%s (%s)",
            self.schema_name,
            table_name,
            ", ".join(columns),
        )
        return ProvisionResult.CREATED

    def _ensure_schema(self, conn: Any) -> None:
        if self._count(conn, SCHEMA_EXISTS_SQL, (self.schema_name,)) > 0:
            return
        statement = sql.SQL("CREATE SCHEMA {};").format(sql.Identifier(self.schema_name))
        if self._execute_ddl(conn, statement):
            self.logger.info("SCHEMA CREATED: => %s", self.schema_name)
        else:
            self.logger.error("failed CREATE SCHEMA schema_name: %s", self.schema_name)

    def _count(self, conn: Any, query: str, params: tuple) -> int:
        try:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return len(cur.fetchall())
        except psycopg2.Error as e:
            raise WarehouseError(
                "failed to check for existing objects",
                host=self.connector.host,
                operation="provision_check",
                cause=e,
            ) from e

    def _execute_ddl(self, conn: Any, statement: sql.Composable) -> bool:
        try:
            with conn.cursor() as cur:
                cur.execute(statement)
        except psycopg2.Error as e:
            self.logger.error(
                "class: %s msg: %s", type(e).__name__, str(e).strip()
            )
            return False
        return True
