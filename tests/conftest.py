"""Pytest configuration and fixtures."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import boto3
import psycopg2
import pytest
from moto import mock_aws
from psycopg2 import sql

from redshift_sink.config import SinkConfig
from redshift_sink.warehouse.catalog import FETCH_COLUMNS_SQL
from redshift_sink.warehouse.provisioner import SCHEMA_EXISTS_SQL, TABLE_EXISTS_SQL

BUCKET = "test-log-bucket"
FIXED_NOW = datetime(2025, 1, 15, 10, 30, 0)


def _flatten(statement: Any) -> List[Any]:
    if isinstance(statement, sql.Composed):
        parts: List[Any] = []
        for part in statement.seq:
            parts.extend(_flatten(part))
        return parts
    return [statement]


class FakeCursor:
    """Cursor that answers the sink's catalog queries from a FakeWarehouse."""

    def __init__(self, warehouse: "FakeWarehouse"):
        self.warehouse = warehouse
        self._rows: List[Tuple[Any, ...]] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, query: Any, params: Optional[Tuple[Any, ...]] = None) -> None:
        self._rows = self.warehouse.handle(query, params)

    def fetchall(self) -> List[Tuple[Any, ...]]:
        return list(self._rows)


class FakeConnection:
    def __init__(self, warehouse: "FakeWarehouse"):
        self.warehouse = warehouse
        self.autocommit = False
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self.warehouse)

    def close(self) -> None:
        self.closed = True


class FakeWarehouse:
    """In-memory stand-in for a Redshift cluster.

    ``connect`` has the ``psycopg2.connect`` signature so it can be handed to
    ``RedshiftConnector`` and ``RedshiftSink``.
    """

    def __init__(self) -> None:
        self.tables: Dict[Tuple[str, str], List[str]] = {}
        self.schemas: Set[str] = {"public"}
        self.connections: List[FakeConnection] = []
        self.executed: List[Tuple[str, Optional[Tuple[Any, ...]]]] = []
        self.copies: List[str] = []
        self.copy_error: Optional[BaseException] = None
        self.create_error: Optional[BaseException] = None
        self.connect_error: Optional[BaseException] = None
        self.query_error: Optional[BaseException] = None
        self.on_table_check: Optional[Callable[[], None]] = None
        self._ddl_lock = threading.Lock()

    def add_table(self, table: str, columns: List[str], schema: str = "public") -> None:
        self.schemas.add(schema)
        self.tables[(schema, table)] = list(columns)

    def connect(self, **kwargs: Any) -> FakeConnection:
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    @property
    def all_closed(self) -> bool:
        return all(conn.closed for conn in self.connections)

    def handle(self, query: Any, params: Optional[Tuple[Any, ...]]) -> List[Tuple[Any, ...]]:
        if isinstance(query, sql.Composable):
            return self._handle_ddl(query)

        self.executed.append((query, params))
        if self.query_error is not None and query in (
            FETCH_COLUMNS_SQL,
            TABLE_EXISTS_SQL,
            SCHEMA_EXISTS_SQL,
        ):
            raise self.query_error
        if query == FETCH_COLUMNS_SQL:
            return [(column,) for column in self.tables.get(tuple(params), [])]
        if query == TABLE_EXISTS_SQL:
            rows = [(params[1],)] if tuple(params) in self.tables else []
            if self.on_table_check is not None:
                self.on_table_check()
            return rows
        if query == SCHEMA_EXISTS_SQL:
            return [(params[0],)] if params[0] in self.schemas else []
        if query.startswith("copy "):
            self.copies.append(query)
            if self.copy_error is not None:
                raise self.copy_error
            return []
        raise AssertionError(f"unexpected query: {query}")

    def _handle_ddl(self, statement: sql.Composable) -> List[Tuple[Any, ...]]:
        parts = _flatten(statement)
        text = "".join(p.string for p in parts if isinstance(p, sql.SQL))
        names = [p for p in parts if isinstance(p, sql.Identifier)]
        self.executed.append((text, tuple(n.strings[0] for n in names)))

        if self.create_error is not None:
            raise self.create_error

        if text.startswith("CREATE SCHEMA"):
            self.schemas.add(names[0].strings[0])
            return []

        schema, table = names[0].strings[0], names[1].strings[0]
        with self._ddl_lock:
            if (schema, table) in self.tables:
                raise psycopg2.ProgrammingError(f'relation "{table}" already exists')
            self.tables[(schema, table)] = [c.strings[0] for c in names[2:]]
        return []


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_client(aws_credentials):
    """Create a mocked S3 client with the log bucket in place."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def base_options() -> Dict[str, Any]:
    """Minimal valid raw options."""
    return {
        "aws_key_id": "AKIAEXAMPLE",
        "aws_sec_key": "super-secret",
        "s3_bucket": BUCKET,
        "redshift_host": "cluster.example.com",
        "redshift_dbname": "analytics",
        "redshift_user": "loader",
        "redshift_password": "pw",
        "redshift_tablename": "access_log",
        "file_type": "json",
        "path": "logs",
        "upload_retry_attempts": 1,
    }


@pytest.fixture
def make_config(base_options):
    """Factory building a SinkConfig from the base options plus overrides."""

    def _make(**overrides: Any) -> SinkConfig:
        options = dict(base_options)
        options.update(overrides)
        return SinkConfig.from_dict(options)

    return _make


@pytest.fixture
def fixed_clock():
    """Clock pinned to 2025-01-15 10:30:00 (local, naive)."""
    return lambda: FIXED_NOW
