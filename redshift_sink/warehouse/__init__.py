"""Redshift access for the sink.

Usage:
    from redshift_sink.warehouse import RedshiftConnector, SchemaFetcher

    connector = RedshiftConnector(config.db_conf)
    schema = SchemaFetcher(connector, "public").fetch("access_log")
"""

from redshift_sink.warehouse.catalog import SchemaFetcher, TableSchema, fetch_table_columns
from redshift_sink.warehouse.connections import RedshiftConnector
from redshift_sink.warehouse.loader import (
    CopyCommand,
    LoadErrorKind,
    LoadExecutor,
    LoadResult,
    classify_load_error,
)
from redshift_sink.warehouse.provisioner import ProvisionResult, TableProvisioner

__all__ = [
    "CopyCommand",
    "LoadErrorKind",
    "LoadExecutor",
    "LoadResult",
    "ProvisionResult",
    "RedshiftConnector",
    "SchemaFetcher",
    "TableProvisioner",
    "TableSchema",
    "classify_load_error",
    "fetch_table_columns",
]
