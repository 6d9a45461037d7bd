"""Redshift connections.

Every warehouse step of a delivery opens its own connection and closes
it when the step ends, so concurrent deliveries never share one. There
is no pool.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Optional

import psycopg2
import psycopg2.extensions

from redshift_sink.errors import WarehouseError

logger = logging.getLogger(__name__)

__all__ = ["RedshiftConnector"]

ConnectFn = Callable[..., Any]


class RedshiftConnector:
    """Opens autocommit connections to one Redshift cluster.

    Args:
        db_conf: Keyword arguments for the driver (host, port, dbname,
            user, password), usually ``SinkConfig.db_conf``
        connect: Driver connect function; defaults to ``psycopg2.connect``
    """

    def __init__(self, db_conf: Dict[str, Any], connect: Optional[ConnectFn] = None):
        self.db_conf = dict(db_conf)
        self._connect = connect or psycopg2.connect

    @property
    def host(self) -> Optional[str]:
        return self.db_conf.get("host")

    def open(self) -> psycopg2.extensions.connection:
        """Open a new autocommit connection.

        Raises:
            WarehouseError: If the connection cannot be established
        """
        try:
            conn = self._connect(**self.db_conf)
            conn.autocommit = True
        except psycopg2.Error as e:
            raise WarehouseError(
                "failed to connect to redshift",
                host=self.host,
                operation="connect",
                cause=e,
            ) from e
        return conn

    @contextmanager
    def connection(self) -> Generator[psycopg2.extensions.connection, None, None]:
        """Open a connection that is closed on every exit path."""
        conn = self.open()
        try:
            yield conn
        finally:
            try:
                conn.close()
            except Exception as close_error:
                logger.warning("Error closing Redshift connection: %s", close_error)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(host={self.host!r}, "
            f"dbname={self.db_conf.get('dbname')!r})"
        )
