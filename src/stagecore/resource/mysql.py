"""
MySQL client for exercising a provisioned database instance.

Thin wrapper over a SQLAlchemy connection (PyMySQL driver) exposing the
few operations an exercise stage needs: ping, execute, close. Connection
failures become ResourceConnectionError so stages report them uniformly.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from stagecore.contracts.timeouts import MYSQL_CONNECT_TIMEOUT_S, MYSQL_STATEMENT_TIMEOUT_S
from stagecore.errors import ResourceConnectionError, StatementError
from stagecore.resource.base import ConnectionDescriptor, ExecResult

logger = logging.getLogger(__name__)


def mysql_url(descriptor: ConnectionDescriptor) -> URL:
    """SQLAlchemy URL for the PyMySQL driver."""
    return URL.create(
        "mysql+pymysql",
        username=descriptor.user,
        password=descriptor.password,
        host=descriptor.host,
        port=descriptor.port,
        database=descriptor.database,
    )


class MySQLClient:
    """
    An open connection to a MySQL server.

    Use as a context manager so the connection is released on every path:

        with MySQLClient.open(descriptor) as client:
            client.ping()
            result = client.execute("INSERT INTO test(name) VALUES (:name)", {"name": "Grunt"})
    """

    def __init__(self, engine: Engine, connection: Connection, descriptor: ConnectionDescriptor):
        self._engine = engine
        self._connection: Optional[Connection] = connection
        self.descriptor = descriptor

    @classmethod
    def open(cls, descriptor: ConnectionDescriptor) -> "MySQLClient":
        """
        Connect to the server described by ``descriptor``.

        Raises:
            ResourceConnectionError: The server is unreachable or rejects the login
        """
        engine = create_engine(
            mysql_url(descriptor),
            poolclass=NullPool,
            connect_args={
                "connect_timeout": MYSQL_CONNECT_TIMEOUT_S,
                "read_timeout": MYSQL_STATEMENT_TIMEOUT_S,
                "write_timeout": MYSQL_STATEMENT_TIMEOUT_S,
            },
        )
        try:
            connection = engine.connect()
        except SQLAlchemyError as e:
            engine.dispose()
            raise ResourceConnectionError(
                f"Failed to open MySQL connection to {descriptor.redacted()}: {e}"
            ) from e
        logger.debug(f"Connected to {descriptor.redacted()}")
        return cls(engine, connection, descriptor)

    def _conn(self) -> Connection:
        if self._connection is None:
            raise ResourceConnectionError("MySQL connection is closed")
        return self._connection

    def ping(self) -> None:
        """Round-trip a trivial query."""
        try:
            self._conn().execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ResourceConnectionError(
                f"Failed to ping MySQL at {self.descriptor.redacted()}: {e}"
            ) from e

    def execute(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> ExecResult:
        """
        Execute one statement and commit.

        Raises:
            ResourceConnectionError: The connection was lost
            StatementError: The server rejected the statement
        """
        conn = self._conn()
        try:
            result = conn.execute(text(statement), dict(params or {}))
            conn.commit()
        except DBAPIError as e:
            if e.connection_invalidated:
                raise ResourceConnectionError(f"Lost MySQL connection: {e}") from e
            raise StatementError(f"Statement failed: {statement}: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StatementError(f"Statement failed: {statement}: {e}") from e
        return ExecResult(lastrowid=result.lastrowid, rowcount=result.rowcount)

    def close(self) -> None:
        """Release the connection; safe to call more than once."""
        if self._connection is not None:
            try:
                self._connection.close()
            finally:
                self._connection = None
                self._engine.dispose()

    def __enter__(self) -> "MySQLClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
