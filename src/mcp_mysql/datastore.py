"""Data store contract and its MySQL implementation.

The gateway only needs three things from a data store: open a connection for
a ``ConnectionConfig``, close it, and run one statement on it. Rows are
returned as plain dicts and are never interpreted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiomysql
import pymysql
from opentelemetry.trace import StatusCode

from mcp_mysql.classifier import leading_keyword
from mcp_mysql.errors import DataStoreConnectionError, ExecError
from mcp_mysql.models import ConnectionConfig
from mcp_mysql.observability.tracing import get_tracer

logger = logging.getLogger(__name__)

# Client-side error codes meaning the link itself is gone.
_LINK_ERRORS = frozenset({2002, 2003, 2006, 2013, 2055})


class DataStore(Protocol):
    async def connect(self, config: ConnectionConfig) -> Any: ...

    async def disconnect(self, handle: Any) -> None: ...

    def is_closed(self, handle: Any) -> bool: ...

    async def execute(
        self, handle: Any, query: str, params: Sequence[Any] | None = None
    ) -> Any: ...


@dataclass
class MySQLHandle:
    connection: aiomysql.Connection
    description: str
    # One connection runs one statement at a time.
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def closed(self) -> bool:
        return self.connection.closed


class MySQLDataStore:
    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        query_timeout: float = 30.0,
        capture_statements: bool = False,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        # Record statement text on spans; it can carry literals typed by callers.
        self.capture_statements = capture_statements

    async def connect(self, config: ConnectionConfig) -> MySQLHandle:
        try:
            connection = await aiomysql.connect(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password.get_secret_value(),
                db=config.database,
                autocommit=True,
                connect_timeout=self.connect_timeout,
            )
        except (pymysql.err.MySQLError, OSError, asyncio.TimeoutError) as exc:
            logger.error("Failed to connect to MySQL at %s: %s", config.describe(), exc)
            raise DataStoreConnectionError(
                f"Failed to connect to MySQL at {config.describe()}: {exc}"
            ) from exc

        logger.info("Connected to MySQL at %s", config.describe())
        return MySQLHandle(connection=connection, description=config.describe())

    async def disconnect(self, handle: MySQLHandle) -> None:
        if handle.closed:
            return
        try:
            await handle.connection.ensure_closed()
        except (pymysql.err.MySQLError, OSError) as exc:
            logger.warning("Error closing MySQL connection to %s: %s", handle.description, exc)
            handle.connection.close()
        logger.info("Closed MySQL connection to %s", handle.description)

    def is_closed(self, handle: MySQLHandle) -> bool:
        return handle.closed

    async def execute(
        self, handle: MySQLHandle, query: str, params: Sequence[Any] | None = None
    ) -> list[dict[str, Any]] | dict[str, Any]:
        """Run one statement.

        Result-set statements return their rows; others return the affected
        row count and last insert id.
        """
        tracer = get_tracer()
        with tracer.start_as_current_span("db.query") as span:
            span.set_attribute("db.system", "mysql")
            span.set_attribute("db.operation", leading_keyword(query) or "unknown")
            if self.capture_statements:
                span.set_attribute("db.statement", query)
            try:
                async with handle.lock:
                    if handle.closed:
                        raise DataStoreConnectionError(
                            f"Connection to {handle.description} is closed"
                        )
                    result = await asyncio.wait_for(
                        self._run(handle, query, params), timeout=self.query_timeout
                    )
            except asyncio.TimeoutError as exc:
                # The protocol state is unknown after an abandoned statement.
                handle.connection.close()
                span.set_status(StatusCode.ERROR, "timeout")
                logger.error("Query timed out after %.1fs; connection closed", self.query_timeout)
                raise ExecError(f"Query timed out after {self.query_timeout}s") from exc
            except pymysql.err.OperationalError as exc:
                span.set_status(StatusCode.ERROR, str(exc))
                if exc.args and exc.args[0] in _LINK_ERRORS:
                    handle.connection.close()
                    raise DataStoreConnectionError(f"Lost connection to MySQL: {exc}") from exc
                raise ExecError(f"Query failed: {exc}") from exc
            except pymysql.err.InterfaceError as exc:
                handle.connection.close()
                span.set_status(StatusCode.ERROR, str(exc))
                raise DataStoreConnectionError(f"Lost connection to MySQL: {exc}") from exc
            except pymysql.err.MySQLError as exc:
                span.set_status(StatusCode.ERROR, str(exc))
                raise ExecError(f"Query failed: {exc}") from exc
            return result

    async def _run(
        self, handle: MySQLHandle, query: str, params: Sequence[Any] | None
    ) -> list[dict[str, Any]] | dict[str, Any]:
        async with handle.connection.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(query, tuple(params) if params else None)
            if cursor.description is not None:
                return list(await cursor.fetchall())
            return {"affected_rows": cursor.rowcount, "last_insert_id": cursor.lastrowid}
