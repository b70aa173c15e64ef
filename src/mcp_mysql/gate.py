"""Request gate: the order every caller-facing operation goes through.

resolve session -> required permission -> role check -> cache (raw reads) ->
execute -> populate cache or invalidate after writes.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from mcp_mysql import classifier, statements
from mcp_mysql.cache import QueryCache, cache_key
from mcp_mysql.connection import ConnectionManager
from mcp_mysql.errors import AuthorizationFailure, SessionNotFound
from mcp_mysql.models import QueryResult, User
from mcp_mysql.observability.metrics import GatewayMetrics
from mcp_mysql.observability.tracing import traced_auth_check, traced_cache_operation
from mcp_mysql.permissions import (
    MUTATING_OPERATIONS,
    PermissionClass,
    allows,
    permission_for_operation,
)
from mcp_mysql.sessions import SessionStore

logger = logging.getLogger(__name__)


class RequestGate:
    def __init__(
        self,
        sessions: SessionStore,
        cache: QueryCache,
        connections: ConnectionManager,
        *,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        self.sessions = sessions
        self.cache = cache
        self.connections = connections
        self._metrics = metrics

    # --- Sessions ---

    async def authenticate(self, username: str, password: str) -> str:
        return self.sessions.authenticate(username, password)

    async def logout(self, token: str) -> None:
        self.sessions.revoke(token)

    # --- Raw queries ---

    async def query(
        self, token: str, sql: str, params: Sequence[Any] | None = None
    ) -> QueryResult:
        permission = classifier.classify(sql)
        user = await self._authorize(token, "query", permission)
        if not classifier.is_recognized(sql):
            logger.warning(
                "Statement from %s has no recognized leading keyword; authorized as %s",
                user.username,
                permission.value,
            )

        cacheable = classifier.should_cache(sql)
        if cacheable:
            async with traced_cache_operation("lookup", key=cache_key(sql, params)) as span:
                rows = self.cache.get(sql, params)
                span.set_attribute("cache.hit", rows is not None)
            self._count("cache_lookups_total", {"result": "hit" if rows is not None else "miss"})
            if rows is not None:
                return QueryResult(rows=rows, cached=True)

        async with self.connections.acquire() as lease:
            rows = await self._timed(lease.execute, sql, params)
            if cacheable:
                # A result read on a connection that was swapped out mid-flight is stale.
                if lease.current:
                    self.cache.set(sql, rows, params)
            else:
                # Writes and unrecognized statements: the touched tables are unknown.
                removed = self.cache.invalidate()
                self._count("cache_invalidations_total", {"scope": "all"}, removed)
        self._record_cache_size()
        return QueryResult(rows=rows)

    # --- Structured operations ---

    async def list_databases(self, token: str) -> list[str]:
        rows = await self._run(token, "list_databases", statements.list_databases)
        return [row["Database"] for row in rows]

    async def list_tables(self, token: str, database: str | None = None) -> list[str]:
        rows = await self._run(
            token, "list_tables", functools.partial(statements.list_tables, database)
        )
        return [next(iter(row.values())) for row in rows if row]

    async def describe_table(
        self, token: str, table: str, database: str | None = None
    ) -> list[dict[str, Any]]:
        return await self._run(
            token, "describe_table", functools.partial(statements.describe_table, table, database)
        )

    async def get_table_data(
        self, token: str, table: str, limit: int = 100, database: str | None = None
    ) -> list[dict[str, Any]]:
        return await self._run(
            token,
            "get_table_data",
            functools.partial(statements.select_rows, table, limit, database),
        )

    async def insert(
        self, token: str, table: str, data: Mapping[str, Any], database: str | None = None
    ) -> dict[str, Any]:
        return await self._run(
            token,
            "insert",
            functools.partial(statements.insert_row, table, data, database),
            table=table,
        )

    async def update(
        self,
        token: str,
        table: str,
        data: Mapping[str, Any],
        where: Mapping[str, Any],
        database: str | None = None,
    ) -> dict[str, Any]:
        return await self._run(
            token,
            "update",
            functools.partial(statements.update_rows, table, data, where, database),
            table=table,
        )

    async def delete(
        self, token: str, table: str, where: Mapping[str, Any], database: str | None = None
    ) -> dict[str, Any]:
        return await self._run(
            token,
            "delete",
            functools.partial(statements.delete_rows, table, where, database),
            table=table,
        )

    # --- Internals ---

    async def _run(
        self,
        token: str,
        operation: str,
        build: Callable[[], statements.Statement],
        *,
        table: str | None = None,
    ) -> Any:
        await self._authorize(token, operation, permission_for_operation(operation))
        # Arguments are validated only once the caller is known to be allowed.
        sql, params = build()
        async with self.connections.acquire() as lease:
            result = await self._timed(lease.execute, sql, params)
        if operation in MUTATING_OPERATIONS and table is not None:
            removed = self.cache.invalidate_table(table)
            self._count("cache_invalidations_total", {"scope": "table"}, removed)
            self._record_cache_size()
        return result

    async def _authorize(self, token: str, operation: str, permission: PermissionClass) -> User:
        user = self.sessions.resolve(token)
        if user is None:
            self._count("auth_decisions_total", {"decision": "unauthenticated"})
            raise SessionNotFound(operation=operation)

        async with traced_auth_check(
            operation=operation,
            permission=permission.value,
            username=user.username,
            role=user.role.value,
        ) as span:
            allowed = allows(user.role, permission)
            span.set_attribute("auth.decision", "allowed" if allowed else "denied")
        self._count(
            "auth_decisions_total",
            {"decision": "allowed" if allowed else "denied", "permission": permission.value},
        )
        if not allowed:
            logger.info("Denied %s (%s) to %s", operation, permission.value, user.username)
            raise AuthorizationFailure(user.username, permission.value, operation=operation)
        return user

    async def _timed(self, execute, sql: str, params: Sequence[Any] | None) -> Any:
        start = time.perf_counter()
        try:
            return await execute(sql, params)
        finally:
            if self._metrics is not None:
                self._metrics.db_statement_duration.record(
                    time.perf_counter() - start,
                    {"db.operation": classifier.leading_keyword(sql) or "unknown"},
                )

    def _count(self, instrument: str, attributes: dict[str, str], amount: int = 1) -> None:
        if self._metrics is not None and amount:
            getattr(self._metrics, instrument).add(amount, attributes)

    def _record_cache_size(self) -> None:
        if self._metrics is not None:
            self._metrics.cache_entries.set(len(self.cache))
