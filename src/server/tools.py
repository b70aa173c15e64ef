import json
from typing import Any

from fastmcp import Context, FastMCP

from mcp_mysql.observability.tracing import traced_tool
from server.auth import gateway_tool, session_token
from server.lifespan import gate_from

Scalar = str | int | float | bool | None


def _dump(value: Any) -> str:
    # DECIMAL, DATETIME and BLOB columns are not JSON-native.
    return json.dumps(value, indent=2, default=str)


def _where(database: str | None) -> str:
    return f" in database '{database}'" if database else ""


def register_tools(mcp: FastMCP) -> None:

    @mcp.tool(tags={"auth"})
    @traced_tool()
    @gateway_tool
    async def mysql_auth(ctx: Context, username: str, password: str) -> str:
        """Authenticate and get a session token for the other mysql_* tools."""
        token = await gate_from(ctx).authenticate(username, password)
        return f"Authentication successful. Session ID: {token}"

    @mcp.tool(tags={"auth"})
    @traced_tool()
    @gateway_tool
    async def mysql_logout(ctx: Context, session_id: str | None = None) -> str:
        """End a session. Logging out an unknown session is not an error."""
        await gate_from(ctx).logout(session_token(session_id))
        return "Logged out."

    @mcp.tool(tags={"query"})
    @traced_tool()
    @gateway_tool
    async def mysql_query(
        ctx: Context,
        query: str,
        params: list[Scalar] | None = None,
        session_id: str | None = None,
    ) -> str:
        """Execute a SQL statement. Bind values with %s placeholders and pass them in params.

        Read results (SELECT, SHOW, DESCRIBE) are cached; cached answers are prefixed with [CACHED].
        """
        result = await gate_from(ctx).query(session_token(session_id), query, params)
        if result.cached:
            return f"[CACHED] {_dump(result.rows)}"
        return _dump(result.rows)

    @mcp.tool(tags={"metadata"})
    @traced_tool()
    @gateway_tool
    async def mysql_list_databases(ctx: Context, session_id: str | None = None) -> str:
        """List all databases on the MySQL server."""
        databases = await gate_from(ctx).list_databases(session_token(session_id))
        return "Available databases:\n" + "\n".join(f"- {db}" for db in databases)

    @mcp.tool(tags={"metadata"})
    @traced_tool()
    @gateway_tool
    async def mysql_list_tables(
        ctx: Context, database: str | None = None, session_id: str | None = None
    ) -> str:
        """List the tables of a database (the connection's default database if omitted)."""
        tables = await gate_from(ctx).list_tables(session_token(session_id), database)
        return f"Tables{_where(database)}:\n" + "\n".join(f"- {t}" for t in tables)

    @mcp.tool(tags={"metadata"})
    @traced_tool()
    @gateway_tool
    async def mysql_describe_table(
        ctx: Context, table: str, database: str | None = None, session_id: str | None = None
    ) -> str:
        """Get the column structure of a table."""
        schema = await gate_from(ctx).describe_table(session_token(session_id), table, database)
        return f"Schema for table '{table}'{_where(database)}:\n{_dump(schema)}"

    @mcp.tool(tags={"query"})
    @traced_tool()
    @gateway_tool
    async def mysql_get_table_data(
        ctx: Context,
        table: str,
        limit: int = 100,
        database: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Get up to `limit` rows from a table."""
        rows = await gate_from(ctx).get_table_data(
            session_token(session_id), table, limit, database
        )
        return f"Data from table '{table}'{_where(database)} (limit: {limit}):\n{_dump(rows)}"

    @mcp.tool(tags={"write"})
    @traced_tool()
    @gateway_tool
    async def mysql_insert(
        ctx: Context,
        table: str,
        data: dict[str, Any],
        database: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Insert one row; `data` maps column names to values."""
        outcome = await gate_from(ctx).insert(session_token(session_id), table, data, database)
        return f"Inserted data into table '{table}'{_where(database)}:\n{_dump(outcome)}"

    @mcp.tool(tags={"write"})
    @traced_tool()
    @gateway_tool
    async def mysql_update(
        ctx: Context,
        table: str,
        data: dict[str, Any],
        where: dict[str, Any],
        database: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Update rows matching every `where` column = value condition."""
        outcome = await gate_from(ctx).update(
            session_token(session_id), table, data, where, database
        )
        return f"Updated data in table '{table}'{_where(database)}:\n{_dump(outcome)}"

    @mcp.tool(tags={"write"})
    @traced_tool()
    @gateway_tool
    async def mysql_delete(
        ctx: Context,
        table: str,
        where: dict[str, Any],
        database: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Delete rows matching every `where` column = value condition."""
        outcome = await gate_from(ctx).delete(session_token(session_id), table, where, database)
        return f"Deleted data from table '{table}'{_where(database)}:\n{_dump(outcome)}"
