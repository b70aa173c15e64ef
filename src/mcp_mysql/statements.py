"""SQL text for the structured operations.

Values are always bound as ``%s`` parameters; only identifiers are spliced
into the text, backtick-quoted.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from mcp_mysql.errors import InvalidRequest

Statement = tuple[str, list[Any]]


def quote_identifier(name: str) -> str:
    if not name:
        raise InvalidRequest("Identifier must not be empty")
    return "`" + name.replace("`", "``") + "`"


def qualified_table(table: str, database: str | None = None) -> str:
    if database:
        return f"{quote_identifier(database)}.{quote_identifier(table)}"
    return quote_identifier(table)


def list_databases() -> Statement:
    return "SHOW DATABASES", []


def list_tables(database: str | None = None) -> Statement:
    if database:
        return f"SHOW TABLES FROM {quote_identifier(database)}", []
    return "SHOW TABLES", []


def describe_table(table: str, database: str | None = None) -> Statement:
    return f"DESCRIBE {qualified_table(table, database)}", []


def select_rows(table: str, limit: int = 100, database: str | None = None) -> Statement:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidRequest(f"limit must be a positive integer, got {limit!r}")
    return f"SELECT * FROM {qualified_table(table, database)} LIMIT %s", [limit]


def insert_row(table: str, data: Mapping[str, Any], database: str | None = None) -> Statement:
    if not data:
        raise InvalidRequest("insert requires at least one column")
    columns = ", ".join(quote_identifier(column) for column in data)
    placeholders = ", ".join(["%s"] * len(data))
    sql = f"INSERT INTO {qualified_table(table, database)} ({columns}) VALUES ({placeholders})"
    return sql, list(data.values())


def update_rows(
    table: str,
    data: Mapping[str, Any],
    where: Mapping[str, Any],
    database: str | None = None,
) -> Statement:
    if not data:
        raise InvalidRequest("update requires at least one column to set")
    set_clause = ", ".join(f"{quote_identifier(column)} = %s" for column in data)
    where_clause, where_params = _where(where, "update")
    sql = f"UPDATE {qualified_table(table, database)} SET {set_clause} WHERE {where_clause}"
    return sql, [*data.values(), *where_params]


def delete_rows(table: str, where: Mapping[str, Any], database: str | None = None) -> Statement:
    where_clause, params = _where(where, "delete")
    return f"DELETE FROM {qualified_table(table, database)} WHERE {where_clause}", params


def _where(where: Mapping[str, Any], operation: str) -> tuple[str, list[Any]]:
    # An empty condition would touch every row in the table.
    if not where:
        raise InvalidRequest(f"{operation} requires at least one WHERE condition")
    clause = " AND ".join(f"{quote_identifier(column)} = %s" for column in where)
    return clause, list(where.values())
