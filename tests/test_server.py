"""Tests for the MCP surface, driven through an in-memory fastmcp client."""

import json
import os
from unittest.mock import patch

import pytest
from fastmcp import Client, FastMCP
from fastmcp.exceptions import ToolError

from mcp_mysql.errors import InvalidRequest
from server.auth import extract_bearer_token, gateway_tool, session_token
from server.lifespan import app_lifespan
from server.resources import register_resources
from server.tools import register_tools


@pytest.fixture
def server(tmp_path, datastore):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "MYSQL_HOST=db\nMYSQL_PORT=3306\nMYSQL_USER=app\nMYSQL_DATABASE=alpha\n"
        "MYSQL_ADMIN_USER=admin\nMYSQL_ADMIN_PASSWORD=admin123\n"
        "MYSQL_RW_USER=readwrite\nMYSQL_RW_PASSWORD=rw123\n"
        "MYSQL_RO_USER=readonly\nMYSQL_RO_PASSWORD=ro123\n"
    )

    mcp = FastMCP(name="mcp-mysql-test", lifespan=app_lifespan)
    register_tools(mcp)
    register_resources(mcp)

    with (
        patch.dict(os.environ, {"MCP_MYSQL_ENV_FILE": str(env_file)}),
        patch("server.lifespan.MySQLDataStore", return_value=datastore),
    ):
        yield mcp


def text(result) -> str:
    return result.content[0].text


async def login(client, username, password) -> str:
    result = await client.call_tool("mysql_auth", {"username": username, "password": password})
    assert text(result).startswith("Authentication successful. Session ID: ")
    return text(result).rsplit(" ", 1)[1]


class TestTools:

    @pytest.mark.asyncio
    async def test_repeated_select_is_marked_cached(self, server, datastore):
        async with Client(server) as client:
            token = await login(client, "readonly", "ro123")
            args = {"query": "SELECT * FROM users", "session_id": token}

            first = text(await client.call_tool("mysql_query", args))
            second = text(await client.call_tool("mysql_query", args))

        assert not first.startswith("[CACHED] ")
        assert json.loads(first) == [{"id": 1, "source": "alpha"}]
        assert second.startswith("[CACHED] ")
        assert json.loads(second.removeprefix("[CACHED] ")) == [{"id": 1, "source": "alpha"}]
        assert datastore.queries() == ["SELECT * FROM users"]

    @pytest.mark.asyncio
    async def test_denial_names_operation_and_permission(self, server, datastore):
        async with Client(server) as client:
            token = await login(client, "readonly", "ro123")
            with pytest.raises(
                ToolError, match="query: User readonly does not have permission for delete operation"
            ):
                await client.call_tool(
                    "mysql_query", {"query": "DELETE FROM users", "session_id": token}
                )
        assert datastore.executed == []

    @pytest.mark.asyncio
    async def test_bad_credentials(self, server):
        async with Client(server) as client:
            with pytest.raises(ToolError, match="Invalid credentials or session"):
                await client.call_tool("mysql_auth", {"username": "admin", "password": "nope"})

    @pytest.mark.asyncio
    async def test_missing_session_is_rejected(self, server):
        async with Client(server) as client:
            with pytest.raises(ToolError, match="session_id is required"):
                await client.call_tool("mysql_list_databases", {})

    @pytest.mark.asyncio
    async def test_list_databases_format(self, server, datastore):
        datastore.rows["SHOW DATABASES"] = [{"Database": "alpha"}, {"Database": "beta"}]
        async with Client(server) as client:
            token = await login(client, "admin", "admin123")
            result = text(await client.call_tool("mysql_list_databases", {"session_id": token}))
        assert result == "Available databases:\n- alpha\n- beta"

    @pytest.mark.asyncio
    async def test_insert_then_logout(self, server, datastore):
        async with Client(server) as client:
            token = await login(client, "readwrite", "rw123")
            inserted = text(
                await client.call_tool(
                    "mysql_insert",
                    {"table": "users", "data": {"name": "ada"}, "session_id": token},
                )
            )
            await client.call_tool("mysql_logout", {"session_id": token})
            with pytest.raises(ToolError, match="Invalid credentials or session"):
                await client.call_tool("mysql_list_tables", {"session_id": token})

        assert inserted.startswith("Inserted data into table 'users':")
        assert datastore.executed[-1][1:] == ("INSERT INTO `users` (`name`) VALUES (%s)", ["ada"])


class TestResources:

    @pytest.mark.asyncio
    async def test_connection_status(self, server):
        async with Client(server) as client:
            await login(client, "admin", "admin123")
            contents = await client.read_resource("mysql://connection/status")
        status = contents[0].text
        assert "state: connected" in status
        assert "target: app@db:3306/alpha" in status
        assert "active_sessions: 1" in status

    @pytest.mark.asyncio
    async def test_cache_stats(self, server):
        async with Client(server) as client:
            contents = await client.read_resource("cache://queries/stats")
        assert contents[0].text.startswith("entries: 0/1000")


class TestSessionToken:

    def test_explicit_session_id_wins(self):
        with patch("server.auth.get_http_headers", return_value={"authorization": "Bearer header"}):
            assert session_token("explicit") == "explicit"

    def test_falls_back_to_bearer_header(self):
        with patch("server.auth.get_http_headers", return_value={"authorization": "Bearer abc123"}):
            assert session_token(None) == "abc123"

    @pytest.mark.parametrize("header", ["", "Basic abc", "Bearer   "])
    def test_no_usable_header(self, header):
        with patch("server.auth.get_http_headers", return_value={"authorization": header}):
            assert extract_bearer_token() is None
            with pytest.raises(ToolError, match="session_id is required"):
                session_token(None)


class TestGatewayTool:

    @pytest.mark.asyncio
    async def test_gateway_errors_become_tool_errors(self):
        @gateway_tool
        async def mysql_insert():
            raise InvalidRequest("insert requires at least one column", operation="insert")

        with pytest.raises(ToolError, match="^insert: insert requires at least one column$"):
            await mysql_insert()

    @pytest.mark.asyncio
    async def test_other_errors_propagate_unchanged(self):
        @gateway_tool
        async def mysql_query():
            raise RuntimeError("driver bug")

        with pytest.raises(RuntimeError, match="driver bug"):
            await mysql_query()
