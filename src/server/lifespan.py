from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import Context, FastMCP

from mcp_mysql.cache import QueryCache, sweep_loop
from mcp_mysql.config import ConfigWatcher, GatewaySettings, load_users
from mcp_mysql.connection import ConnectionManager
from mcp_mysql.datastore import MySQLDataStore
from mcp_mysql.errors import DataStoreConnectionError
from mcp_mysql.gate import RequestGate
from mcp_mysql.models import ConnectionConfig
from mcp_mysql.observability.config import TelemetryConfig
from mcp_mysql.observability.metrics import create_gateway_metrics
from mcp_mysql.sessions import SessionStore

logger = logging.getLogger(__name__)


def gate_from(ctx: Context) -> RequestGate:
    return ctx.request_context.lifespan_context["gate"]


@asynccontextmanager
async def app_lifespan(server: FastMCP):
    settings = GatewaySettings().resolve()
    watcher = ConfigWatcher(settings.env_file)
    metrics = create_gateway_metrics()

    sessions = SessionStore(
        load_users(watcher.values), session_ttl=settings.session_ttl_seconds
    )
    cache = QueryCache(settings.cache_max_size, settings.cache_ttl_seconds)
    telemetry = TelemetryConfig().resolve()
    datastore = MySQLDataStore(
        connect_timeout=settings.connect_timeout,
        query_timeout=settings.query_timeout,
        capture_statements=telemetry.capture_statements,
    )
    connections = ConnectionManager(
        datastore, cache, drain_timeout=settings.drain_timeout, metrics=metrics
    )
    gate = RequestGate(sessions, cache, connections, metrics=metrics)

    try:
        await connections.connect(watcher.config)
    except DataStoreConnectionError:
        # Operations fail until an edit to the env file yields a working config.
        logger.error("Starting disconnected; waiting for a connection config change")

    async def reconnect(config: ConnectionConfig) -> None:
        try:
            await connections.on_config_changed(config)
        except DataStoreConnectionError as exc:
            logger.error("Config change not applied: %s", exc)

    watcher.on_change(reconnect)

    tasks = [
        asyncio.create_task(watcher.watch(settings.config_poll_interval)),
        asyncio.create_task(sweep_loop(cache, settings.cache_sweep_interval)),
    ]

    context: dict[str, Any] = {
        "gate": gate,
        "connections": connections,
        "cache": cache,
        "sessions": sessions,
        "settings": settings,
    }
    try:
        yield context
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        watcher.remove_listener(reconnect)
        await connections.disconnect()
