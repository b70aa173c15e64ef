"""Shared fixtures: an in-memory data store and a controllable clock."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import pytest
import pytest_asyncio
from pydantic import SecretStr

from mcp_mysql.cache import QueryCache
from mcp_mysql.classifier import should_cache
from mcp_mysql.config import load_users
from mcp_mysql.connection import ConnectionManager
from mcp_mysql.errors import DataStoreConnectionError
from mcp_mysql.gate import RequestGate
from mcp_mysql.models import ConnectionConfig
from mcp_mysql.sessions import SessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self.closed = False


class FakeDataStore:
    """DataStore double that records every call.

    ``rows`` maps query text to the rows it returns; unknown read queries
    return a single default row. Set ``block`` to an ``asyncio.Event`` to hold
    statements in flight until it is set.
    """

    def __init__(self) -> None:
        self.connects: list[ConnectionConfig] = []
        self.disconnects: list[FakeHandle] = []
        self.executed: list[tuple[FakeHandle, str, list[Any]]] = []
        self.failing: list[ConnectionConfig] = []
        self.rows: dict[str, Any] = {}
        self.block: asyncio.Event | None = None
        self.started = asyncio.Event()

    async def connect(self, config: ConnectionConfig) -> FakeHandle:
        self.connects.append(config)
        if config in self.failing:
            raise DataStoreConnectionError(f"Failed to connect to MySQL at {config.describe()}")
        return FakeHandle(config)

    async def disconnect(self, handle: FakeHandle) -> None:
        handle.closed = True
        self.disconnects.append(handle)

    def is_closed(self, handle: FakeHandle) -> bool:
        return handle.closed

    async def execute(self, handle: FakeHandle, query: str, params=None) -> Any:
        if handle.closed:
            raise DataStoreConnectionError("Connection is closed")
        self.executed.append((handle, query, list(params or [])))
        self.started.set()
        if self.block is not None:
            await self.block.wait()
        if query in self.rows:
            return copy.deepcopy(self.rows[query])
        if should_cache(query):
            return [{"id": 1, "source": handle.config.database}]
        return {"affected_rows": 1, "last_insert_id": 0}

    def queries(self) -> list[str]:
        return [query for _, query, _ in self.executed]


CONFIG_A = ConnectionConfig(host="db", user="app", password=SecretStr("pw"), database="alpha")
CONFIG_B = ConnectionConfig(host="db", user="app", password=SecretStr("pw"), database="beta")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def datastore() -> FakeDataStore:
    return FakeDataStore()


@pytest.fixture
def cache(clock: FakeClock) -> QueryCache:
    return QueryCache(max_size=10, default_ttl=60.0, clock=clock)


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore(load_users({}))


@pytest.fixture
def connections(datastore: FakeDataStore, cache: QueryCache) -> ConnectionManager:
    return ConnectionManager(datastore, cache, drain_timeout=1.0)


@pytest_asyncio.fixture
async def gate(
    sessions: SessionStore, cache: QueryCache, connections: ConnectionManager
) -> RequestGate:
    await connections.connect(CONFIG_A)
    return RequestGate(sessions, cache, connections)
