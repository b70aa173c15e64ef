"""Ownership of the single live data store connection.

The manager publishes exactly one handle at a time. Callers borrow it through
``acquire()``; a config change connects first, publishes the new handle, then
waits for borrowers of the old handle before closing it, and clears the
result cache.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from mcp_mysql.cache import QueryCache
from mcp_mysql.datastore import DataStore
from mcp_mysql.errors import DataStoreConnectionError
from mcp_mysql.models import ConnectionConfig
from mcp_mysql.observability.metrics import GatewayMetrics

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class _LiveConnection:
    def __init__(self, handle: Any, config: ConnectionConfig, generation: int) -> None:
        self.handle = handle
        self.config = config
        self.generation = generation
        self.borrowers = 0
        self.idle = asyncio.Event()
        self.idle.set()

    def borrow(self) -> None:
        self.borrowers += 1
        self.idle.clear()

    def release(self) -> None:
        self.borrowers -= 1
        if self.borrowers == 0:
            self.idle.set()


class Lease:
    """A borrowed connection, valid for the duration of ``acquire()``."""

    def __init__(self, manager: ConnectionManager, live: _LiveConnection) -> None:
        self._manager = manager
        self._live = live

    @property
    def generation(self) -> int:
        return self._live.generation

    @property
    def current(self) -> bool:
        """Whether this lease's connection is still the published one."""
        return self._manager._live is self._live

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> Any:
        return await self._manager.datastore.execute(self._live.handle, query, params)


class ConnectionManager:
    def __init__(
        self,
        datastore: DataStore,
        cache: QueryCache,
        *,
        drain_timeout: float = 5.0,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        self.datastore = datastore
        self.cache = cache
        self.drain_timeout = drain_timeout
        self._metrics = metrics
        self._live: _LiveConnection | None = None
        self._swap_lock = asyncio.Lock()
        self._generations = itertools.count(1)

    @property
    def state(self) -> ConnectionState:
        live = self._live
        if live is None or self._is_lost(live):
            return ConnectionState.DISCONNECTED
        return ConnectionState.CONNECTED

    @property
    def config(self) -> ConnectionConfig | None:
        return self._live.config if self._live else None

    async def connect(self, config: ConnectionConfig) -> None:
        """Open the first connection. When already connected, acts as a config change."""
        await self.on_config_changed(config)

    async def on_config_changed(self, config: ConnectionConfig) -> None:
        """Swap the live connection for one opened under ``config``.

        If the new connection cannot be opened the current one stays live,
        the cache is left alone and ``DataStoreConnectionError`` is raised.
        """
        async with self._swap_lock:
            previous = self._live
            if previous is not None and previous.config == config and not self._is_lost(previous):
                logger.debug("Connection config unchanged; keeping live connection")
                return

            try:
                handle = await self.datastore.connect(config)
            except DataStoreConnectionError:
                self._record_swap("failed")
                if previous is not None:
                    logger.error(
                        "Reconnect to %s failed; keeping connection to %s",
                        config.describe(),
                        previous.config.describe(),
                    )
                raise

            self._live = _LiveConnection(handle, config, next(self._generations))
            self.cache.invalidate()
            if previous is not None:
                await self._retire(previous)
                self.cache.invalidate()
                logger.info(
                    "Switched connection from %s to %s",
                    previous.config.describe(),
                    config.describe(),
                )
            self._record_swap("succeeded")

    async def reconnect(self) -> None:
        """Reopen the connection under its current config after the link was lost."""
        live = self._live
        if live is None:
            raise DataStoreConnectionError("Not connected to the database")
        await self.on_config_changed(live.config)

    async def disconnect(self) -> None:
        async with self._swap_lock:
            live, self._live = self._live, None
            if live is not None:
                await self._retire(live)
                logger.info("Disconnected from %s", live.config.describe())

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Lease]:
        live = self._live
        if live is not None and self._is_lost(live):
            logger.warning("Connection to %s was lost; reconnecting", live.config.describe())
            await self.reconnect()
            live = self._live
        if live is None:
            raise DataStoreConnectionError("Not connected to the database")
        live.borrow()
        try:
            yield Lease(self, live)
        finally:
            live.release()

    async def _retire(self, live: _LiveConnection) -> None:
        if live.borrowers and not self._is_lost(live):
            try:
                await asyncio.wait_for(live.idle.wait(), timeout=self.drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "%d in-flight operation(s) still using %s after %.1fs; closing anyway",
                    live.borrowers,
                    live.config.describe(),
                    self.drain_timeout,
                )
        try:
            await self.datastore.disconnect(live.handle)
        except Exception:
            logger.exception("Error closing connection to %s", live.config.describe())

    def _is_lost(self, live: _LiveConnection) -> bool:
        return self.datastore.is_closed(live.handle)

    def _record_swap(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.connection_swaps.add(1, {"outcome": outcome})
