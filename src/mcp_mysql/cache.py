from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any

from mcp_mysql.models import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 300.0
DEFAULT_SWEEP_INTERVAL = 60.0


def _tagged(value: Any) -> dict[str, str]:
    # Decimal("1") and "1" must not share a key, nor a datetime and its text.
    return {"$type": f"{type(value).__module__}.{type(value).__qualname__}", "$value": str(value)}


def cache_source(query: str, params: Sequence[Any] | None = None) -> str:
    """Pre-image of a cache key: stripped query text plus the ordered parameters."""
    return query.strip() + "\x00" + json.dumps(list(params or []), default=_tagged)


def cache_key(query: str, params: Sequence[Any] | None = None) -> str:
    return hashlib.sha256(cache_source(query, params).encode()).hexdigest()


class QueryCache:
    """TTL-expiring, size-bounded store of query results.

    Eviction removes the entry with the oldest ``created_at``; reads do not
    refresh recency. Each entry keeps its key pre-image so that pattern and
    table invalidation can match on query text.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, query: str, params: Sequence[Any] | None = None) -> Any | None:
        """Return a copy of the cached value, or ``None`` on a miss."""
        key = cache_key(query, params)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(self._clock()):
                del self._entries[key]
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            value = entry.value
        return copy.deepcopy(value)

    def set(
        self,
        query: str,
        value: Any,
        params: Sequence[Any] | None = None,
        ttl: float | None = None,
    ) -> None:
        source = cache_source(query, params)
        key = hashlib.sha256(source.encode()).hexdigest()
        stored = copy.deepcopy(value)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(
                key=key,
                source=source,
                value=stored,
                created_at=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop every entry, or those whose query text contains ``pattern``."""
        with self._lock:
            if pattern is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [k for k, e in self._entries.items() if pattern in e.source]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
        if removed:
            logger.debug("Invalidated %d cache entries (pattern=%r)", removed, pattern)
        return removed

    def invalidate_table(self, table: str) -> int:
        """Drop every entry whose query text mentions ``table``, ignoring case.

        This is a substring test, so it also hits queries that merely contain
        the name (``users`` matches ``power_users``).
        """
        needle = table.lower()
        with self._lock:
            doomed = [k for k, e in self._entries.items() if needle in e.source.lower()]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entries for table %s", len(doomed), table)
        return len(doomed)

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_oldest(self) -> None:
        # Caller holds the lock.
        if not self._entries:
            return
        oldest = min(self._entries.values(), key=lambda e: e.created_at)
        del self._entries[oldest.key]
        self._evictions += 1


async def sweep_loop(cache: QueryCache, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            cache.sweep()
        except Exception:
            logger.exception("Cache sweep failed")
