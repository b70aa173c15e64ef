from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from mcp_mysql.permissions import Role


# --- Pydantic models (external boundaries) ---


class ConnectionConfig(BaseModel):
    """Immutable snapshot of the data store connection parameters.

    Two snapshots are compared by value to decide whether to reconnect.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=3306, ge=1, le=65535)
    user: str = "root"
    password: SecretStr = SecretStr("")
    database: str | None = None

    def describe(self) -> str:
        target = f"{self.user}@{self.host}:{self.port}"
        return f"{target}/{self.database}" if self.database else target


# --- Dataclasses (internal state) ---


@dataclass(frozen=True)
class User:
    username: str
    password: SecretStr = field(repr=False)
    role: Role


@dataclass(frozen=True)
class Session:
    token: str = field(repr=False)
    username: str
    created_at: float


@dataclass
class CacheEntry:
    key: str
    source: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_size: int
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float | None:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else None


@dataclass(frozen=True)
class QueryResult:
    rows: Any
    cached: bool = False
