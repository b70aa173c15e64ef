"""Gateway settings and the watched connection configuration.

Connection parameters come from the process environment overlaid with a
dotenv file. The file is polled; listeners hear about a new
``ConnectionConfig`` only when it differs by value from the previous one.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field, SecretStr, ValidationError

from mcp_mysql.models import ConnectionConfig, User
from mcp_mysql.permissions import Role

logger = logging.getLogger(__name__)

ConfigListener = Callable[[ConnectionConfig], Awaitable[None] | None]

# (role, username variable, password variable, default username, default password)
_REGISTRY: tuple[tuple[Role, str, str, str, str], ...] = (
    (Role.ADMIN, "MYSQL_ADMIN_USER", "MYSQL_ADMIN_PASSWORD", "admin", "admin123"),
    (Role.READ_WRITE, "MYSQL_RW_USER", "MYSQL_RW_PASSWORD", "readwrite", "rw123"),
    (Role.READ_ONLY, "MYSQL_RO_USER", "MYSQL_RO_PASSWORD", "readonly", "ro123"),
)


class GatewaySettings(BaseModel):
    """Process-level settings. Read once at startup; not hot-reloaded."""

    env_file: Path = Field(default=Path(".env"), description="Watched dotenv file.")
    config_poll_interval: float = Field(default=1.0, gt=0)
    cache_max_size: int = Field(default=1000, ge=1)
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_sweep_interval: float = Field(default=60.0, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    query_timeout: float = Field(default=30.0, gt=0)
    drain_timeout: float = Field(
        default=5.0,
        ge=0,
        description="How long a replaced connection may finish in-flight statements.",
    )
    session_ttl_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Session lifetime; unset means sessions live until logout.",
    )
    transport: str = Field(default="stdio", description="'stdio' or 'streamable-http'.")
    port: int = Field(default=8001, ge=1, le=65535)

    def resolve(self) -> GatewaySettings:
        """Return a copy with env-var overrides applied."""
        updates: dict[str, object] = {}
        for field_name, env_name in (
            ("env_file", "MCP_MYSQL_ENV_FILE"),
            ("config_poll_interval", "MCP_CONFIG_POLL_INTERVAL"),
            ("cache_max_size", "MCP_CACHE_MAX_SIZE"),
            ("cache_ttl_seconds", "MCP_CACHE_TTL_SECONDS"),
            ("cache_sweep_interval", "MCP_CACHE_SWEEP_INTERVAL"),
            ("connect_timeout", "MYSQL_CONNECT_TIMEOUT"),
            ("query_timeout", "MYSQL_QUERY_TIMEOUT"),
            ("drain_timeout", "MCP_DRAIN_TIMEOUT"),
            ("session_ttl_seconds", "MCP_SESSION_TTL_SECONDS"),
            ("transport", "MCP_TRANSPORT"),
            ("port", "MCP_SERVER_PORT"),
        ):
            value = os.getenv(env_name)
            if value:
                updates[field_name] = value
        return self.model_validate({**self.model_dump(), **updates})


def connection_config_from(values: Mapping[str, str | None]) -> ConnectionConfig:
    return ConnectionConfig(
        host=values.get("MYSQL_HOST") or "localhost",
        port=int(values.get("MYSQL_PORT") or 3306),
        user=values.get("MYSQL_USER") or "root",
        password=SecretStr(values.get("MYSQL_PASSWORD") or ""),
        database=values.get("MYSQL_DATABASE") or None,
    )


def load_users(values: Mapping[str, str | None]) -> list[User]:
    """Build the fixed three-account registry."""
    return [
        User(
            username=values.get(user_var) or default_user,
            password=SecretStr(values.get(password_var) or default_password),
            role=role,
        )
        for role, user_var, password_var, default_user, default_password in _REGISTRY
    ]


class ConfigWatcher:
    """Polls a dotenv file and reports connection config changes.

    Values in the file take precedence over the process environment, so an
    edit always wins over whatever was exported when the process started.
    """

    def __init__(self, env_file: Path | str = ".env", *, environ: Mapping[str, str] | None = None) -> None:
        self.env_file = Path(env_file)
        self._environ = environ if environ is not None else os.environ
        self._listeners: list[ConfigListener] = []
        self._stamp = self._file_stamp()
        self._values = self._read_values()
        self._config = connection_config_from(self._values)

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def values(self) -> dict[str, str | None]:
        """The merged environment the current config was built from."""
        return dict(self._values)

    def on_change(self, listener: ConfigListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConfigListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def poll(self) -> bool:
        """Reload if the file changed on disk. Returns whether listeners were notified."""
        stamp = self._file_stamp()
        if stamp == self._stamp:
            return False
        self._stamp = stamp
        return await self.reload()

    async def reload(self) -> bool:
        values = self._read_values()
        try:
            config = connection_config_from(values)
        except (ValueError, ValidationError) as exc:
            logger.error("Ignoring invalid connection settings in %s: %s", self.env_file, exc)
            return False

        self._values = values
        if config == self._config:
            return False

        logger.info("Connection settings changed: %s -> %s", self._config.describe(), config.describe())
        self._config = config
        await self._notify(config)
        return True

    async def watch(self, interval: float = 1.0) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll()
            except Exception:
                logger.exception("Config poll of %s failed", self.env_file)

    async def _notify(self, config: ConnectionConfig) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(config)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Config change listener failed")

    def _read_values(self) -> dict[str, str | None]:
        merged: dict[str, str | None] = dict(self._environ)
        if self.env_file.is_file():
            merged.update(dotenv_values(self.env_file))
        else:
            logger.warning("Config file %s not found; using process environment only", self.env_file)
        return merged

    def _file_stamp(self) -> tuple[int, int] | None:
        try:
            stat = self.env_file.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size
