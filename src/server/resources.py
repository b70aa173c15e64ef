from __future__ import annotations

from fastmcp import Context, FastMCP

from mcp_mysql.observability.tracing import traced_resource
from server.lifespan import gate_from


def register_resources(mcp: FastMCP) -> None:

    @mcp.resource("mysql://connection/status")
    @traced_resource(uri="mysql://connection/status")
    async def connection_status(ctx: Context) -> str:
        """Connection state and target. Never includes the password."""
        gate = gate_from(ctx)
        config = gate.connections.config
        return (
            f"state: {gate.connections.state.value}\n"
            f"target: {config.describe() if config else '(none)'}\n"
            f"active_sessions: {gate.sessions.active_sessions()}"
        )

    @mcp.resource("cache://queries/stats")
    @traced_resource(uri="cache://queries/stats")
    async def cache_stats(ctx: Context) -> str:
        """Query cache occupancy and hit rate."""
        stats = gate_from(ctx).cache.stats()
        hit_rate = f"{stats.hit_rate:.1%}" if stats.hit_rate is not None else "n/a"
        return (
            f"entries: {stats.size}/{stats.max_size}\n"
            f"hits: {stats.hits}\n"
            f"misses: {stats.misses}\n"
            f"hit_rate: {hit_rate}\n"
            f"evictions: {stats.evictions}"
        )
