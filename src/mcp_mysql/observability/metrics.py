from __future__ import annotations

from dataclasses import dataclass, field

from opentelemetry import metrics

_METER_NAME = "mcp-mysql.gateway"


@dataclass(frozen=True)
class GatewayMetrics:
    """Container for the gateway's metric instruments.

    Tool and statement durations follow the OTel MCP and database semantic
    conventions; cache, auth and connection instruments are gateway specific.
    """

    # --- Tools ---
    server_operation_duration: metrics.Histogram = field(repr=False)
    tools_call_total: metrics.Counter = field(repr=False)

    # --- Auth ---
    auth_decisions_total: metrics.Counter = field(repr=False)

    # --- Query cache ---
    cache_lookups_total: metrics.Counter = field(repr=False)
    cache_invalidations_total: metrics.Counter = field(repr=False)
    cache_entries: metrics.Gauge = field(repr=False)

    # --- Data store ---
    db_statement_duration: metrics.Histogram = field(repr=False)
    connection_swaps: metrics.Counter = field(repr=False)


def create_gateway_metrics(meter_name: str | None = None) -> GatewayMetrics:
    """Create the gateway metric instruments.

    Safe to call repeatedly; OTel de-duplicates instruments by name.
    """
    meter = metrics.get_meter(meter_name or _METER_NAME)

    return GatewayMetrics(
        server_operation_duration=meter.create_histogram(
            name="mcp.server.operation.duration",
            description="Duration of MCP server operations",
            unit="s",
        ),
        tools_call_total=meter.create_counter(
            name="mcp.tools.call.total",
            description="Tool invocations by tool name and status",
        ),
        auth_decisions_total=meter.create_counter(
            name="mcp.auth.decisions.total",
            description="Authorization decisions by permission class and outcome",
        ),
        cache_lookups_total=meter.create_counter(
            name="mcp.cache.lookups.total",
            description="Query cache lookups by result (hit/miss)",
        ),
        cache_invalidations_total=meter.create_counter(
            name="mcp.cache.invalidations.total",
            description="Query cache entries removed by invalidation, by scope",
        ),
        cache_entries=meter.create_gauge(
            name="mcp.cache.entries",
            description="Entries held by the query cache",
        ),
        db_statement_duration=meter.create_histogram(
            name="db.client.operation.duration",
            description="Duration of statements sent to MySQL",
            unit="s",
        ),
        connection_swaps=meter.create_counter(
            name="mcp.mysql.connection.swaps",
            description="Connection swaps triggered by config changes, by outcome",
        ),
    )
