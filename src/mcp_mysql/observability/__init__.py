from __future__ import annotations

from mcp_mysql.observability.config import TelemetryConfig
from mcp_mysql.observability.logging import TraceContextFilter, configure_logging
from mcp_mysql.observability.metrics import GatewayMetrics, create_gateway_metrics
from mcp_mysql.observability.setup import configure_telemetry
from mcp_mysql.observability.tracing import (
    get_tracer,
    traced_auth_check,
    traced_cache_operation,
    traced_resource,
    traced_tool,
)

__all__ = [
    "TelemetryConfig",
    "configure_telemetry",
    "configure_logging",
    "TraceContextFilter",
    "get_tracer",
    "traced_tool",
    "traced_resource",
    "traced_cache_operation",
    "traced_auth_check",
    "create_gateway_metrics",
    "GatewayMetrics",
]
