from __future__ import annotations

from dotenv import load_dotenv
from fastmcp import FastMCP

from mcp_mysql.config import GatewaySettings
from mcp_mysql.observability import TelemetryConfig, configure_logging, configure_telemetry
from server.lifespan import app_lifespan
from server.resources import register_resources
from server.tools import register_tools

load_dotenv()
telemetry = TelemetryConfig().resolve()
configure_logging(telemetry.log_level)
configure_telemetry(telemetry)

mcp = FastMCP(
    name="MCP MySQL Server",
    lifespan=app_lifespan,
)

register_tools(mcp)
register_resources(mcp)


def main() -> None:
    settings = GatewaySettings().resolve()
    if settings.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport=settings.transport, port=settings.port)


if __name__ == "__main__":
    main()
