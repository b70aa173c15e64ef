from __future__ import annotations

import os

from pydantic import BaseModel, Field


class TelemetryConfig(BaseModel):
    """Tracing, export and log settings for the gateway process.

    Every field has an environment fallback applied by ``resolve()``; explicit
    constructor values win for the endpoints and keys.
    """

    service_name: str = "mcp-mysql"
    enabled: bool = Field(default=True, description="MCP_OTEL_ENABLED")
    log_level: str = Field(default="INFO", description="MCP_LOG_LEVEL")

    # Export targets. Phoenix is preferred when its extra is installed.
    phoenix_endpoint: str | None = Field(default=None, description="PHOENIX_COLLECTOR_ENDPOINT")
    phoenix_project_name: str = "mcp-mysql"
    phoenix_api_key: str | None = Field(default=None, description="PHOENIX_API_KEY")
    otlp_endpoint: str | None = Field(default=None, description="OTEL_EXPORTER_OTLP_ENDPOINT")
    otlp_protocol: str = Field(default="grpc", description="'grpc' or 'http/protobuf'")
    otlp_headers: dict[str, str] = Field(default_factory=dict)
    batch: bool = True
    use_phoenix_register: bool = True
    instrument_mcp_context: bool = True

    # Content capture. Statement text may carry literals typed by the caller
    # and tool results carry table rows; both stay off unless asked for.
    capture_tool_io: bool = Field(default=False, description="MCP_OTEL_CAPTURE_IO")
    capture_statements: bool = Field(default=False, description="MCP_OTEL_CAPTURE_SQL")

    def resolve(self) -> TelemetryConfig:
        """Return a copy with env-var fallbacks applied."""
        return self.model_copy(
            update={
                "service_name": os.getenv("MCP_OTEL_SERVICE_NAME", self.service_name),
                "enabled": env_bool("MCP_OTEL_ENABLED", self.enabled),
                "log_level": os.getenv("MCP_LOG_LEVEL", self.log_level).upper(),
                "phoenix_endpoint": self.phoenix_endpoint
                or os.getenv("PHOENIX_COLLECTOR_ENDPOINT"),
                "phoenix_project_name": os.getenv(
                    "PHOENIX_PROJECT_NAME", self.phoenix_project_name
                ),
                "phoenix_api_key": self.phoenix_api_key or os.getenv("PHOENIX_API_KEY"),
                "otlp_endpoint": self.otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
                "otlp_protocol": os.getenv("OTEL_EXPORTER_OTLP_PROTOCOL", self.otlp_protocol),
                "capture_tool_io": env_bool("MCP_OTEL_CAPTURE_IO", self.capture_tool_io),
                "capture_statements": env_bool("MCP_OTEL_CAPTURE_SQL", self.capture_statements),
            }
        )


def env_bool(key: str, default: bool) -> bool:
    """Read a boolean flag; unset keeps the default."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")
