from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import metrics, trace

from mcp_mysql.observability.config import TelemetryConfig

if TYPE_CHECKING:
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)


def configure_telemetry(
    config: TelemetryConfig | None = None,
) -> TracerProvider | None:
    """Set up span and metric export for the gateway.

    Spans go through ``arize-phoenix-otel`` ``register()`` when installed and
    enabled, otherwise a plain OTLP exporter on the OTel SDK. Gateway metrics
    are exported only when a generic OTLP endpoint is configured.

    Returns ``None`` when telemetry is disabled, no endpoint is configured,
    or setup fails; spans and instruments then degrade to no-ops.
    """
    if config is None:
        config = TelemetryConfig()
    config = config.resolve()

    if not config.enabled:
        logger.info("Telemetry disabled (MCP_OTEL_ENABLED=false)")
        return None

    endpoint = config.phoenix_endpoint or config.otlp_endpoint
    if endpoint is None:
        logger.info("No trace endpoint configured; spans and metrics stay local no-ops")
        return None

    try:
        provider = _try_phoenix_register(config, endpoint) if config.use_phoenix_register else None
        if provider is None:
            provider = _setup_otlp(config, config.otlp_endpoint or endpoint)
        trace.set_tracer_provider(provider)

        # Phoenix collects spans only; metrics need a generic OTLP collector.
        if config.otlp_endpoint:
            metrics.set_meter_provider(_setup_metrics(config, config.otlp_endpoint))

        if config.instrument_mcp_context:
            _instrument_mcp(provider)
    except Exception:
        logger.exception("Failed to configure OTel telemetry; tracing will be no-op")
        return None

    if config.capture_tool_io or config.capture_statements:
        logger.warning(
            "Span content capture is on (tool I/O: %s, SQL text: %s); spans may hold row data",
            config.capture_tool_io,
            config.capture_statements,
        )
    return provider


def _try_phoenix_register(config: TelemetryConfig, endpoint: str) -> TracerProvider | None:
    try:
        from phoenix.otel import register  # type: ignore[import-untyped]
    except ImportError:
        logger.debug("arize-phoenix-otel not installed; using the OTLP exporter")
        return None

    kwargs: dict = {
        "project_name": config.phoenix_project_name,
        "endpoint": endpoint,
        "batch": config.batch,
        "set_global_tracer_provider": False,
    }
    if config.phoenix_api_key:
        kwargs["headers"] = {"Authorization": f"Bearer {config.phoenix_api_key}"}

    logger.info("Exporting spans via phoenix.otel.register(endpoint=%s)", endpoint)
    return register(**kwargs)  # type: ignore[return-value]


def _resource(config: TelemetryConfig):
    from opentelemetry.sdk.resources import Resource

    return Resource.create({"service.name": config.service_name, "db.system": "mysql"})


def _headers(config: TelemetryConfig) -> dict[str, str] | None:
    headers = dict(config.otlp_headers)
    if config.phoenix_api_key:
        headers["Authorization"] = f"Bearer {config.phoenix_api_key}"
    return headers or None


def _setup_otlp(config: TelemetryConfig, endpoint: str) -> TracerProvider:
    from opentelemetry.sdk.trace import TracerProvider as _TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    if config.otlp_protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    exporter = OTLPSpanExporter(endpoint=endpoint, headers=_headers(config))
    provider = _TracerProvider(resource=_resource(config))
    processor = BatchSpanProcessor(exporter) if config.batch else SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)

    logger.info("Exporting spans via OTLP/%s (endpoint=%s)", config.otlp_protocol, endpoint)
    return provider


def _setup_metrics(config: TelemetryConfig, endpoint: str) -> MeterProvider:
    from opentelemetry.sdk.metrics import MeterProvider as _MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

    if config.otlp_protocol == "http/protobuf":
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    else:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint, headers=_headers(config))
    )
    return _MeterProvider(resource=_resource(config), metric_readers=[reader])


def _instrument_mcp(provider: TracerProvider) -> None:
    try:
        from openinference.instrumentation.mcp import (  # type: ignore[import-untyped]
            MCPInstrumentor,
        )
    except ImportError:
        logger.debug("openinference-instrumentation-mcp not installed; skipping")
        return

    MCPInstrumentor().instrument(tracer_provider=provider)
    logger.debug("MCP context propagation instrumentation enabled")
