from __future__ import annotations

import json
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import StatusCode

from mcp_mysql.observability.config import env_bool

P = ParamSpec("P")
R = TypeVar("R")

_TRACER_NAME = "mcp-mysql.gateway"

# Tool arguments never recorded on spans, even with capture enabled.
_REDACTED_ARGS = frozenset({"password", "session_id", "ctx", "context"})


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return an OTel tracer scoped to the given name (or the default)."""
    return trace.get_tracer(name or _TRACER_NAME)


# ---------------------------------------------------------------------------
# Tool tracing decorator
# ---------------------------------------------------------------------------


def traced_tool(
    *,
    name: str | None = None,
    capture_io: bool | None = None,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]],
    Callable[P, Coroutine[Any, Any, R]],
]:
    """Wrap an MCP tool handler in a ``tools/call {name}`` span.

    Usage::

        @mcp.tool()
        @traced_tool()
        async def mysql_query(ctx: Context, session_id: str, query: str) -> str:
            ...

    Args:
        name: Override the tool name (defaults to the function name).
        capture_io: Record arguments and result on the span. ``None`` defers
            to ``MCP_OTEL_CAPTURE_IO``. Credentials and session tokens are
            never recorded.
    """

    def decorator(
        fn: Callable[P, Coroutine[Any, Any, R]],
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        tool_name = name or fn.__name__
        tracer = get_tracer()

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            should_capture = (
                capture_io if capture_io is not None else env_bool("MCP_OTEL_CAPTURE_IO", False)
            )

            with tracer.start_as_current_span(f"tools/call {tool_name}") as span:
                span.set_attribute("mcp.method.name", "tools/call")
                span.set_attribute("rpc.system", "mcp")
                span.set_attribute("gen_ai.tool.name", tool_name)
                span.set_attribute("openinference.span.kind", "TOOL")

                if should_capture:
                    _set_input_attrs(span, kwargs)

                try:
                    result = await fn(*args, **kwargs)
                except Exception as exc:
                    span.set_status(StatusCode.ERROR, str(exc))
                    span.record_exception(exc)
                    raise

                if should_capture and result is not None:
                    span.set_attribute("output.value", _safe_serialize(result))
                    span.set_attribute("output.mime_type", "text/plain")

                return result

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Resource tracing decorator
# ---------------------------------------------------------------------------


def traced_resource(
    *,
    uri: str | None = None,
) -> Callable[
    [Callable[P, Coroutine[Any, Any, R]]],
    Callable[P, Coroutine[Any, Any, R]],
]:
    """Wrap an MCP resource handler in a ``resources/read {uri}`` span."""

    def decorator(
        fn: Callable[P, Coroutine[Any, Any, R]],
    ) -> Callable[P, Coroutine[Any, Any, R]]:
        resource_uri = uri or fn.__name__
        tracer = get_tracer()

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with tracer.start_as_current_span(f"resources/read {resource_uri}") as span:
                span.set_attribute("mcp.method.name", "resources/read")
                span.set_attribute("rpc.system", "mcp")
                span.set_attribute("mcp.resource.uri", resource_uri)

                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    span.set_status(StatusCode.ERROR, str(exc))
                    span.record_exception(exc)
                    raise

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Cache and auth spans (context managers)
# ---------------------------------------------------------------------------


class _SpanScope:
    """Start a span, make it current, and close it on exit, recording errors."""

    def __init__(self, span_name: str, attributes: dict[str, Any]) -> None:
        self._span_name = span_name
        self._attributes = {k: v for k, v in attributes.items() if v is not None}
        self._span: trace.Span | None = None
        self._activation: Any = None

    async def __aenter__(self) -> trace.Span:
        self._span = get_tracer().start_span(self._span_name, attributes=self._attributes)
        self._activation = trace.use_span(self._span, end_on_exit=False)
        self._activation.__enter__()
        return self._span

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        assert self._span is not None
        if exc_val is not None:
            self._span.set_status(StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._activation.__exit__(exc_type, exc_val, exc_tb)
        self._span.end()


class traced_cache_operation(_SpanScope):
    """Span around a query-cache operation.

    Usage::

        async with traced_cache_operation("lookup", key=digest) as span:
            rows = cache.get(sql, params)
            span.set_attribute("cache.hit", rows is not None)
    """

    def __init__(self, operation: str, *, key: str | None = None, scope: str | None = None) -> None:
        super().__init__(
            f"cache.{operation}",
            {"cache.operation": operation, "cache.key": key, "cache.scope": scope},
        )


class traced_auth_check(_SpanScope):
    """Span around an authorization decision.

    Usage::

        async with traced_auth_check(operation="query", permission="select") as span:
            ...
            span.set_attribute("auth.decision", "allowed")
    """

    def __init__(
        self,
        *,
        operation: str,
        permission: str | None = None,
        username: str | None = None,
        role: str | None = None,
    ) -> None:
        super().__init__(
            "auth.check_permission",
            {
                "mcp.mysql.operation": operation,
                "auth.required_permission": permission,
                "enduser.id": username,
                "enduser.role": role,
            },
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_serialize(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def _set_input_attrs(span: trace.Span, kwargs: dict[str, Any]) -> None:
    recorded = {k: v for k, v in kwargs.items() if k not in _REDACTED_ARGS}
    if recorded:
        span.set_attribute("tool.parameters", json.dumps(recorded, default=str))
        span.set_attribute("input.value", _safe_serialize(recorded))
        span.set_attribute("input.mime_type", "application/json")
