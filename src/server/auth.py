from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_headers

from mcp_mysql.errors import GatewayError
from mcp_mysql.observability.metrics import create_gateway_metrics

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_metrics = create_gateway_metrics()


def extract_bearer_token() -> str | None:
    """Bearer token of the current HTTP request, if any.

    Under the stdio transport there is no request and this returns ``None``.
    """
    auth_header = get_http_headers(include_all=True).get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


def session_token(session_id: str | None) -> str:
    """Pick the session token: the explicit argument, else the bearer header."""
    token = session_id or extract_bearer_token()
    if not token:
        raise ToolError("session_id is required; call mysql_auth first")
    return token


def gateway_tool(func: Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
    """Translate gateway failures into ``ToolError`` and count tool calls.

    ``ToolError`` messages reach the client even when fastmcp masks other
    exception details, so the caller sees which operation failed and why.
    Anything that is not a ``GatewayError`` propagates unchanged.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        attributes = {"tool.name": func.__name__}
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except GatewayError as exc:
            _metrics.tools_call_total.add(1, {**attributes, "status": type(exc).__name__})
            raise ToolError(str(exc)) from exc
        except ToolError:
            _metrics.tools_call_total.add(1, {**attributes, "status": "ToolError"})
            raise
        finally:
            _metrics.server_operation_duration.record(time.perf_counter() - start, attributes)
        _metrics.tools_call_total.add(1, {**attributes, "status": "ok"})
        return result

    return wrapper
