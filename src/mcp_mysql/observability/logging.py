from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from typing import TextIO

from opentelemetry import trace

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_TRACED_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s [trace=%(trace_id)s span=%(span_id)s]: %(message)s"
)

# Third-party loggers that are noisy below ERROR. aiomysql reports server-side
# notes (e.g. truncation warnings) as WARNING on every statement.
_QUIET_LOGGERS = ("aiomysql",)


class TraceContextFilter(logging.Filter):
    """Stamp ``trace_id`` and ``span_id`` on each record.

    A line logged while a tool call, auth check or ``db.query`` span is
    active can then be found next to that span in the trace backend. Outside
    a span both fields are empty strings.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        valid = context.is_valid
        record.trace_id = trace.format_trace_id(context.trace_id) if valid else ""  # type: ignore[attr-defined]
        record.span_id = trace.format_span_id(context.span_id) if valid else ""  # type: ignore[attr-defined]
        return True


class _GatewayHandler(logging.StreamHandler):
    """Marker type so reconfiguring replaces only the handler installed here."""


def configure_logging(
    level: str = "INFO",
    *,
    include_trace_context: bool = True,
    stream: TextIO | None = None,
    quiet: Iterable[str] = _QUIET_LOGGERS,
) -> logging.Handler:
    """Install the gateway's log handler on the root logger.

    Output goes to stderr unless ``stream`` is given: with the stdio
    transport stdout is the MCP channel. Calling this again swaps the
    previous gateway handler and leaves handlers owned by others (pytest's
    capture, for instance) in place.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = _GatewayHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(_TRACED_FORMAT if include_trace_context else _FORMAT))
    if include_trace_context:
        handler.addFilter(TraceContextFilter())

    for existing in [h for h in root.handlers if isinstance(h, _GatewayHandler)]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(max(root.level, logging.ERROR))
    return handler
