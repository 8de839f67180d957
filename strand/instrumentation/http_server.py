"""HTTP server helpers for extracting context and creating server spans."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from strand.context.propagators import Format
from strand.tracer.span_context import SpanContext

if TYPE_CHECKING:
    from strand.tracer.span import Span
    from strand.tracer.tracer import Tracer


def extract_parent_context(tracer: "Tracer", headers: Mapping[str, str]) -> Optional[SpanContext]:
    """Return the inbound SpanContext, or None if absent or malformed."""
    return tracer.extract(Format.HTTP_HEADERS, headers)


def start_server_span(
    tracer: "Tracer",
    operation_name: str,
    headers: Mapping[str, str],
    tags: Optional[Dict[str, Any]] = None,
) -> "Span":
    """
    Start a ``span.kind=server`` span continuing the caller's trace.

    Without a usable inbound context the span roots a new trace. Use the
    result with ``with`` or ``async with``.
    """
    parent_ctx = extract_parent_context(tracer, headers)
    span_tags = {"span.kind": "server"}
    span_tags.update(tags or {})
    return tracer.start_as_current_span(
        operation_name,
        child_of=parent_ctx,
        tags=span_tags,
        ignore_active_span=True,
    )
