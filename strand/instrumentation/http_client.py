"""HTTP client helpers for context propagation."""

from __future__ import annotations

from typing import Dict, Optional, TYPE_CHECKING

from strand.context.propagators import Format

if TYPE_CHECKING:
    from strand.tracer.span import Span
    from strand.tracer.tracer import Tracer


def inject_headers(tracer: "Tracer", headers: Dict[str, str], span: Optional["Span"] = None) -> Dict[str, str]:
    """
    Inject the context of ``span`` (or the active span) into the headers dict.

    Returns the same headers mapping for convenience.
    """
    span = span or tracer.active_span
    if span is not None:
        tracer.inject(span.context, Format.HTTP_HEADERS, headers)
    return headers
