"""Context utilities: active span tracking and cross-process propagation."""

from strand.context.context import get_current_span, pop_span, push_span
from strand.context.propagators import (
    BAGGAGE_PREFIX,
    BinaryPropagator,
    Format,
    HTTPHeadersPropagator,
    Propagator,
    TextMapPropagator,
)
from strand.context.tracecontext import TraceContextPropagator

__all__ = [
    "get_current_span",
    "push_span",
    "pop_span",
    "BAGGAGE_PREFIX",
    "BinaryPropagator",
    "Format",
    "HTTPHeadersPropagator",
    "Propagator",
    "TextMapPropagator",
    "TraceContextPropagator",
]
