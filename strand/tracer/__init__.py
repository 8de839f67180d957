"""Tracer components for the tracing client."""

from strand.tracer.span_context import SpanContext
from strand.tracer.span import (
    LogRecord,
    Reference,
    ReferenceType,
    Span,
    SpanState,
    child_of,
    follows_from,
)
from strand.tracer.tracer import Tracer

__all__ = [
    "LogRecord",
    "Reference",
    "ReferenceType",
    "Span",
    "SpanContext",
    "SpanState",
    "Tracer",
    "child_of",
    "follows_from",
]
