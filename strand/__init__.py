"""Strand: a distributed-tracing client library."""

# tracer must load before the exporter and processors packages
from strand.tracer import (
    LogRecord,
    Reference,
    ReferenceType,
    Span,
    SpanContext,
    SpanState,
    Tracer,
    child_of,
    follows_from,
)
from strand.errors import (
    ConfigError,
    DoubleFinishError,
    PropagationError,
    QueueFullError,
    SamplingError,
    StrandError,
    TransportError,
    UnsupportedFormatError,
)
from strand.context import Format, get_current_span
from strand.metrics import Metrics
from strand.bootstrap import init_tracer
from strand.instrumentation import inject_headers, start_server_span, traced
from strand.version import __version__

__all__ = [
    "__version__",
    "init_tracer",
    "Tracer",
    "Span",
    "SpanContext",
    "SpanState",
    "LogRecord",
    "Reference",
    "ReferenceType",
    "child_of",
    "follows_from",
    "Format",
    "get_current_span",
    "Metrics",
    "traced",
    "inject_headers",
    "start_server_span",
    "StrandError",
    "ConfigError",
    "PropagationError",
    "UnsupportedFormatError",
    "TransportError",
    "QueueFullError",
    "DoubleFinishError",
    "SamplingError",
]
