"""W3C trace context propagation using OpenTelemetry's standard propagators."""

from __future__ import annotations

from typing import Dict, Mapping, MutableMapping, Optional

from opentelemetry import baggage as baggage_api
from opentelemetry.baggage.propagation import W3CBaggagePropagator
from opentelemetry.trace import NonRecordingSpan, TraceFlags, get_current_span, set_span_in_context
from opentelemetry.trace import SpanContext as OTelSpanContext
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from strand.context.propagators import Propagator
from strand.errors import PropagationError
from strand.tracer.span_context import SpanContext

TRACEPARENT_HEADER = "traceparent"

_traceparent_propagator = TraceContextTextMapPropagator()
_baggage_propagator = W3CBaggagePropagator()


class TraceContextPropagator(Propagator):
    """
    ``traceparent`` + ``baggage`` headers.

    The W3C format has no parent-span-id field, so extracted contexts carry
    ``parent_id=None``.
    """

    def inject(self, span_context: SpanContext, carrier: MutableMapping[str, str]) -> None:
        ctx = set_span_in_context(NonRecordingSpan(_to_otel_context(span_context)))
        for key, value in span_context.baggage:
            ctx = baggage_api.set_baggage(key, value, context=ctx)
        _traceparent_propagator.inject(carrier, context=ctx)
        _baggage_propagator.inject(carrier, context=ctx)

    def extract(self, carrier: Mapping[str, str]) -> Optional[SpanContext]:
        if not carrier:
            return None
        # OTel's default getter is case-sensitive; HTTP headers are not
        headers: Dict[str, str] = {str(k).lower(): v for k, v in carrier.items()}
        header = headers.get(TRACEPARENT_HEADER)
        if header is None:
            return None

        ctx = _traceparent_propagator.extract(headers)
        otel_context = get_current_span(context=ctx).get_span_context()
        if not otel_context.is_valid:
            raise PropagationError("malformed traceparent header", details={TRACEPARENT_HEADER: header})

        ctx = _baggage_propagator.extract(headers, context=ctx)
        baggage = baggage_api.get_all(context=ctx)
        return SpanContext(
            trace_id=otel_context.trace_id,
            span_id=otel_context.span_id,
            parent_id=None,
            sampled=otel_context.trace_flags.sampled,
            baggage=tuple((str(k), str(v)) for k, v in baggage.items()),
        )


def _to_otel_context(span_context: SpanContext) -> OTelSpanContext:
    """Convert a Strand SpanContext to an OTel SpanContext."""
    return OTelSpanContext(
        trace_id=span_context.trace_id,
        span_id=span_context.span_id,
        is_remote=False,
        trace_flags=TraceFlags(span_context.flags),
    )
