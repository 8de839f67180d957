"""OTLP transport using the OpenTelemetry OTLP HTTP exporter."""

from __future__ import annotations

from typing import List, Optional

from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as OTelOTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import Event, ReadableSpan
from opentelemetry.sdk.trace.export import SpanExportResult
from opentelemetry.sdk.util.instrumentation import InstrumentationScope
from opentelemetry.trace import Link, SpanKind, Status, StatusCode, TraceFlags
from opentelemetry.trace import SpanContext as OTelSpanContext

from strand.errors import TransportError
from strand.exporter.batch import Batch, Process
from strand.exporter.transport import Transport
from strand.tracer.span import Span, ReferenceType
from strand.tracer.span_context import SpanContext
from strand.version import __version__

_SPAN_KINDS = {
    "client": SpanKind.CLIENT,
    "server": SpanKind.SERVER,
    "producer": SpanKind.PRODUCER,
    "consumer": SpanKind.CONSUMER,
}

_SCOPE = InstrumentationScope("strand", __version__)


class OTLPTransport(Transport):
    """
    Ships batches to an OTLP/HTTP collector.

    Tags become attributes, logs become events (named by their ``event``
    field), references become links and a ``span.kind`` tag picks the kind.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        headers: Optional[dict] = None,
        exporter=None,
    ) -> None:
        """
        Initialize OTLP transport.

        Args:
            endpoint: OTLP endpoint URL (defaults to OTel default)
            api_key: Optional API key for authentication
            timeout: Request timeout in seconds
            headers: Optional additional headers
            exporter: Pre-built span exporter (replaces the HTTP one)
        """
        export_headers = dict(headers) if headers else {}
        if api_key:
            export_headers["Authorization"] = f"Bearer {api_key}"

        self._otel_exporter = exporter or OTelOTLPSpanExporter(
            endpoint=endpoint,
            timeout=timeout,
            headers=export_headers if export_headers else None,
        )
        self._process: Optional[Process] = None
        self._resource: Optional[Resource] = None

        self.endpoint = endpoint
        self.timeout = timeout

    def send(self, batch: Batch) -> int:
        if not batch.spans:
            return 0
        resource = self._resource_for(batch.process)
        readable_spans = [to_readable_span(span, resource) for span in batch.spans]
        result = self._otel_exporter.export(readable_spans)
        if result != SpanExportResult.SUCCESS:
            raise TransportError(
                "OTLP export failed",
                details={"endpoint": self.endpoint, "sent": 0, "dropped": len(readable_spans)},
            )
        return len(readable_spans)

    def close(self) -> None:
        """Shutdown the exporter."""
        self._otel_exporter.shutdown()

    def _resource_for(self, process: Process) -> Resource:
        if process is not self._process:
            attributes = dict(process.tags)
            attributes["service.name"] = process.service_name
            self._resource = Resource.create(attributes)
            self._process = process
        return self._resource


def to_readable_span(span: Span, resource: Resource) -> ReadableSpan:
    """Convert a finished Strand span to an OTel ReadableSpan."""
    tags = span.tags
    kind = _SPAN_KINDS.get(str(tags.get("span.kind", "")).lower(), SpanKind.INTERNAL)
    if tags.get("error") is True:
        status = Status(status_code=StatusCode.ERROR)
    else:
        status = Status(status_code=StatusCode.UNSET)

    events: List[Event] = []
    for record in span.logs:
        fields = dict(record.fields)
        name = str(fields.pop("event", "log"))
        events.append(Event(name=name, attributes=fields, timestamp=record.timestamp_ns))

    links = [
        Link(_to_otel_context(ref.referenced_context), attributes={"ref.type": ReferenceType(ref.type).value})
        for ref in span.references
    ]

    parent = None
    if span.context.parent_id:
        parent = OTelSpanContext(
            trace_id=span.context.trace_id,
            span_id=span.context.parent_id,
            is_remote=False,
            trace_flags=TraceFlags(span.context.flags),
        )

    return ReadableSpan(
        name=span.operation_name,
        context=_to_otel_context(span.context),
        parent=parent,
        resource=resource,
        attributes=tags,
        events=events,
        links=links,
        kind=kind,
        status=status,
        start_time=span.start_time_ns,
        end_time=span.end_time_ns,
        instrumentation_scope=_SCOPE,
    )


def _to_otel_context(span_context: SpanContext) -> OTelSpanContext:
    return OTelSpanContext(
        trace_id=span_context.trace_id,
        span_id=span_context.span_id,
        is_remote=False,
        trace_flags=TraceFlags(span_context.flags),
    )
