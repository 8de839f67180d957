"""Tracer: creates spans, applies sampling and links parents to children."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union, TYPE_CHECKING

from strand import metrics as m
from strand.context.context import get_current_span
from strand.context.propagators import (
    BinaryPropagator,
    Format,
    HTTPHeadersPropagator,
    Propagator,
    TextMapPropagator,
)
from strand.errors import ConfigError, PropagationError, UnsupportedFormatError
from strand.exporter.batch import Process, build_process
from strand.metrics import Metrics
from strand.tracer.span import Reference, ReferenceType, Span
from strand.tracer.span_context import SpanContext
from strand.utils.helpers import generate_span_id, generate_trace_id

if TYPE_CHECKING:
    from strand.processors.reporter import Reporter
    from strand.processors.sampler import Sampler

logger = logging.getLogger(__name__)

ParentLike = Union[Span, SpanContext]


class Tracer:
    """
    Factory for spans of one service.

    Construct one tracer at process start (see ``strand.init_tracer``) and
    pass it to the code that needs it; there is no global tracer. The tracer
    owns the reporter, the sampler and the metrics until ``close()``.
    """

    def __init__(
        self,
        service_name: str,
        reporter: "Reporter",
        sampler: "Sampler",
        *,
        tags: Optional[Mapping[str, Any]] = None,
        metrics: Optional[Metrics] = None,
        propagators: Optional[Mapping[str, Propagator]] = None,
        process: Optional[Process] = None,
    ) -> None:
        if not service_name:
            raise ConfigError("service_name is required")
        self.service_name = service_name
        self.reporter = reporter
        self.sampler = sampler
        self.metrics = metrics or Metrics()
        self.process: Process = process or build_process(service_name, tags)
        self._propagators: Dict[str, Propagator] = {
            Format.TEXT_MAP: TextMapPropagator(),
            Format.HTTP_HEADERS: HTTPHeadersPropagator(),
            Format.BINARY: BinaryPropagator(),
        }
        if propagators:
            self._propagators.update(propagators)
        self._closed = False

    @property
    def active_span(self) -> Optional[Span]:
        """The span activated by the innermost ``with span:`` block, if any."""
        return get_current_span()

    def register_propagator(self, format: str, propagator: Propagator) -> None:
        self._propagators[format] = propagator

    def start_span(
        self,
        operation_name: str,
        child_of: Optional[ParentLike] = None,
        references: Optional[Iterable[Reference]] = None,
        tags: Optional[Mapping[str, Any]] = None,
        start_time_ns: Optional[int] = None,
        ignore_active_span: bool = False,
    ) -> Span:
        """
        Start a new span.

        Without a parent (``child_of``, a reference, or an active span) the
        span roots a new trace and the sampler decides its fate. Otherwise
        the trace id, sampled flag and baggage come from the primary parent:
        the first CHILD_OF reference, or the first reference of any kind.
        """
        refs = self._collect_references(child_of, references)
        if not refs and not ignore_active_span:
            active = self.active_span
            if active is not None:
                refs = (Reference(ReferenceType.CHILD_OF, active.context),)

        parent = self._primary_parent(refs)
        sampler_tags: Mapping[str, Any] = {}
        if parent is None:
            trace_id = generate_trace_id()
            sampled, sampler_tags = self._sample(trace_id, operation_name)
            context = SpanContext(trace_id=trace_id, span_id=generate_span_id(), sampled=sampled)
            self.metrics.increment(m.TRACES_STARTED_SAMPLED if sampled else m.TRACES_STARTED_NOT_SAMPLED)
        else:
            span_id = generate_span_id()
            while span_id == parent.span_id:
                span_id = generate_span_id()
            context = SpanContext(
                trace_id=parent.trace_id,
                span_id=span_id,
                parent_id=parent.span_id,
                sampled=parent.sampled,
                baggage=parent.baggage,
            )

        span = Span(self, context, operation_name, start_time_ns=start_time_ns, references=refs)
        self.metrics.increment(m.SPANS_STARTED)
        if span.is_recording():
            if sampler_tags:
                span.set_tags(sampler_tags)
            if tags:
                span.set_tags(tags)
        return span

    def start_as_current_span(
        self,
        operation_name: str,
        child_of: Optional[ParentLike] = None,
        references: Optional[Iterable[Reference]] = None,
        tags: Optional[Mapping[str, Any]] = None,
        start_time_ns: Optional[int] = None,
        ignore_active_span: bool = False,
    ) -> Span:
        """
        Start a span meant for ``with``/``async with``: it becomes the active
        span for the block and is finished on exit.
        """
        return self.start_span(
            operation_name,
            child_of=child_of,
            references=references,
            tags=tags,
            start_time_ns=start_time_ns,
            ignore_active_span=ignore_active_span,
        )

    def inject(self, span_context: ParentLike, format: str, carrier: Any) -> None:
        """Write the context into an outbound carrier; failures are logged."""
        if isinstance(span_context, Span):
            span_context = span_context.context
        propagator = self._propagators.get(format)
        if propagator is None:
            logger.error("%s", UnsupportedFormatError("no propagator for format", details={"format": format}))
            return
        try:
            propagator.inject(span_context, carrier)
        except PropagationError as exc:
            self.metrics.increment(m.PROPAGATION_ERRORS)
            logger.error(f"Could not inject span context: {exc}")
        except Exception:
            self.metrics.increment(m.PROPAGATION_ERRORS)
            logger.error("Unexpected error injecting span context", exc_info=True)

    def extract(self, format: str, carrier: Any) -> Optional[SpanContext]:
        """
        Read a span context from an inbound carrier.

        Returns None when the carrier holds no context *or* a malformed one;
        callers then start a new root trace.
        """
        propagator = self._propagators.get(format)
        if propagator is None:
            logger.error("%s", UnsupportedFormatError("no propagator for format", details={"format": format}))
            return None
        try:
            return propagator.extract(carrier)
        except PropagationError as exc:
            self.metrics.increment(m.PROPAGATION_ERRORS)
            logger.debug(f"Ignoring inbound span context: {exc}")
        except Exception:
            self.metrics.increment(m.PROPAGATION_ERRORS)
            logger.warning("Unexpected error extracting span context", exc_info=True)
        return None

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Flush queued spans (bounded by ``timeout`` seconds) and stop the
        reporter and sampler. Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self.reporter.close(timeout=timeout)
        except Exception:
            logger.warning("Reporter failed to close cleanly", exc_info=True)
        try:
            self.sampler.close()
        except Exception:
            logger.warning("Sampler failed to close cleanly", exc_info=True)
        dropped = self.metrics.get(m.REPORTER_SPANS_DROPPED)
        if dropped:
            logger.warning(f"Tracer for '{self.service_name}' closed; {dropped} spans were dropped")

    def __enter__(self) -> "Tracer":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    # Internal
    def _collect_references(
        self,
        child_of: Optional[ParentLike],
        references: Optional[Iterable[Reference]],
    ) -> Tuple[Reference, ...]:
        refs = []
        if child_of is not None:
            parent_context = child_of.context if isinstance(child_of, Span) else child_of
            refs.append(Reference(ReferenceType.CHILD_OF, parent_context))
        for ref in references or ():
            if ref not in refs:
                refs.append(ref)
        return tuple(ref for ref in refs if ref.referenced_context is not None and ref.referenced_context.is_valid())

    @staticmethod
    def _primary_parent(refs: Tuple[Reference, ...]) -> Optional[SpanContext]:
        if not refs:
            return None
        for ref in refs:
            if ref.type == ReferenceType.CHILD_OF:
                return ref.referenced_context
        return refs[0].referenced_context

    def _sample(self, trace_id: int, operation_name: str) -> Tuple[bool, Mapping[str, Any]]:
        try:
            result = self.sampler.decide(trace_id, operation_name)
        except Exception:
            # treated as "not sampled"
            logger.warning("Sampler failed; trace will not be sampled", exc_info=True)
            return False, {}
        return result.sampled, result.tags

    def _on_span_finished(self, span: Span, was_recording: bool) -> None:
        self.metrics.increment(m.SPANS_FINISHED)
        if not was_recording:
            return
        try:
            self.reporter.report(span)
        except Exception:
            logger.warning("Reporter rejected a span", exc_info=True)

    def _on_double_finish(self, span: Span) -> None:
        self.metrics.increment(m.DOUBLE_FINISHES)
