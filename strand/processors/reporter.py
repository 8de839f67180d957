"""Reporters: where finished, sampled spans go."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Deque, Iterable, List, Optional

from strand import metrics as m
from strand.errors import QueueFullError, TransportError
from strand.exporter.batch import Batch, Process
from strand.metrics import Metrics
from strand.processors.drop_policy import DEFAULT_DROP_POLICY, DropPolicy
from strand.tracer.span import Span
from strand.utils.helpers import format_span_id, format_trace_id

logger = logging.getLogger(__name__)


class Reporter:
    """Base reporter interface."""

    def report(self, span: Span) -> None:
        """Accept a finished span. Must not block the caller."""
        raise NotImplementedError

    def close(self, timeout: Optional[float] = None) -> None:
        """Release resources, flushing within ``timeout`` seconds if buffered."""
        return None


class NullReporter(Reporter):
    """Discards every span."""

    def report(self, span: Span) -> None:
        return None


class InMemoryReporter(Reporter):
    """Keeps reported spans in a list, mostly for tests."""

    def __init__(self) -> None:
        self._spans: List[Span] = []
        self._lock = threading.Lock()

    def report(self, span: Span) -> None:
        with self._lock:
            self._spans.append(span)

    @property
    def spans(self) -> List[Span]:
        with self._lock:
            return list(self._spans)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()


class LoggingReporter(Reporter):
    """Logs span summary on report using the standard logging module."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("strand.spans")

    def report(self, span: Span) -> None:
        parent_id = format_span_id(span.context.parent_id) if span.context.parent_id else None
        self.logger.info(
            f"[span] operation={span.operation_name} "
            f"trace_id={format_trace_id(span.context.trace_id)} "
            f"span_id={format_span_id(span.context.span_id)} parent_id={parent_id} "
            f"duration_ns={span.duration_ns} tags={span.tags}"
        )


class CompositeReporter(Reporter):
    """Fans each span out to several reporters."""

    def __init__(self, *reporters: Reporter) -> None:
        self.reporters = list(reporters)

    def report(self, span: Span) -> None:
        for reporter in self.reporters:
            try:
                reporter.report(span)
            except Exception:
                logger.warning(f"Reporter {type(reporter).__name__} failed", exc_info=True)

    def close(self, timeout: Optional[float] = None) -> None:
        deadline = time.monotonic() + timeout if timeout is not None else None
        for reporter in self.reporters:
            remaining = max(0.0, deadline - time.monotonic()) if deadline is not None else None
            try:
                reporter.close(timeout=remaining)
            except Exception:
                logger.warning(f"Reporter {type(reporter).__name__} failed to close", exc_info=True)


class RemoteReporter(Reporter):
    """
    Buffers spans in a bounded queue and ships them through a transport from
    a background thread.

    ``report`` never blocks: when the queue is full the drop policy decides
    which span is lost (by default the incoming one) and the dropped counter
    grows. The worker wakes every ``flush_interval`` seconds, or early once
    ``max_batch_spans`` spans are waiting, and sends batches of at most
    ``max_batch_spans`` spans. Failed batches are counted and discarded,
    never retried.
    """

    def __init__(
        self,
        transport,
        process: Process,
        *,
        flush_interval: float = 1.0,
        max_queue_size: int = 1000,
        max_batch_spans: int = 100,
        close_timeout: float = 5.0,
        drop_policy: Optional[DropPolicy] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.transport = transport
        self.process = process
        self.flush_interval = flush_interval
        self.max_queue_size = max_queue_size
        self.max_batch_spans = max(1, max_batch_spans)
        self.close_timeout = close_timeout
        self.drop_policy = drop_policy or DEFAULT_DROP_POLICY
        self.metrics = metrics or Metrics()

        self._queue: Deque[Span] = deque()
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._event = threading.Event()
        self._shutdown = False
        self._worker = threading.Thread(target=self._worker_loop, name="strand-reporter", daemon=True)
        self._worker.start()

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def report(self, span: Span) -> None:
        with self._lock:
            closed = self._shutdown
            if not closed:
                dropped = self.drop_policy.handle(self._queue, span, self.max_queue_size)
                queue_length = len(self._queue)

        if closed:
            self._record_dropped(span, 1, "reporter closed")
            return
        if dropped:
            self._record_dropped(span, dropped, "reporter queue full")
        if queue_length >= self.max_batch_spans:
            self._event.set()

    def flush(self, timeout: Optional[float] = None) -> None:
        """Send everything queued now, giving up after ``timeout`` seconds."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            lock_timeout = -1 if deadline is None else max(0.0, deadline - time.monotonic())
            if not self._flush_once(lock_timeout):
                return
            if deadline is not None and time.monotonic() >= deadline:
                return

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker and make one last flush bounded by ``timeout``
        (default ``close_timeout``); whatever is still queued is discarded.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        timeout = self.close_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        self._event.set()
        self._worker.join(timeout=max(0.0, deadline - time.monotonic()))
        self.flush(timeout=max(0.0, deadline - time.monotonic()))

        with self._lock:
            remaining = len(self._queue)
            self._queue.clear()
        if remaining:
            self.metrics.increment(m.REPORTER_SPANS_DROPPED, remaining)
            logger.warning(f"Reporter closed with {remaining} unsent spans; discarding them")

        try:
            self.transport.close()
        except Exception:
            logger.warning("Transport failed to close", exc_info=True)

    # Internal
    def _worker_loop(self) -> None:
        """Background worker that periodically flushes spans."""
        while not self._shutdown:
            self._event.wait(timeout=self.flush_interval)
            self._event.clear()
            while not self._shutdown and self._flush_once():
                pass

    def _flush_once(self, lock_timeout: float = -1) -> bool:
        """Send one batch; False when nothing was sent."""
        if not self._flush_lock.acquire(timeout=lock_timeout):
            return False
        try:
            spans = self._drain_queue(self.max_batch_spans)
            if not spans:
                return False
            self._send(spans)
            return True
        finally:
            self._flush_lock.release()

    def _drain_queue(self, limit: int) -> List[Span]:
        """Drain spans from queue up to limit."""
        items: List[Span] = []
        with self._lock:
            while self._queue and len(items) < limit:
                items.append(self._queue.popleft())
        return items

    def _send(self, spans: Iterable[Span]) -> None:
        batch = Batch(process=self.process, spans=list(spans))
        try:
            sent = self.transport.send(batch)
        except TransportError as exc:
            sent = exc.details.get("sent", 0)
            self.metrics.increment(m.REPORTER_FAILURES)
            logger.warning(f"Failed to send batch of {len(batch)} spans: {exc}")
        except Exception:
            sent = 0
            self.metrics.increment(m.REPORTER_FAILURES)
            logger.warning(f"Unexpected error sending batch of {len(batch)} spans", exc_info=True)

        self.metrics.increment(m.REPORTER_SPANS_SUBMITTED, sent)
        if len(batch) > sent:
            self.metrics.increment(m.REPORTER_SPANS_DROPPED, len(batch) - sent)

    def _record_dropped(self, span: Span, count: int, reason: str) -> None:
        self.metrics.increment(m.REPORTER_SPANS_DROPPED, count)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s",
                QueueFullError(reason, details={"operation": span.operation_name, "dropped": count}),
            )
