"""Tests for reporters: queueing, dropping, flushing and shutdown."""

import logging
import threading
import time
from unittest import mock

import pytest

from strand.errors import TransportError
from strand.exporter import Process, Transport
from strand.metrics import (
    Metrics,
    REPORTER_FAILURES,
    REPORTER_SPANS_DROPPED,
    REPORTER_SPANS_SUBMITTED,
)
from strand.processors import (
    CompositeReporter,
    ConstSampler,
    DropOldestPolicy,
    InMemoryReporter,
    LoggingReporter,
    NullReporter,
    RemoteReporter,
)
from strand.tracer import Tracer


class RecordingTransport(Transport):
    """Collects batches; optionally blocks or fails."""

    def __init__(self, delay=0.0, fail=False):
        self.delay = delay
        self.fail = fail
        self.batches = []
        self.closed = False
        self._lock = threading.Lock()

    def send(self, batch):
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise TransportError("agent unreachable", details={"sent": 0})
        with self._lock:
            self.batches.append(batch)
        return len(batch)

    def close(self):
        self.closed = True

    @property
    def spans(self):
        with self._lock:
            return [span for batch in self.batches for span in batch.spans]


PROCESS = Process(service_name="reporter-test", tags={"env": "test"})


def _finished_spans(count, name="op"):
    tracer = Tracer("reporter-test", NullReporter(), ConstSampler(True))
    spans = []
    for i in range(count):
        span = tracer.start_span(f"{name}-{i}")
        span.finish()
        spans.append(span)
    return spans


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


class TestRemoteReporter:
    def test_flush_sends_batches_in_order(self):
        transport = RecordingTransport()
        metrics = Metrics()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=60, max_batch_spans=4, metrics=metrics)
        spans = _finished_spans(10)
        for span in spans:
            reporter.report(span)

        reporter.close(timeout=5)
        assert transport.spans == spans
        assert all(len(batch) <= 4 for batch in transport.batches)
        assert all(batch.process is PROCESS for batch in transport.batches)
        assert metrics.get(REPORTER_SPANS_SUBMITTED) == 10
        assert metrics.get(REPORTER_SPANS_DROPPED) == 0
        assert transport.closed

    def test_periodic_flush(self):
        transport = RecordingTransport()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=0.05)
        reporter.report(_finished_spans(1)[0])
        try:
            assert _wait_for(lambda: len(transport.spans) == 1)
        finally:
            reporter.close(timeout=1)

    def test_batch_size_wakes_worker(self):
        transport = RecordingTransport()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=60, max_batch_spans=5)
        for span in _finished_spans(5):
            reporter.report(span)
        try:
            assert _wait_for(lambda: len(transport.spans) == 5)
        finally:
            reporter.close(timeout=1)

    def test_full_queue_drops_newest(self):
        transport = RecordingTransport()
        metrics = Metrics()
        reporter = RemoteReporter(
            transport, PROCESS, flush_interval=60, max_queue_size=3, max_batch_spans=100, metrics=metrics
        )
        spans = _finished_spans(5)
        for span in spans:
            reporter.report(span)

        assert reporter.queue_length == 3
        assert metrics.get(REPORTER_SPANS_DROPPED) == 2
        reporter.close(timeout=5)
        assert transport.spans == spans[:3]

    def test_drop_oldest_policy(self):
        transport = RecordingTransport()
        metrics = Metrics()
        reporter = RemoteReporter(
            transport,
            PROCESS,
            flush_interval=60,
            max_queue_size=3,
            drop_policy=DropOldestPolicy(),
            metrics=metrics,
        )
        spans = _finished_spans(5)
        for span in spans:
            reporter.report(span)

        reporter.close(timeout=5)
        assert transport.spans == spans[2:]
        assert metrics.get(REPORTER_SPANS_DROPPED) == 2

    def test_transport_failure_is_counted_not_raised(self, caplog):
        transport = RecordingTransport(fail=True)
        metrics = Metrics()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=60, metrics=metrics)
        for span in _finished_spans(3):
            reporter.report(span)

        with caplog.at_level(logging.WARNING, logger="strand.processors.reporter"):
            reporter.flush(timeout=5)
        reporter.close(timeout=1)

        assert "agent unreachable" in caplog.text
        assert metrics.get(REPORTER_FAILURES) == 1
        assert metrics.get(REPORTER_SPANS_DROPPED) == 3
        assert metrics.get(REPORTER_SPANS_SUBMITTED) == 0

    def test_partial_send_counts(self):
        transport = mock.Mock()
        transport.send.side_effect = TransportError("chunk 2/2 failed", details={"sent": 2})
        metrics = Metrics()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=60, metrics=metrics)
        for span in _finished_spans(5):
            reporter.report(span)

        reporter.close(timeout=5)
        assert metrics.get(REPORTER_SPANS_SUBMITTED) == 2
        assert metrics.get(REPORTER_SPANS_DROPPED) == 3

    def test_unexpected_transport_error(self):
        transport = mock.Mock()
        transport.send.side_effect = RuntimeError("bug")
        metrics = Metrics()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=60, metrics=metrics)
        reporter.report(_finished_spans(1)[0])

        reporter.close(timeout=5)
        assert metrics.get(REPORTER_FAILURES) == 1
        assert metrics.get(REPORTER_SPANS_DROPPED) == 1

    def test_close_is_bounded_with_slow_transport(self):
        transport = RecordingTransport(delay=0.5)
        metrics = Metrics()
        reporter = RemoteReporter(
            transport, PROCESS, flush_interval=60, max_batch_spans=1, metrics=metrics
        )
        for span in _finished_spans(20):
            reporter.report(span)

        start = time.monotonic()
        reporter.close(timeout=0.3)
        elapsed = time.monotonic() - start

        # one in-flight send may overrun the deadline, but not the whole queue
        assert elapsed < 2.0
        assert metrics.get(REPORTER_SPANS_DROPPED) + metrics.get(REPORTER_SPANS_SUBMITTED) >= 18
        assert metrics.get(REPORTER_SPANS_DROPPED) > 0
        assert reporter.queue_length == 0

    def test_report_after_close_is_dropped(self):
        metrics = Metrics()
        transport = RecordingTransport()
        reporter = RemoteReporter(transport, PROCESS, metrics=metrics)
        reporter.close(timeout=1)
        reporter.report(_finished_spans(1)[0])

        assert transport.spans == []
        assert metrics.get(REPORTER_SPANS_DROPPED) == 1

    def test_spans_reported_during_close_are_accounted(self):
        transport = RecordingTransport(delay=0.01)
        metrics = Metrics()
        reporter = RemoteReporter(
            transport, PROCESS, flush_interval=0.01, max_queue_size=10000, max_batch_spans=5, metrics=metrics
        )
        spans = _finished_spans(50)
        started = threading.Event()

        def produce():
            started.set()
            for _ in range(40):
                for span in spans:
                    reporter.report(span)

        producers = [threading.Thread(target=produce) for _ in range(4)]
        for t in producers:
            t.start()
        started.wait(1)
        reporter.close(timeout=0.2)
        for t in producers:
            t.join()
        reporter._worker.join(1)

        total = 4 * 40 * len(spans)
        assert reporter.queue_length == 0
        assert metrics.get(REPORTER_SPANS_SUBMITTED) + metrics.get(REPORTER_SPANS_DROPPED) == total
        assert metrics.get(REPORTER_SPANS_SUBMITTED) == len(transport.spans)

    def test_close_is_idempotent(self):
        transport = mock.Mock()
        reporter = RemoteReporter(transport, PROCESS)
        reporter.close(timeout=1)
        reporter.close(timeout=1)
        transport.close.assert_called_once_with()


class TestBackpressure:
    def test_overload_drops_without_blocking(self):
        transport = RecordingTransport(delay=0.2)
        metrics = Metrics()
        reporter = RemoteReporter(
            transport, PROCESS, flush_interval=0.01, max_queue_size=50, max_batch_spans=10, metrics=metrics
        )
        tracer = Tracer("overload", reporter, ConstSampler(True), metrics=metrics)

        worst = 0.0
        for i in range(5000):
            start = time.perf_counter()
            tracer.start_span(f"op-{i}").finish()
            worst = max(worst, time.perf_counter() - start)

        assert metrics.get(REPORTER_SPANS_DROPPED) > 0
        # a blocked producer would wait out the 0.2s transport delay
        assert worst < 0.1
        tracer.close(timeout=0.5)

    def test_concurrent_producers(self):
        transport = RecordingTransport()
        metrics = Metrics()
        reporter = RemoteReporter(transport, PROCESS, flush_interval=0.01, max_queue_size=10000, metrics=metrics)
        tracer = Tracer("concurrent", reporter, ConstSampler(True), metrics=metrics)

        def produce(n):
            for i in range(n):
                with tracer.start_as_current_span(f"op-{i}"):
                    pass

        threads = [threading.Thread(target=produce, args=(200,)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        tracer.close(timeout=5)

        assert len(transport.spans) == 1600
        assert metrics.get(REPORTER_SPANS_SUBMITTED) == 1600


class TestOtherReporters:
    def test_logging_reporter(self, caplog):
        span = _finished_spans(1, name="logged")[0]
        with caplog.at_level(logging.INFO, logger="strand.spans"):
            LoggingReporter().report(span)
        assert "[span] operation=logged-0" in caplog.text
        assert f"span_id={span.context.span_id:016x}" in caplog.text

    def test_composite_reporter_fans_out(self):
        first, second = InMemoryReporter(), InMemoryReporter()
        failing = mock.Mock()
        failing.report.side_effect = RuntimeError("down")
        composite = CompositeReporter(failing, first, second)
        span = _finished_spans(1)[0]

        composite.report(span)
        composite.close(timeout=1)

        assert first.spans == [span]
        assert second.spans == [span]
        failing.close.assert_called_once()

    def test_in_memory_reporter_clear(self):
        reporter = InMemoryReporter()
        reporter.report(_finished_spans(1)[0])
        reporter.clear()
        assert reporter.spans == []

    def test_null_reporter(self):
        reporter = NullReporter()
        reporter.report(_finished_spans(1)[0])
        reporter.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
