"""Tests for span creation, inheritance and the finish state machine."""

import asyncio
import logging

import pytest

from strand.context import get_current_span
from strand.metrics import DOUBLE_FINISHES, SPANS_FINISHED, SPANS_STARTED
from strand.processors import ConstSampler, InMemoryReporter
from strand.tracer import (
    ReferenceType,
    SpanContext,
    SpanState,
    Tracer,
    child_of,
    follows_from,
)


@pytest.fixture
def reporter():
    return InMemoryReporter()


@pytest.fixture
def tracer(reporter):
    t = Tracer("lifecycle-test", reporter, ConstSampler(True))
    yield t
    t.close()


@pytest.fixture
def unsampled_tracer(reporter):
    t = Tracer("lifecycle-test", reporter, ConstSampler(False))
    yield t
    t.close()


class TestInheritance:
    @pytest.mark.parametrize("sampled", [True, False])
    def test_descendants_share_trace_and_sampled_flag(self, reporter, sampled):
        tracer = Tracer("svc", reporter, ConstSampler(sampled))
        root = tracer.start_span("root")
        spans = [root]
        for depth in range(10):
            spans.append(tracer.start_span(f"hop-{depth}", child_of=spans[-1]))

        for parent, child in zip(spans, spans[1:]):
            assert child.context.trace_id == root.context.trace_id
            assert child.context.sampled is sampled
            assert child.context.parent_id == parent.context.span_id
            assert child.context.span_id != parent.context.span_id
        assert len({s.context.span_id for s in spans}) == len(spans)
        tracer.close()

    def test_root_span(self, tracer):
        root = tracer.start_span("root")
        assert root.context.parent_id is None
        assert root.context.is_valid()
        assert root.references == ()

    def test_child_of_context(self, tracer):
        remote = SpanContext(trace_id=0xABC, span_id=0xDEF, sampled=False)
        span = tracer.start_span("handler", child_of=remote)
        assert span.context.trace_id == 0xABC
        assert span.context.parent_id == 0xDEF
        assert span.context.sampled is False
        assert not span.is_recording()

    def test_primary_parent_is_first_child_of(self, tracer):
        a = tracer.start_span("a")
        b = tracer.start_span("b")
        span = tracer.start_span("c", references=[follows_from(a.context), child_of(b.context)])
        assert span.context.trace_id == b.context.trace_id
        assert span.context.parent_id == b.context.span_id
        assert [r.type for r in span.references] == [ReferenceType.FOLLOWS_FROM, ReferenceType.CHILD_OF]

    def test_follows_from_only(self, tracer):
        a = tracer.start_span("a")
        span = tracer.start_span("b", references=[follows_from(a.context)])
        assert span.context.parent_id == a.context.span_id

    def test_duplicate_references_collapse(self, tracer):
        a = tracer.start_span("a")
        span = tracer.start_span("b", child_of=a, references=[child_of(a.context)])
        assert len(span.references) == 1

    def test_baggage_inherited(self, tracer):
        root = tracer.start_span("root")
        root.set_baggage_item("tenant", "acme")
        child = tracer.start_span("child", child_of=root)
        child.set_baggage_item("step", "2")
        grandchild = tracer.start_span("grandchild", child_of=child)

        assert grandchild.get_baggage_item("tenant") == "acme"
        assert grandchild.get_baggage_item("step") == "2"
        assert root.get_baggage_item("step") is None

    def test_baggage_on_unsampled_span(self, unsampled_tracer):
        root = unsampled_tracer.start_span("root")
        root.set_baggage_item("tenant", "acme")
        child = unsampled_tracer.start_span("child", child_of=root)
        assert child.get_baggage_item("tenant") == "acme"


class TestTagsAndLogs:
    def test_tag_values_are_narrowed(self, tracer):
        # a child span, so the root's sampler tags stay out of the way
        root = tracer.start_span("root")
        span = tracer.start_span("op", child_of=root)
        span.set_tag("s", "x").set_tag("i", 3).set_tag("f", 1.5).set_tag("b", False)
        span.set_tag("obj", {"nested": [1, 2]})
        span.set_tag("i", 4)

        assert span.tags == {"s": "x", "i": 4, "f": 1.5, "b": False, "obj": "{'nested': [1, 2]}"}

    def test_log_records(self, tracer):
        span = tracer.start_span("op")
        span.log({"event": "cache.miss", "key": "user:1"}, timestamp_ns=span.start_time_ns + 5)
        assert len(span.logs) == 1
        assert span.logs[0].timestamp_ns == span.start_time_ns + 5
        assert dict(span.logs[0].fields) == {"event": "cache.miss", "key": "user:1"}

    def test_record_exception(self, tracer):
        span = tracer.start_span("op")
        try:
            raise KeyError("missing")
        except KeyError as exc:
            span.record_exception(exc)

        assert span.tags["error"] is True
        fields = dict(span.logs[-1].fields)
        assert fields["event"] == "error"
        assert fields["error.kind"] == "KeyError"
        assert "KeyError" in fields["stack"]

    def test_unsampled_span_ignores_mutation(self, unsampled_tracer):
        span = unsampled_tracer.start_span("op", tags={"k": "v"})
        span.set_tag("a", 1)
        span.log({"event": "x"})
        span.set_operation_name("renamed")

        assert span.state is SpanState.NON_RECORDING
        assert span.tags == {}
        assert span.logs == ()
        assert span.operation_name == "op"


class TestFinish:
    def test_finish_reports_recording_span(self, tracer, reporter):
        span = tracer.start_span("op")
        span.finish()
        assert span.is_finished()
        assert reporter.spans == [span]
        assert span.duration_ns >= 0

    def test_unsampled_span_not_reported(self, unsampled_tracer, reporter):
        span = unsampled_tracer.start_span("op")
        span.finish()
        assert span.is_finished()
        assert reporter.spans == []
        assert unsampled_tracer.metrics.get(SPANS_STARTED) == 1
        assert unsampled_tracer.metrics.get(SPANS_FINISHED) == 1

    def test_mutation_after_finish_is_noop(self, tracer, reporter):
        root = tracer.start_span("root")
        span = tracer.start_span("op", child_of=root, tags={"k": "v"})
        span.finish()
        span.set_tag("k", "changed")
        span.set_tags({"new": 1})
        span.log({"event": "late"})
        span.set_baggage_item("late", "1")
        span.set_operation_name("renamed")

        reported = reporter.spans[0]
        assert reported.tags == {"k": "v"}
        assert reported.logs == ()
        assert reported.get_baggage_item("late") is None
        assert reported.operation_name == "op"

    def test_double_finish(self, tracer, reporter, caplog):
        span = tracer.start_span("op")
        span.finish(finish_time_ns=span.start_time_ns + 100)
        with caplog.at_level(logging.ERROR, logger="strand.tracer.span"):
            span.finish(finish_time_ns=span.start_time_ns + 999)

        assert "finished more than once" in caplog.text
        assert span.end_time_ns == span.start_time_ns + 100
        assert len(reporter.spans) == 1
        assert tracer.metrics.get(DOUBLE_FINISHES) == 1

    def test_finish_before_start_is_clamped(self, tracer, caplog):
        span = tracer.start_span("op", start_time_ns=1_000_000)
        with caplog.at_level(logging.WARNING, logger="strand.tracer.span"):
            span.finish(finish_time_ns=500_000)
        assert span.end_time_ns == span.start_time_ns
        assert span.duration_ns == 0
        assert "clamping" in caplog.text

    def test_explicit_times(self, tracer):
        span = tracer.start_span("op", start_time_ns=1_000)
        span.finish(finish_time_ns=4_000)
        assert span.duration_ns == 3_000

    def test_spans_reported_in_finish_order(self, tracer, reporter):
        names = [f"op-{i}" for i in range(20)]
        for name in names:
            tracer.start_span(name).finish()
        assert [s.operation_name for s in reporter.spans] == names


class TestActiveSpan:
    def test_context_manager_activates_and_finishes(self, tracer, reporter):
        assert get_current_span() is None
        with tracer.start_as_current_span("outer") as outer:
            assert tracer.active_span is outer
            with tracer.start_as_current_span("inner") as inner:
                assert tracer.active_span is inner
                assert inner.context.parent_id == outer.context.span_id
            assert tracer.active_span is outer
        assert tracer.active_span is None
        assert [s.operation_name for s in reporter.spans] == ["inner", "outer"]

    def test_ignore_active_span(self, tracer):
        with tracer.start_as_current_span("outer") as outer:
            span = tracer.start_span("detached", ignore_active_span=True)
            assert span.context.trace_id != outer.context.trace_id
            assert span.context.parent_id is None

    def test_exception_recorded_and_propagated(self, tracer, reporter):
        with pytest.raises(RuntimeError):
            with tracer.start_as_current_span("failing"):
                raise RuntimeError("boom")

        span = reporter.spans[0]
        assert span.is_finished()
        assert span.tags["error"] is True
        assert tracer.active_span is None

    def test_manual_finish_inside_block(self, tracer):
        with tracer.start_as_current_span("op") as span:
            span.finish()
        assert tracer.metrics.get(DOUBLE_FINISHES) == 0

    def test_async_tasks_keep_separate_active_spans(self, tracer, reporter):
        async def handler(name):
            async with tracer.start_as_current_span(name) as span:
                await asyncio.sleep(0.01)
                assert tracer.active_span is span
                child = tracer.start_span(f"{name}.child")
                child.finish()
                return span, child

        async def main():
            return await asyncio.gather(handler("a"), handler("b"))

        (a, a_child), (b, b_child) = asyncio.run(main())
        assert a_child.context.parent_id == a.context.span_id
        assert b_child.context.parent_id == b.context.span_id
        assert a.context.trace_id != b.context.trace_id


class TestTracer:
    def test_empty_service_name(self, reporter):
        from strand.errors import ConfigError

        with pytest.raises(ConfigError):
            Tracer("", reporter, ConstSampler(True))

    def test_close_is_idempotent(self, reporter):
        sampler = ConstSampler(True)
        tracer = Tracer("svc", reporter, sampler)
        tracer.close()
        tracer.close()

    def test_context_manager_closes(self):
        from unittest import mock

        reporter = mock.Mock()
        with Tracer("svc", reporter, ConstSampler(True)):
            pass
        reporter.close.assert_called_once_with(timeout=None)

    def test_process_tags(self, reporter):
        tracer = Tracer("svc", reporter, ConstSampler(True), tags={"env": "test"})
        assert tracer.process.service_name == "svc"
        assert tracer.process.tags["env"] == "test"
        assert "strand.version" in tracer.process.tags
        tracer.close()

    def test_failing_reporter_does_not_raise(self):
        from unittest import mock

        reporter = mock.Mock()
        reporter.report.side_effect = RuntimeError("down")
        tracer = Tracer("svc", reporter, ConstSampler(True))
        tracer.start_span("op").finish()
        tracer.close()

    def test_failing_close_does_not_raise(self, caplog):
        from unittest import mock

        reporter = mock.Mock()
        reporter.close.side_effect = RuntimeError("stuck")
        sampler = mock.Mock()
        sampler.decide.return_value = ConstSampler(True).decide(1, "op")
        sampler.close.side_effect = RuntimeError("stuck")
        tracer = Tracer("svc", reporter, sampler)
        tracer.close()

        sampler.close.assert_called_once_with()
        assert "Reporter failed to close cleanly" in caplog.text
        assert "Sampler failed to close cleanly" in caplog.text
