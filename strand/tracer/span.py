"""Span implementation - the mutable recording object of one unit of work."""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union, TYPE_CHECKING

from strand.context.context import pop_span, push_span
from strand.errors import DoubleFinishError
from strand.tracer.span_context import SpanContext
from strand.utils.helpers import format_span_id, get_duration_ns, now_ns

if TYPE_CHECKING:
    from strand.tracer.tracer import Tracer

logger = logging.getLogger(__name__)

TagValue = Union[str, int, float, bool]

MAX_TAG_STRING_LENGTH = 1024


class SpanState(Enum):
    RECORDING = "recording"
    NON_RECORDING = "non_recording"
    FINISHED = "finished"


class ReferenceType(str, Enum):
    CHILD_OF = "CHILD_OF"
    FOLLOWS_FROM = "FOLLOWS_FROM"


@dataclass(frozen=True)
class Reference:
    type: ReferenceType
    referenced_context: SpanContext


def child_of(span_context: SpanContext) -> Reference:
    return Reference(ReferenceType.CHILD_OF, span_context)


def follows_from(span_context: SpanContext) -> Reference:
    return Reference(ReferenceType.FOLLOWS_FROM, span_context)


class LogRecord(NamedTuple):
    timestamp_ns: int
    fields: Tuple[Tuple[str, TagValue], ...]


def coerce_tag_value(value: Any) -> TagValue:
    """
    Narrow a value to the closed tag variant {str, int, float, bool}.

    Anything else is stored as its (truncated) string form.
    """
    if isinstance(value, (bool, str, int, float)):
        return value
    return str(value)[:MAX_TAG_STRING_LENGTH]


class Span:
    """
    A timed unit of work.

    A span is owned by the thread or task that started it; ``set_tag``,
    ``log`` and ``finish`` must not be called concurrently on one span.
    Unsampled spans never allocate tag or log storage and ignore every
    mutation. After ``finish`` the span is frozen and belongs to the reporter.
    """

    def __init__(
        self,
        tracer: "Tracer",
        context: SpanContext,
        operation_name: str,
        start_time_ns: Optional[int] = None,
        references: Tuple[Reference, ...] = (),
    ) -> None:
        self.tracer = tracer
        self.context = context
        self.operation_name = operation_name
        self.start_time_ns = start_time_ns if start_time_ns is not None else now_ns()
        self.end_time_ns: Optional[int] = None
        self.references = references
        self._state = SpanState.RECORDING if context.sampled else SpanState.NON_RECORDING
        self._tags: Optional[Dict[str, TagValue]] = {} if context.sampled else None
        self._logs: Optional[List[LogRecord]] = [] if context.sampled else None
        self._activation_token = None

    def __repr__(self) -> str:
        return (
            f"Span(operation_name={self.operation_name!r}, "
            f"span_id={format_span_id(self.context.span_id)}, state={self._state.value})"
        )

    @property
    def state(self) -> SpanState:
        return self._state

    @property
    def tags(self) -> Dict[str, TagValue]:
        """A copy of the span's tags (empty for unsampled spans)."""
        return dict(self._tags) if self._tags else {}

    @property
    def logs(self) -> Tuple[LogRecord, ...]:
        return tuple(self._logs) if self._logs else ()

    @property
    def duration_ns(self) -> Optional[int]:
        return get_duration_ns(self.start_time_ns, self.end_time_ns)

    def is_recording(self) -> bool:
        return self._state is SpanState.RECORDING

    def is_finished(self) -> bool:
        return self._state is SpanState.FINISHED

    def set_operation_name(self, operation_name: str) -> "Span":
        if self.is_recording():
            self.operation_name = operation_name
        return self

    def set_tag(self, key: str, value: Any) -> "Span":
        """Set a tag; last write wins per key."""
        if self._state is not SpanState.RECORDING:
            return self
        self._tags[key] = coerce_tag_value(value)
        return self

    def set_tags(self, tags: Mapping[str, Any]) -> "Span":
        if self._state is not SpanState.RECORDING:
            return self
        for key, value in tags.items():
            self._tags[key] = coerce_tag_value(value)
        return self

    def log(self, fields: Mapping[str, Any], timestamp_ns: Optional[int] = None) -> "Span":
        """Append a timestamped structured log entry."""
        if self._state is not SpanState.RECORDING:
            return self
        self._logs.append(
            LogRecord(
                timestamp_ns=timestamp_ns if timestamp_ns is not None else now_ns(),
                fields=tuple((key, coerce_tag_value(value)) for key, value in fields.items()),
            )
        )
        return self

    def record_exception(self, error: BaseException) -> None:
        """Tag the span as failed and log the exception details."""
        if self._state is not SpanState.RECORDING:
            return
        self.set_tag("error", True)
        self.log({
            "event": "error",
            "error.kind": type(error).__name__,
            "message": str(error),
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__))[:2000],
        })

    def set_baggage_item(self, key: str, value: str) -> "Span":
        """
        Attach a baggage item that travels with every descendant.

        Works on unsampled spans too: baggage propagates regardless of sampling.
        """
        if self._state is SpanState.FINISHED:
            return self
        self.context = self.context.with_baggage_item(key, value)
        if self._state is SpanState.RECORDING:
            self.log({"event": "baggage", "key": key, "value": value})
        return self

    def get_baggage_item(self, key: str) -> Optional[str]:
        return self.context.get_baggage_item(key)

    def finish(self, finish_time_ns: Optional[int] = None) -> None:
        """
        Finish the span and hand it to the reporter if it is recording.

        A second call is logged as a DoubleFinishError and otherwise ignored.
        """
        if self._state is SpanState.FINISHED:
            self.tracer._on_double_finish(self)
            logger.error(
                "%s",
                DoubleFinishError(
                    "span finished more than once",
                    details={
                        "operation": self.operation_name,
                        "span_id": format_span_id(self.context.span_id),
                    },
                ),
            )
            return

        end_time_ns = finish_time_ns if finish_time_ns is not None else now_ns()
        if end_time_ns < self.start_time_ns:
            logger.warning(
                f"Finish time of span '{self.operation_name}' precedes its start time; clamping"
            )
            end_time_ns = self.start_time_ns

        was_recording = self._state is SpanState.RECORDING
        self.end_time_ns = end_time_ns
        self._state = SpanState.FINISHED
        self.tracer._on_span_finished(self, was_recording)

    # Context manager support
    def __enter__(self) -> "Span":
        """Activate the span for the enclosed block."""
        self._activation_token = push_span(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc is not None:
                self.record_exception(exc)
            if not self.is_finished():
                self.finish()
        finally:
            if self._activation_token is not None:
                pop_span(self._activation_token)
                self._activation_token = None
        return False

    async def __aenter__(self) -> "Span":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)
