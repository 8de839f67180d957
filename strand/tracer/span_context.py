"""Immutable trace metadata."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

FLAG_SAMPLED = 0x01


@dataclass(frozen=True)
class SpanContext:
    """
    Identity of a span's position in a trace.

    Baggage is kept as a tuple of (key, value) pairs so the context stays
    hashable and insertion order survives propagation.
    """

    trace_id: int
    span_id: int
    parent_id: Optional[int] = None
    sampled: bool = True
    baggage: Tuple[Tuple[str, str], ...] = field(default=())

    def is_valid(self) -> bool:
        return bool(self.trace_id and self.span_id)

    @property
    def flags(self) -> int:
        return FLAG_SAMPLED if self.sampled else 0

    @property
    def baggage_items(self) -> Dict[str, str]:
        return dict(self.baggage)

    def get_baggage_item(self, key: str) -> Optional[str]:
        for item_key, value in self.baggage:
            if item_key == key:
                return value
        return None

    def with_baggage_item(self, key: str, value: Optional[str]) -> "SpanContext":
        """Return a copy with ``key`` set (or removed when value is None)."""
        if value is None:
            items = [(k, v) for k, v in self.baggage if k != key]
        elif self.get_baggage_item(key) is None:
            items = list(self.baggage) + [(key, str(value))]
        else:
            items = [(k, str(value) if k == key else v) for k, v in self.baggage]
        return SpanContext(
            trace_id=self.trace_id,
            span_id=self.span_id,
            parent_id=self.parent_id,
            sampled=self.sampled,
            baggage=tuple(items),
        )
