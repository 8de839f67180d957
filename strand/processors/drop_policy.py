"""Queue overflow handling strategies for span buffering."""

from typing import Deque

from strand.tracer.span import Span


class DropPolicy:
    """Base policy deciding how to handle span queue overflow."""

    def handle(self, queue: Deque[Span], span: Span, max_size: int) -> int:
        """
        Apply the drop policy.

        Returns the number of spans dropped (0 when the span fit).
        """
        raise NotImplementedError


class DropNewestPolicy(DropPolicy):
    """Drop the incoming span if the queue is full."""

    def handle(self, queue: Deque[Span], span: Span, max_size: int) -> int:
        if len(queue) < max_size:
            queue.append(span)
            return 0
        return 1


class DropOldestPolicy(DropPolicy):
    """Drop the oldest span to make room for a new one."""

    def handle(self, queue: Deque[Span], span: Span, max_size: int) -> int:
        if max_size <= 0:
            return 1
        dropped = 0
        while len(queue) >= max_size:
            queue.popleft()
            dropped += 1
        queue.append(span)
        return dropped


DEFAULT_DROP_POLICY = DropNewestPolicy()

DROP_POLICIES = {
    "newest": DropNewestPolicy,
    "oldest": DropOldestPolicy,
}
