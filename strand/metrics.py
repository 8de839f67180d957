"""Process-wide counters owned by a tracer and its reporter."""

from __future__ import annotations

import threading
from typing import Dict

SPANS_STARTED = "spans_started"
SPANS_FINISHED = "spans_finished"
TRACES_STARTED_SAMPLED = "traces_started_sampled"
TRACES_STARTED_NOT_SAMPLED = "traces_started_not_sampled"
REPORTER_SPANS_SUBMITTED = "reporter_spans_submitted"
REPORTER_SPANS_DROPPED = "reporter_spans_dropped"
REPORTER_FAILURES = "reporter_failures"
SAMPLER_UPDATES = "sampler_updates"
SAMPLER_UPDATE_FAILURES = "sampler_update_failures"
PROPAGATION_ERRORS = "propagation_errors"
DOUBLE_FINISHES = "double_finishes"

COUNTERS = (
    SPANS_STARTED,
    SPANS_FINISHED,
    TRACES_STARTED_SAMPLED,
    TRACES_STARTED_NOT_SAMPLED,
    REPORTER_SPANS_SUBMITTED,
    REPORTER_SPANS_DROPPED,
    REPORTER_FAILURES,
    SAMPLER_UPDATES,
    SAMPLER_UPDATE_FAILURES,
    PROPAGATION_ERRORS,
    DOUBLE_FINISHES,
)


class Metrics:
    """Thread-safe named counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Return a copy of all counters."""
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            for name in self._counters:
                self._counters[name] = 0
