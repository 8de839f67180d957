"""Console transport for developer visibility."""

from __future__ import annotations

import sys

from strand.exporter.batch import Batch
from strand.exporter.transport import Transport
from strand.utils.helpers import format_span_id, format_trace_id


class ConsoleTransport(Transport):
    """Simple transport that prints spans to stdout (or provided stream)."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout

    def send(self, batch: Batch) -> int:
        for span in batch.spans:
            line = (
                f"[span] service={batch.process.service_name} operation={span.operation_name} "
                f"trace_id={format_trace_id(span.context.trace_id)} "
                f"span_id={format_span_id(span.context.span_id)} "
                f"duration_ns={span.duration_ns}"
            )
            if span.tags:
                line += f" tags={span.tags}"
            print(line, file=self.stream)
        return len(batch.spans)
