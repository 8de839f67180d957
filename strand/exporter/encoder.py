"""Wire encoding of span batches for the agent.

A message is a sequence of length-prefixed JSON records, big-endian::

    "STRD" | u8 version | u32 len | process | u16 count | count x (u32 len | span)

Batches that do not fit in one message are split across several, each
carrying its own copy of the process record.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import Any, Dict, List, Mapping, Tuple

from strand.errors import TransportError
from strand.exporter.batch import Batch, Process
from strand.tracer.span import ReferenceType, Span, TagValue
from strand.utils.helpers import format_span_id, format_trace_id, ns_to_us

logger = logging.getLogger(__name__)

MAGIC = b"STRD"
WIRE_VERSION = 1

_PREAMBLE = struct.Struct(">4sB")
_LENGTH = struct.Struct(">I")
_COUNT = struct.Struct(">H")
MAX_SPANS_PER_MESSAGE = 0xFFFF


def encode_tag(key: str, value: TagValue) -> Dict[str, Any]:
    if isinstance(value, bool):
        tag_type = "bool"
    elif isinstance(value, int):
        tag_type = "long"
    elif isinstance(value, float):
        tag_type = "double"
    else:
        tag_type = "string"
        value = str(value)
    return {"key": key, "type": tag_type, "value": value}


def encode_tags(tags: Mapping[str, TagValue]) -> List[Dict[str, Any]]:
    return [encode_tag(key, value) for key, value in tags.items()]


def span_to_dict(span: Span) -> Dict[str, Any]:
    context = span.context
    return {
        "traceId": format_trace_id(context.trace_id),
        "spanId": format_span_id(context.span_id),
        "parentSpanId": format_span_id(context.parent_id) if context.parent_id else None,
        "operationName": span.operation_name,
        "flags": context.flags,
        "startTime": ns_to_us(span.start_time_ns),
        "duration": ns_to_us(span.duration_ns or 0),
        "tags": encode_tags(span.tags),
        "logs": [
            {"timestamp": ns_to_us(record.timestamp_ns), "fields": [encode_tag(k, v) for k, v in record.fields]}
            for record in span.logs
        ],
        "references": [
            {
                "refType": ReferenceType(ref.type).value,
                "traceId": format_trace_id(ref.referenced_context.trace_id),
                "spanId": format_span_id(ref.referenced_context.span_id),
            }
            for ref in span.references
        ],
    }


def process_to_dict(process: Process) -> Dict[str, Any]:
    return {"serviceName": process.service_name, "tags": encode_tags(process.tags)}


def _describe(span: Span) -> str:
    return f"'{span.operation_name}' ({format_span_id(span.context.span_id)})"


class BatchEncoder:
    """Encodes batches into size-bounded messages."""

    def encode_record(self, record: Mapping[str, Any]) -> bytes:
        return json.dumps(record, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def encode_span(self, span: Span) -> bytes:
        return self.encode_record(span_to_dict(span))

    def encode_process(self, process: Process) -> bytes:
        return self.encode_record(process_to_dict(process))

    def encode(self, batch: Batch, max_message_size: int) -> Tuple[List[bytes], List[Span]]:
        """
        Split a batch into messages no larger than ``max_message_size``.

        Returns:
            (messages, rejected) where ``rejected`` lists spans that were left
            out, either because they cannot be encoded or because they do not
            fit in a message on their own.

        Raises:
            TransportError: the process record cannot be encoded or alone
                exceeds the limit
        """
        try:
            process_record = self.encode_process(batch.process)
        except (TypeError, ValueError) as exc:
            raise TransportError(
                "process metadata cannot be encoded", details={"reason": exc, "sent": 0}
            ) from exc
        header = _PREAMBLE.pack(MAGIC, WIRE_VERSION) + _LENGTH.pack(len(process_record)) + process_record
        base_size = len(header) + _COUNT.size
        if base_size >= max_message_size:
            raise TransportError(
                "process metadata does not fit in a message",
                details={"size": base_size, "max_message_size": max_message_size, "sent": 0},
            )

        messages: List[bytes] = []
        rejected: List[Span] = []
        records: List[bytes] = []
        size = base_size
        for span in batch.spans:
            try:
                record = self.encode_span(span)
            except (TypeError, ValueError) as exc:
                # UnicodeEncodeError for lone surrogates lands here
                logger.warning(f"Span {_describe(span)} cannot be encoded ({exc}); dropping it")
                rejected.append(span)
                continue
            record_size = _LENGTH.size + len(record)
            if base_size + record_size > max_message_size:
                logger.warning(
                    f"Span {_describe(span)} exceeds the {max_message_size}-byte message limit; dropping it"
                )
                rejected.append(span)
                continue
            if records and (size + record_size > max_message_size or len(records) >= MAX_SPANS_PER_MESSAGE):
                messages.append(self._assemble(header, records))
                records = []
                size = base_size
            records.append(record)
            size += record_size
        if records:
            messages.append(self._assemble(header, records))
        return messages, rejected

    @staticmethod
    def _assemble(header: bytes, records: List[bytes]) -> bytes:
        parts = [header, _COUNT.pack(len(records))]
        for record in records:
            parts.append(_LENGTH.pack(len(record)))
            parts.append(record)
        return b"".join(parts)

    @staticmethod
    def count_spans(message: bytes) -> int:
        """Number of span records in an encoded message."""
        (process_length,) = _LENGTH.unpack_from(message, _PREAMBLE.size)
        (count,) = _COUNT.unpack_from(message, _PREAMBLE.size + _LENGTH.size + process_length)
        return count

    def decode(self, message: bytes) -> Dict[str, Any]:
        """
        Parse a message back into ``{"process": {...}, "spans": [...]}``.

        Raises:
            ValueError: the message is not a valid batch message
        """
        try:
            magic, version = _PREAMBLE.unpack_from(message, 0)
            if magic != MAGIC or version != WIRE_VERSION:
                raise ValueError(f"unknown message preamble {magic!r}/{version}")
            offset = _PREAMBLE.size
            process, offset = self._read_record(message, offset)
            (count,) = _COUNT.unpack_from(message, offset)
            offset += _COUNT.size
            spans = []
            for _ in range(count):
                span, offset = self._read_record(message, offset)
                spans.append(span)
        except struct.error as exc:
            raise ValueError(f"truncated message: {exc}") from exc
        return {"process": process, "spans": spans}

    @staticmethod
    def _read_record(message: bytes, offset: int) -> Tuple[Dict[str, Any], int]:
        (length,) = _LENGTH.unpack_from(message, offset)
        start = offset + _LENGTH.size
        end = start + length
        if end > len(message):
            raise ValueError("record extends past end of message")
        return json.loads(message[start:end].decode("utf-8")), end
