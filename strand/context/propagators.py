"""Span context propagation over text-map, HTTP-header and binary carriers."""

from __future__ import annotations

import struct
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple
from urllib.parse import quote, unquote

from strand.errors import PropagationError
from strand.tracer.span_context import FLAG_SAMPLED, SpanContext
from strand.utils.helpers import format_span_id, format_trace_id, parse_span_id, parse_trace_id

TRACE_ID_KEY = "trace-id"
SPAN_ID_KEY = "span-id"
PARENT_SPAN_ID_KEY = "parent-span-id"
SAMPLED_KEY = "sampled-flag"
BAGGAGE_PREFIX = "baggage-"

BINARY_VERSION = 1

# version | trace id (high, low) | span id | parent id | flags | baggage count
_BINARY_HEADER = struct.Struct(">BQQQQBI")
_BINARY_LENGTH = struct.Struct(">I")
_U64_MASK = (1 << 64) - 1


class Format:
    """Carrier formats understood by Tracer.inject/extract."""

    TEXT_MAP = "text_map"
    HTTP_HEADERS = "http_headers"
    BINARY = "binary"


class Propagator:
    """Base propagator interface."""

    def inject(self, span_context: SpanContext, carrier: Any) -> None:
        raise NotImplementedError

    def extract(self, carrier: Any) -> Optional[SpanContext]:
        """
        Return the context found in the carrier, or None when there is none.

        Raises:
            PropagationError: the carrier holds a partial or malformed context
        """
        raise NotImplementedError


class TextMapPropagator(Propagator):
    """
    One carrier key per context field, plus ``baggage-<key>`` entries.

    With ``url_encoding`` baggage values are percent-encoded and key lookup
    is case-insensitive, which is what HTTP header carriers need.
    """

    def __init__(self, url_encoding: bool = False) -> None:
        self.url_encoding = url_encoding

    def inject(self, span_context: SpanContext, carrier: MutableMapping[str, str]) -> None:
        carrier[TRACE_ID_KEY] = format_trace_id(span_context.trace_id)
        carrier[SPAN_ID_KEY] = format_span_id(span_context.span_id)
        if span_context.parent_id:
            carrier[PARENT_SPAN_ID_KEY] = format_span_id(span_context.parent_id)
        carrier[SAMPLED_KEY] = "1" if span_context.sampled else "0"
        for key, value in span_context.baggage:
            if self.url_encoding:
                value = quote(value, safe="")
            carrier[BAGGAGE_PREFIX + key] = value

    def extract(self, carrier: Mapping[str, str]) -> Optional[SpanContext]:
        if carrier is None:
            return None
        if not hasattr(carrier, "items"):
            raise PropagationError(
                "text carrier must be a mapping",
                details={"carrier_type": type(carrier).__name__},
            )

        fields: Dict[str, str] = {}
        baggage: List[Tuple[str, str]] = []
        for raw_key, value in carrier.items():
            # only the reserved names and the prefix are matched case-insensitively;
            # the baggage key itself keeps its case
            key = raw_key.lower() if self.url_encoding else raw_key
            if key in (TRACE_ID_KEY, SPAN_ID_KEY, PARENT_SPAN_ID_KEY, SAMPLED_KEY):
                fields[key] = value
            elif key.startswith(BAGGAGE_PREFIX) and len(key) > len(BAGGAGE_PREFIX):
                if self.url_encoding:
                    value = unquote(value)
                baggage.append((raw_key[len(BAGGAGE_PREFIX):], value))

        if TRACE_ID_KEY not in fields:
            return None

        missing = [k for k in (SPAN_ID_KEY, SAMPLED_KEY) if k not in fields]
        if missing:
            raise PropagationError("incomplete span context in carrier", details={"missing": ",".join(missing)})

        try:
            trace_id = parse_trace_id(fields[TRACE_ID_KEY])
            span_id = parse_span_id(fields[SPAN_ID_KEY])
            parent_id = None
            if fields.get(PARENT_SPAN_ID_KEY):
                parent_id = parse_span_id(fields[PARENT_SPAN_ID_KEY]) or None
        except ValueError as exc:
            raise PropagationError("malformed span context in carrier", details={"reason": str(exc)}) from exc

        sampled_flag = fields[SAMPLED_KEY].strip()
        if sampled_flag not in ("0", "1"):
            raise PropagationError("malformed sampled flag", details={SAMPLED_KEY: sampled_flag})
        if not trace_id or not span_id:
            raise PropagationError("zero trace or span id in carrier")

        return SpanContext(
            trace_id=trace_id,
            span_id=span_id,
            parent_id=parent_id,
            sampled=sampled_flag == "1",
            baggage=tuple(baggage),
        )


class HTTPHeadersPropagator(TextMapPropagator):
    """Text-map propagation tuned for HTTP headers."""

    def __init__(self) -> None:
        super().__init__(url_encoding=True)


class BinaryPropagator(Propagator):
    """
    Fixed-layout big-endian encoding for transports without headers.

    Inject appends to a ``bytearray``; extract reads any bytes-like object.
    """

    def inject(self, span_context: SpanContext, carrier: bytearray) -> None:
        if not isinstance(carrier, bytearray):
            raise PropagationError(
                "binary carrier must be a bytearray",
                details={"carrier_type": type(carrier).__name__},
            )
        carrier.extend(encode_binary_context(span_context))

    def extract(self, carrier: Any) -> Optional[SpanContext]:
        if not carrier:
            return None
        try:
            return decode_binary_context(bytes(carrier))
        except (struct.error, UnicodeDecodeError, TypeError) as exc:
            raise PropagationError("malformed binary span context", details={"reason": str(exc)}) from exc


def encode_binary_context(span_context: SpanContext) -> bytes:
    parts = [
        _BINARY_HEADER.pack(
            BINARY_VERSION,
            (span_context.trace_id >> 64) & _U64_MASK,
            span_context.trace_id & _U64_MASK,
            span_context.span_id,
            span_context.parent_id or 0,
            FLAG_SAMPLED if span_context.sampled else 0,
            len(span_context.baggage),
        )
    ]
    for key, value in span_context.baggage:
        for text in (key, value):
            data = text.encode("utf-8")
            parts.append(_BINARY_LENGTH.pack(len(data)))
            parts.append(data)
    return b"".join(parts)


def decode_binary_context(data: bytes) -> SpanContext:
    version, trace_high, trace_low, span_id, parent_id, flags, count = _BINARY_HEADER.unpack_from(data, 0)
    if version != BINARY_VERSION:
        raise PropagationError("unsupported binary context version", details={"version": version})

    offset = _BINARY_HEADER.size
    baggage: List[Tuple[str, str]] = []
    for _ in range(count):
        key, offset = _read_string(data, offset)
        value, offset = _read_string(data, offset)
        baggage.append((key, value))

    trace_id = (trace_high << 64) | trace_low
    if not trace_id or not span_id:
        raise PropagationError("zero trace or span id in binary carrier")

    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        parent_id=parent_id or None,
        sampled=bool(flags & FLAG_SAMPLED),
        baggage=tuple(baggage),
    )


def _read_string(data: bytes, offset: int) -> Tuple[str, int]:
    (length,) = _BINARY_LENGTH.unpack_from(data, offset)
    offset += _BINARY_LENGTH.size
    end = offset + length
    if end > len(data):
        raise PropagationError("truncated binary span context", details={"needed": end, "size": len(data)})
    return data[offset:end].decode("utf-8"), end
