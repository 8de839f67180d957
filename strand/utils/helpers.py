"""Helper functions for trace/span identifiers and timestamps."""

from __future__ import annotations

import time
from typing import Optional

from opentelemetry.sdk.trace.id_generator import RandomIdGenerator

_id_generator = RandomIdGenerator()

TRACE_ID_MAX = (1 << 128) - 1
SPAN_ID_MAX = (1 << 64) - 1


def generate_trace_id() -> int:
    """Return a random, non-zero 128-bit trace id."""
    return _id_generator.generate_trace_id()


def generate_span_id() -> int:
    """Return a random, non-zero 64-bit span id."""
    return _id_generator.generate_span_id()


def now_ns() -> int:
    return time.time_ns()


def ns_to_us(value: int) -> int:
    return value // 1000


def get_duration_ns(start_ns: int, end_ns: Optional[int]) -> Optional[int]:
    """
    Get span duration in nanoseconds.

    Returns:
        Duration in nanoseconds, or None if the span hasn't finished
    """
    if end_ns is None:
        return None
    return end_ns - start_ns


def format_trace_id(trace_id: int) -> str:
    """
    Format a 128-bit trace id as a 32-character lowercase hex string.
    """
    return format(trace_id, '032x')


def format_span_id(span_id: int) -> str:
    """
    Format a 64-bit span id as a 16-character lowercase hex string.
    """
    return format(span_id, '016x')


def parse_trace_id(hex_string: str) -> int:
    """
    Parse a hex trace id (at most 32 digits).

    Raises:
        ValueError: if the string is empty, too long or not hex
    """
    return _parse_hex(hex_string, 32)


def parse_span_id(hex_string: str) -> int:
    """
    Parse a hex span id (at most 16 digits).

    Raises:
        ValueError: if the string is empty, too long or not hex
    """
    return _parse_hex(hex_string, 16)


def _parse_hex(hex_string: str, max_digits: int) -> int:
    value = (hex_string or "").strip()
    if not value or len(value) > max_digits:
        raise ValueError(f"expected 1-{max_digits} hex digits, got {hex_string!r}")
    # int() would also accept "0x", "_" and signs
    if any(ch not in "0123456789abcdefABCDEF" for ch in value):
        raise ValueError(f"not a hex value: {hex_string!r}")
    return int(value, 16)
