"""Utility functions for Strand."""

from strand.utils.helpers import (
    get_duration_ns,
    format_trace_id,
    format_span_id,
    generate_span_id,
    generate_trace_id,
    now_ns,
    parse_trace_id,
    parse_span_id,
)

__all__ = [
    "get_duration_ns",
    "format_trace_id",
    "format_span_id",
    "generate_span_id",
    "generate_trace_id",
    "now_ns",
    "parse_trace_id",
    "parse_span_id",
]
