"""Instrumentation helpers."""

from strand.instrumentation.decorator import traced
from strand.instrumentation.http_client import inject_headers
from strand.instrumentation.http_server import extract_parent_context, start_server_span
from strand.instrumentation.fastapi import install_http_middleware

__all__ = [
    "traced",
    "inject_headers",
    "extract_parent_context",
    "start_server_span",
    "install_http_middleware",
]
