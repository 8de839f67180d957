"""
FastAPI middleware helpers for tracing HTTP requests.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, TYPE_CHECKING

from strand.instrumentation.http_server import start_server_span

if TYPE_CHECKING:
    from strand.tracer.tracer import Tracer


def install_http_middleware(app: Any, tracer: "Tracer", *, operation_name: str = "http.request") -> None:
    """
    Attach an HTTP middleware that wraps each request in a server span.

    - Continues the caller's trace from the request headers
    - Records method/path and response status code
    """

    @app.middleware("http")
    async def tracing_middleware(request, call_next: Callable[[Any], Awaitable[Any]]):  # type: ignore
        tags = {
            "http.method": request.method,
            "http.target": request.url.path,
        }
        async with start_server_span(tracer, operation_name, dict(request.headers), tags=tags) as span:
            response = await call_next(request)
            span.set_tag("http.status_code", response.status_code)
            return response

