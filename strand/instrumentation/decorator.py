"""@traced decorator for instrumenting functions."""

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable, Dict, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from strand.tracer.tracer import Tracer


def traced(
    tracer: "Tracer",
    operation_name: Optional[str] = None,
    *,
    tags: Optional[Mapping[str, Any]] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorate a function to run inside a span.

    - Supports sync and async functions.
    - The span is a child of the active span, if any, and is active
      while the function runs.
    - Exceptions are recorded on the span and re-raised.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        name = operation_name or func.__qualname__
        span_tags: Dict[str, Any] = {"code.function": func.__qualname__, "code.namespace": func.__module__ or ""}
        span_tags.update(tags or {})

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                async with tracer.start_as_current_span(name, tags=span_tags):
                    return await func(*args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with tracer.start_as_current_span(name, tags=span_tags):
                return func(*args, **kwargs)

        return sync_wrapper

    return decorator
