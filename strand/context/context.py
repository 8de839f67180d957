"""Context helpers for managing the active span - using OpenTelemetry's context API."""

from contextvars import Token
from typing import Optional, TYPE_CHECKING

from opentelemetry import context as context_api

if TYPE_CHECKING:
    from strand.tracer.span import Span

_ACTIVE_SPAN_KEY = context_api.create_key("strand-active-span")


def get_current_span() -> Optional["Span"]:
    """
    Return the span active in the current thread or asyncio task, if any.
    """
    return context_api.get_value(_ACTIVE_SPAN_KEY)


def push_span(span: "Span") -> Token:
    """
    Make a span the active one for the current execution context.

    Returns:
        Token needed to restore the previous state
    """
    ctx = context_api.set_value(_ACTIVE_SPAN_KEY, span)
    return context_api.attach(ctx)


def pop_span(token: Token) -> None:
    """
    Restore the previously active span using the provided token.

    Args:
        token: Token returned by push_span()
    """
    context_api.detach(token)
