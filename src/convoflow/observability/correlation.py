"""Correlation ID propagation across HTTP requests and bus events."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

# Set per request by the HTTP middleware and per event by bus handlers
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    Bus handlers use the event id so every log line emitted while handling
    one event can be grouped together.
    """
    value = cid or generate_correlation_id()
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)
