"""Request-scoped context for log and audit correlation.

Each outbound call sequence may run under a correlation id so that retry,
escalation and fetch events emitted by different modules can be tied back
to the same logical request. The id lives in a ContextVar, so concurrent
sequences on one event loop never see each other's ids.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id(prefix: str = "req") -> str:
    """Generate a new correlation id like ``req_1a2b3c4d5e6f``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> str:
    """Return the correlation id for the current context ("" if unset)."""
    return correlation_id.get()


@contextmanager
def correlation_context(value: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the ``with`` block.

    Args:
        value: Correlation id to bind; a fresh one is generated if omitted.

    Yields:
        The bound correlation id.
    """
    bound = value or generate_correlation_id()
    token = correlation_id.set(bound)
    try:
        yield bound
    finally:
        correlation_id.reset(token)
