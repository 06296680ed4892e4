"""
Correlation IDs for tracing one publish attempt across its log lines.

Each publish task runs inside its own correlation scope; the id is stored in a
contextvar so concurrent tasks never see each other's ids.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "get_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    auto_generate: bool = True,
) -> Generator[str | None]:
    """
    Scope a correlation id, restoring the previous one on exit.

    Args:
        correlation_id: Specific correlation ID to use (None to auto-generate)
        auto_generate: Generate a UUID4 hex id if correlation_id is None

    Yields:
        The correlation ID used in this context
    """
    if correlation_id is None and auto_generate:
        correlation_id = uuid.uuid4().hex

    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)
