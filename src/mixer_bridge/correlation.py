"""Correlation ids for grouping the log lines of one session attempt.

``SessionManager.init()`` opens a fresh ``session-…`` scope, so every line
logged while connecting, syncing and applying events for that attempt shares
an id, even while an abandoned earlier attempt is still draining. ``main``
opens a ``process-…`` scope for everything else.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "get_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("correlation_id", default=None)


def _new_id(scope: str) -> str:
    return f"{scope}-{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(scope: str = "session", correlation_id: str | None = None) -> Iterator[str]:
    """Run the block under ``correlation_id`` (or a new ``{scope}-…`` id).

    The previous id is restored on exit, including when the block raises.
    """
    token = _correlation_id.set(correlation_id or _new_id(scope))
    try:
        yield _correlation_id.get() or ""
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id(scope: str = "task") -> str:
    """Return the current id, starting a ``{scope}-…`` id when there is none."""
    current = _correlation_id.get()
    if current is None:
        current = _new_id(scope)
        _ = _correlation_id.set(current)
    return current
