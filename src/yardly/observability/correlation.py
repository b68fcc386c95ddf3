"""Correlation IDs: one per HTTP request, inherited by payment polling tasks."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def get_correlation_id() -> str:
    """Correlation ID bound to the current request/task ("" outside one)."""
    return _correlation_id.get()


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind *cid* (or a fresh ID) for the duration of the block.

    Threads do not inherit context variables: a background task enters its
    own scope with the ID captured by the code that started it.
    """
    token = _correlation_id.set(cid or new_correlation_id())
    try:
        yield _correlation_id.get()
    finally:
        _correlation_id.reset(token)
