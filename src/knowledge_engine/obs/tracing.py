"""Per-query timing and log context."""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


class Timer:
    """Context timer; `elapsed_ms` is set on exit."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def lap_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


@contextmanager
def bind_query_context(query_id: str, workspace_id: str) -> Iterator[None]:
    """Attach query identity to every log line emitted inside the block."""

    with structlog.contextvars.bound_contextvars(query_id=query_id, workspace_id=workspace_id):
        yield
