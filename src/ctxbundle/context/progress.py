"""Progress events emitted to an external, fire-and-forget sink.

A sink is any callable taking a ``ProgressEvent``; it may be a coroutine
function. Sink failures are logged and never reach the request.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger("ctxbundle.progress")


class ProgressEventKind(str, Enum):
    ANALYZING = "analyzing"
    SELECTED = "selected"
    READING = "reading"
    CONTEXT_READY = "context_ready"


class ProgressEvent(BaseModel):
    """One progress notification."""

    kind: ProgressEventKind
    path: str = ""
    relevance: float | None = None
    file_count: int = 0
    token_count: int = 0
    provisional: bool = False

    @classmethod
    def analyzing(cls, path: str) -> ProgressEvent:
        return cls(kind=ProgressEventKind.ANALYZING, path=path)

    @classmethod
    def selected(cls, path: str, relevance: float, provisional: bool = False) -> ProgressEvent:
        return cls(kind=ProgressEventKind.SELECTED, path=path, relevance=relevance, provisional=provisional)

    @classmethod
    def reading(cls, path: str) -> ProgressEvent:
        return cls(kind=ProgressEventKind.READING, path=path)

    @classmethod
    def context_ready(cls, file_count: int, token_count: int) -> ProgressEvent:
        return cls(kind=ProgressEventKind.CONTEXT_READY, file_count=file_count, token_count=token_count)


ProgressSink = Callable[[ProgressEvent], Any]

_pending: set[asyncio.Task] = set()


def safe_emit(sink: ProgressSink | None, event: ProgressEvent) -> None:
    """Deliver an event without blocking on, or failing because of, the sink."""
    if sink is None:
        return
    try:
        result = sink(event)
    except Exception as e:
        logger.warning(f"Progress sink failed on {event.kind.value}: {e}")
        return

    if inspect.isawaitable(result):
        try:
            task = asyncio.ensure_future(result)
        except RuntimeError as e:
            logger.warning(f"Progress sink coroutine could not be scheduled: {e}")
            return
        _pending.add(task)
        task.add_done_callback(_on_sink_done)


def _on_sink_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"Progress sink failed: {exc}")
