"""In-process event bus for broadcasting thread view changes to renderers."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, NamedTuple

from pydantic import BaseModel, Field

from log import log_extra

logger = logging.getLogger("threadweave.events")

_event_counter = itertools.count()


class ThreadEventType(StrEnum):
    """Categories of events published by a thread view."""

    TREE_CHANGED = "tree_changed"
    COMMIT_STATE_CHANGED = "commit_state_changed"
    FOCUS_CHANGED = "focus_changed"
    REFRESH_FAILED = "refresh_failed"


class ThreadEvent(BaseModel):
    """A single event published on the bus."""

    id: int = Field(default_factory=lambda: next(_event_counter))
    type: ThreadEventType
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    thread_id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class EventBus:
    """Async pub/sub bus shared by one or more thread views.

    Each subscriber gets its own bounded ``asyncio.Queue`` and may narrow
    what it receives to one thread and/or a set of event types.  A slow
    subscriber loses its oldest queued events, never the newest.
    """

    def __init__(self, max_history: int = 500) -> None:
        self._subscribers: dict[asyncio.Queue[ThreadEvent], _Filter] = {}
        self._history: deque[ThreadEvent] = deque(maxlen=max_history)

    def publish_nowait(self, event: ThreadEvent) -> None:
        """Publish *event* without suspending the caller."""
        self._history.append(event)
        for queue, wanted in self._subscribers.items():
            if not wanted.matches(event):
                continue
            if queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    queue.get_nowait()
            queue.put_nowait(event)
        logger.debug(
            "Published %s event %d",
            event.type,
            event.id,
            extra=log_extra(event.thread_id or None),
        )

    async def publish(self, event: ThreadEvent) -> None:
        self.publish_nowait(event)

    def subscribe(
        self,
        max_queue: int = 500,
        *,
        thread_id: str | None = None,
        types: Iterable[ThreadEventType] | None = None,
    ) -> asyncio.Queue[ThreadEvent]:
        """Return a queue that receives future events matching the filters."""
        queue: asyncio.Queue[ThreadEvent] = asyncio.Queue(maxsize=max_queue)
        self._subscribers[queue] = _Filter(
            thread_id, frozenset(types) if types is not None else None
        )
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ThreadEvent]) -> None:
        self._subscribers.pop(queue, None)

    @contextlib.asynccontextmanager
    async def subscription(
        self,
        max_queue: int = 500,
        *,
        thread_id: str | None = None,
        types: Iterable[ThreadEventType] | None = None,
    ) -> AsyncIterator[asyncio.Queue[ThreadEvent]]:
        """Async context manager that auto-unsubscribes on exit."""
        queue = self.subscribe(max_queue, thread_id=thread_id, types=types)
        try:
            yield queue
        finally:
            self.unsubscribe(queue)

    def get_history(
        self,
        *,
        thread_id: str | None = None,
        types: Iterable[ThreadEventType] | None = None,
    ) -> list[ThreadEvent]:
        """Return recorded events, oldest first, optionally filtered."""
        wanted = _Filter(thread_id, frozenset(types) if types is not None else None)
        return [e for e in self._history if wanted.matches(e)]

    def clear(self) -> None:
        """Remove all history and subscribers."""
        self._history.clear()
        self._subscribers.clear()


class _Filter(NamedTuple):
    thread_id: str | None
    types: frozenset[ThreadEventType] | None

    def matches(self, event: ThreadEvent) -> bool:
        if self.thread_id is not None and event.thread_id != self.thread_id:
            return False
        return self.types is None or event.type in self.types
