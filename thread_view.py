"""One open discussion: the façade handed to the rendering layer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from commit_coordinator import CommitCoordinator
from config import ThreadConfig
from errors import StoreError, ValidationError
from events import EventBus, ThreadEvent, ThreadEventType
from log import log_extra
from message_store import MessageStore, call_store
from models import Author, BuildAnomaly, CommitAttempt, ReplyFocus, ThreadNode
from reply_focus import ReplyFocusTracker
from thread_builder import display_rows
from thread_state import ThreadState

logger = logging.getLogger("threadweave.view")


class ThreadView:
    """Everything one open thread needs, owned by whoever shows it.

    A view holds one tree snapshot, one reply focus and any number of
    in-flight posts (at most one per target).  Create one per open thread
    and drop it when the thread is closed; views share nothing.
    """

    def __init__(
        self,
        thread_id: str,
        store: MessageStore,
        *,
        config: ThreadConfig | None = None,
        event_bus: EventBus | None = None,
        author: Author | None = None,
    ) -> None:
        self._config = config or ThreadConfig()
        self._store = store
        self._bus = event_bus or EventBus(max_history=self._config.event_history)
        self._state = ThreadState(thread_id, event_bus=self._bus)
        self._focus = ReplyFocusTracker()
        self._coordinator = CommitCoordinator(
            store,
            self._state,
            config=self._config,
            focus=self._focus,
            event_bus=self._bus,
            author=author,
        )

    # --- properties ---

    @property
    def thread_id(self) -> str:
        return self._state.thread_id

    @property
    def config(self) -> ThreadConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    def subscribe(
        self, types: Iterable[ThreadEventType] | None = None
    ) -> asyncio.Queue[ThreadEvent]:
        """Return a queue receiving this thread's future events."""
        return self._bus.subscribe(thread_id=self.thread_id, types=types)

    @property
    def loaded(self) -> bool:
        return self._state.loaded

    @property
    def anomalies(self) -> tuple[BuildAnomaly, ...]:
        return self._state.anomalies

    @property
    def focus(self) -> ReplyFocus:
        return self._focus.snapshot()

    @property
    def outstanding_targets(self) -> frozenset[str | None]:
        return self._coordinator.outstanding_targets

    # --- tree ---

    def get_tree(self) -> tuple[ThreadNode, ...]:
        """Current snapshot, provisional nodes included."""
        return self._state.roots

    def get_rows(self) -> list[tuple[ThreadNode, int]]:
        """Current snapshot in reading order with clamped indentation."""
        return display_rows(self._state.roots, self._config.max_indent_level)

    async def load(self) -> tuple[ThreadNode, ...]:
        """Fetch the thread for the first time (same as :meth:`refresh`)."""
        return await self.refresh()

    async def refresh(self) -> tuple[ThreadNode, ...]:
        """Refetch the authoritative list and swap it in.

        Store errors propagate after a ``refresh_failed`` event; the
        previous snapshot stays in place.
        """
        generation = self._state.begin_refetch()
        try:
            messages = await call_store(
                self._store.list_messages(self.thread_id), self._config.store_timeout
            )
        except StoreError as exc:
            logger.warning(
                "Refresh failed: %s", exc, extra=log_extra(self.thread_id)
            )
            self._bus.publish_nowait(
                ThreadEvent(
                    type=ThreadEventType.REFRESH_FAILED,
                    thread_id=self.thread_id,
                    data={"target": None, "error": str(exc)},
                )
            )
            raise
        self._state.apply_refetch(generation, messages)
        return self._state.roots

    # --- reply focus ---

    def begin_reply(self, target_id: str | None) -> None:
        self._focus.begin_reply(target_id)
        self._publish_focus()

    def update_draft(self, text: str) -> None:
        before = self._focus.snapshot()
        self._focus.update_draft(text)
        if self._focus.snapshot() != before:
            self._publish_focus()

    def cancel(self) -> None:
        self._focus.cancel()
        self._publish_focus()

    def retry(self, target_id: str | None) -> str | None:
        """Reopen *target_id* with the text of its last failed post."""
        text = self._focus.retry_draft(target_id)
        if text is not None:
            self._publish_focus()
        return text

    # --- posting ---

    async def submit(self, parent_id: str | None, text: str) -> CommitAttempt:
        """Post *text* under *parent_id* on this thread."""
        return await self._coordinator.submit(self.thread_id, parent_id, text)

    async def submit_draft(self) -> CommitAttempt:
        """Post whatever is in the open composer.

        The draft is validated first and only then consumed, so a rejected
        submission leaves the composer exactly as it was.
        """
        focus = self._focus.snapshot()
        if not focus.is_open:
            raise ValidationError("No composer is open")
        self._coordinator.check_submittable(
            self.thread_id, focus.target_id, focus.draft_text
        )
        consumed = self._focus.consume_draft()
        assert consumed is not None  # noqa: S101
        target_id, text = consumed
        self._publish_focus()
        return await self._coordinator.submit(self.thread_id, target_id, text)

    def attempt_for(self, target_id: str | None) -> CommitAttempt | None:
        return self._coordinator.attempt_for(target_id)

    def last_attempt(self, target_id: str | None) -> CommitAttempt | None:
        return self._coordinator.last_attempt(target_id)

    def failed_draft(self, target_id: str | None) -> str | None:
        return self._focus.failed_draft(target_id)

    def _publish_focus(self) -> None:
        focus = self._focus.snapshot()
        self._bus.publish_nowait(
            ThreadEvent(
                type=ThreadEventType.FOCUS_CHANGED,
                thread_id=self.thread_id,
                data=focus.model_dump(),
            )
        )
