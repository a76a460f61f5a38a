"""Optimistic posting: show a message at once, then reconcile with the store.

Lifecycle of one post (a :class:`~models.CommitAttempt`)::

    idle ──submit──▶ submitting ──create ok + refetch──▶ committed
                          │
                          └──────store error──────────▶ failed

While ``submitting`` the message is visible as a provisional node.  After
the store accepts it the whole authoritative list is refetched and swapped
in; the provisional node is dropped in that same swap, never merged.  A
target (a parent message, or the top level) can only have one attempt in
``submitting`` at a time.  A post the store has accepted is committed even
if its refetch never finishes.
"""

from __future__ import annotations

import itertools
import logging

from config import ThreadConfig
from errors import (
    DuplicateSubmitError,
    NetworkFailure,
    NotFound,
    PermissionDenied,
    StoreError,
    StoreTimeout,
    ThreadError,
    ValidationError,
)
from events import EventBus, ThreadEvent, ThreadEventType
from log import log_extra
from message_store import MessageStore, call_store
from models import (
    Author,
    CommitAttempt,
    CommitState,
    Message,
    PostError,
    PostErrorKind,
    StoreReceipt,
)
from reply_focus import ReplyFocusTracker
from thread_state import ThreadState

logger = logging.getLogger("threadweave.commit")

_provisional_counter = itertools.count(1)

_RETRYABLE = frozenset({PostErrorKind.NETWORK, PostErrorKind.TIMEOUT})


def _error_kind(exc: ThreadError) -> PostErrorKind:
    if isinstance(exc, StoreTimeout):
        return PostErrorKind.TIMEOUT
    if isinstance(exc, NetworkFailure):
        return PostErrorKind.NETWORK
    if isinstance(exc, PermissionDenied):
        return PostErrorKind.PERMISSION_DENIED
    if isinstance(exc, NotFound):
        return PostErrorKind.NOT_FOUND
    if isinstance(exc, ValidationError):
        return PostErrorKind.VALIDATION
    return PostErrorKind.NETWORK


class CommitCoordinator:
    """Runs optimistic posts for a single thread.

    The coordinator owns every outstanding :class:`~models.CommitAttempt`
    and the per-target lock that keeps a target to one in-flight post.
    Posts on different targets run concurrently.
    """

    def __init__(
        self,
        store: MessageStore,
        state: ThreadState,
        *,
        config: ThreadConfig | None = None,
        focus: ReplyFocusTracker | None = None,
        event_bus: EventBus | None = None,
        author: Author | None = None,
    ) -> None:
        self._store = store
        self._state = state
        self._config = config or ThreadConfig()
        self._focus = focus
        self._bus = event_bus
        self._author = author or Author()
        self._outstanding: dict[str | None, CommitAttempt] = {}
        self._finished: dict[str | None, CommitAttempt] = {}

    # --- inspection ---

    @property
    def outstanding_targets(self) -> frozenset[str | None]:
        return frozenset(self._outstanding)

    def attempt_for(self, target_id: str | None) -> CommitAttempt | None:
        """Return the in-flight attempt on *target_id*, if any."""
        return self._outstanding.get(target_id)

    def last_attempt(self, target_id: str | None) -> CommitAttempt | None:
        """Return the most recent finished attempt on *target_id*."""
        return self._finished.get(target_id)

    # --- validation ---

    def check_submittable(
        self, thread_id: str, parent_id: str | None, text: str
    ) -> None:
        """Raise :class:`~errors.ValidationError` if a post would be rejected.

        Runs entirely before any store call and changes nothing.
        """
        if thread_id != self._state.thread_id:
            raise ValidationError(
                f"Thread {thread_id} is not the thread this view shows"
            )
        if not text.strip():
            raise ValidationError("Message text cannot be empty")
        if parent_id is not None and not self._state.has_message(parent_id):
            raise ValidationError(f"Reply target {parent_id} is not part of this thread")
        if parent_id in self._outstanding:
            raise DuplicateSubmitError(parent_id)

    # --- submit ---

    async def submit(
        self, thread_id: str, parent_id: str | None, text: str
    ) -> CommitAttempt:
        """Post *text* under *parent_id* (``None`` for top level).

        Returns the attempt in its terminal state.  Store failures do not
        raise; they leave the attempt ``failed`` with :attr:`error` set and
        hand *text* back to the reply focus.  Validation failures raise
        before anything changes.
        """
        self.check_submittable(thread_id, parent_id, text)

        body = text.strip() if self._config.trim_text else text
        attempt = CommitAttempt(
            thread_id=thread_id,
            target_id=parent_id,
            text=body,
            provisional_id=self._new_provisional_id(),
        )
        self._outstanding[parent_id] = attempt
        try:
            self._transition(attempt, CommitState.SUBMITTING)
            self._state.add_provisional(
                Message(
                    provisional_id=attempt.provisional_id,
                    thread_id=thread_id,
                    parent_id=parent_id,
                    author=self._author,
                    text=body,
                )
            )

            try:
                receipt = await call_store(
                    self._store.create_message(
                        thread_id, body, parent_id, author=self._author
                    ),
                    self._config.store_timeout,
                )
            except (StoreError, ValidationError) as exc:
                # The store rejected or never saw the post.
                self._fail(attempt, exc, original_text=text)
                return attempt

            attempt.message_id = receipt.id
            attempt.created_at = receipt.created_at
            await self._reconcile(attempt, receipt)
            self._transition(attempt, CommitState.COMMITTED)
            if self._focus is not None:
                self._focus.clear_failed_draft(parent_id)
            return attempt
        except BaseException:
            if not attempt.is_terminal:
                self._abandon(attempt, original_text=text)
            raise
        finally:
            if self._outstanding.get(parent_id) is attempt:
                del self._outstanding[parent_id]
            self._finished[parent_id] = attempt

    async def _reconcile(self, attempt: CommitAttempt, receipt: StoreReceipt) -> None:
        """Refetch the thread and swap it in, dropping the provisional node."""
        generation = self._state.begin_refetch()
        try:
            messages = await call_store(
                self._store.list_messages(attempt.thread_id),
                self._config.store_timeout,
            )
        except StoreError as exc:
            # The post is stored; keep it visible until a refetch succeeds.
            self._state.confirm(attempt.provisional_id, receipt)
            attempt.error = PostError(
                kind=PostErrorKind.REFRESH_FAILED,
                message=str(exc),
                target_id=attempt.target_id,
                retryable=False,
            )
            logger.warning(
                "Post %s stored but refetch failed: %s",
                receipt.id,
                exc,
                extra=log_extra(attempt.thread_id, target=attempt.target_id),
            )
            self._publish(
                ThreadEventType.REFRESH_FAILED,
                {"target": attempt.target_id, "error": str(exc)},
            )
            return

        if receipt.id not in {m.id for m in messages}:
            # Past the store's list limit; keep the post until a list holds it.
            logger.warning(
                "Post %s missing from refetch of %d messages",
                receipt.id,
                len(messages),
                extra=log_extra(attempt.thread_id, target=attempt.target_id),
            )
            self._state.confirm(attempt.provisional_id, receipt)
        self._state.apply_refetch(
            generation, messages, retire=[attempt.provisional_id]
        )

    # --- helpers ---

    def _new_provisional_id(self) -> str:
        return f"{self._config.provisional_prefix}{next(_provisional_counter):08d}"

    def _fail(
        self, attempt: CommitAttempt, exc: ThreadError, *, original_text: str
    ) -> None:
        kind = _error_kind(exc)
        attempt.error = PostError(
            kind=kind,
            message=str(exc),
            target_id=attempt.target_id,
            retryable=kind in _RETRYABLE,
        )
        self._state.discard_provisional(attempt.provisional_id)
        self._transition(attempt, CommitState.FAILED)
        if self._focus is not None:
            self._focus.restore_draft(attempt.target_id, original_text)

    def _abandon(self, attempt: CommitAttempt, *, original_text: str) -> None:
        """Close out an attempt interrupted by something other than the store."""
        if attempt.message_id is not None and attempt.created_at is not None:
            # Already stored, so the draft is not handed back.
            self._state.confirm(
                attempt.provisional_id,
                StoreReceipt(id=attempt.message_id, created_at=attempt.created_at),
            )
            attempt.error = PostError(
                kind=PostErrorKind.REFRESH_FAILED,
                message="Post stored but the refetch was interrupted",
                target_id=attempt.target_id,
                retryable=False,
            )
            self._transition(attempt, CommitState.COMMITTED)
            if self._focus is not None:
                self._focus.clear_failed_draft(attempt.target_id)
            return
        attempt.error = PostError(
            kind=PostErrorKind.NETWORK,
            message="Post interrupted before the store answered",
            target_id=attempt.target_id,
        )
        self._state.discard_provisional(attempt.provisional_id)
        if attempt.state is CommitState.SUBMITTING:
            self._transition(attempt, CommitState.FAILED)
        if self._focus is not None:
            self._focus.restore_draft(attempt.target_id, original_text)

    def _transition(self, attempt: CommitAttempt, new_state: CommitState) -> None:
        attempt.transition(new_state)
        level = logging.WARNING if new_state is CommitState.FAILED else logging.INFO
        logger.log(
            level,
            "Post %s on %s is %s",
            attempt.provisional_id,
            attempt.target_id or "top level",
            new_state,
            extra=log_extra(
                attempt.thread_id,
                target=attempt.target_id,
                attempt=attempt.provisional_id,
                state=new_state,
            ),
        )
        self._publish(
            ThreadEventType.COMMIT_STATE_CHANGED,
            {
                "target": attempt.target_id,
                "state": str(new_state),
                "attempt": attempt.model_dump(mode="json"),
            },
        )

    def _publish(self, event_type: ThreadEventType, data: dict[str, object]) -> None:
        if self._bus is None:
            return
        self._bus.publish_nowait(
            ThreadEvent(type=event_type, thread_id=self._state.thread_id, data=data)
        )
