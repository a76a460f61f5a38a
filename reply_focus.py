"""Single-composer reply focus for one thread view."""

from __future__ import annotations

import logging

from log import log_extra
from models import ReplyFocus

logger = logging.getLogger("threadweave.focus")


class ReplyFocusTracker:
    """Tracks which message (if any) has the open reply composer.

    At most one composer is open at a time.  Opening a composer on a new
    target silently drops the previous draft; that is the intended
    interaction, not data loss.  Drafts from posts that *failed* are the
    exception: they are kept per target until the user retries.
    """

    def __init__(self) -> None:
        self._target_id: str | None = None
        self._draft_text = ""
        self._open = False
        self._failed_drafts: dict[str | None, str] = {}

    # --- inspection ---

    @property
    def target_id(self) -> str | None:
        return self._target_id

    @property
    def draft_text(self) -> str:
        return self._draft_text

    @property
    def is_open(self) -> bool:
        return self._open

    def snapshot(self) -> ReplyFocus:
        """Return an immutable copy of the current focus."""
        return ReplyFocus(
            target_id=self._target_id,
            draft_text=self._draft_text,
            is_open=self._open,
        )

    # --- transitions ---

    def begin_reply(self, target_id: str | None) -> None:
        """Open the composer on *target_id* (``None`` for top level).

        Calling this again with the target that is already open closes it.
        """
        if self._open and target_id is not None and target_id == self._target_id:
            self._close()
            return
        self._target_id = target_id
        self._draft_text = ""
        self._open = True

    def update_draft(self, text: str) -> None:
        """Store *text* as the draft; ignored while no composer is open."""
        if not self._open:
            return
        self._draft_text = text

    def cancel(self) -> None:
        """Close the composer and drop its draft.

        Posts already handed to the coordinator are unaffected; they own
        their own copy of the text.
        """
        self._close()

    def consume_draft(self) -> tuple[str | None, str] | None:
        """Read and clear the draft in one step.

        Returns ``(target_id, text)``, or *None* when no composer is open.
        The composer is closed so a second call cannot resend the text.
        """
        if not self._open:
            return None
        consumed = (self._target_id, self._draft_text)
        self._close()
        return consumed

    # --- failed drafts ---

    def restore_draft(self, target_id: str | None, text: str) -> None:
        """Hand back *text* from a failed post on *target_id*.

        When no composer is open the draft reappears immediately on that
        target.  Otherwise the user is typing something else; the text is
        kept aside for :meth:`retry_draft` instead of overwriting it.
        """
        self._failed_drafts[target_id] = text
        if not self._open:
            self._target_id = target_id
            self._draft_text = text
            self._open = True
            logger.info(
                "Restored failed draft into composer",
                extra=log_extra(target=target_id),
            )

    def failed_draft(self, target_id: str | None) -> str | None:
        """Return the text of the last failed post on *target_id*, if any."""
        return self._failed_drafts.get(target_id)

    def retry_draft(self, target_id: str | None) -> str | None:
        """Reopen *target_id* with its failed draft and return that text."""
        text = self._failed_drafts.get(target_id)
        if text is None:
            return None
        self._target_id = target_id
        self._draft_text = text
        self._open = True
        return text

    def clear_failed_draft(self, target_id: str | None) -> None:
        """Forget the failed draft for *target_id* (e.g. after it committed)."""
        self._failed_drafts.pop(target_id, None)

    def _close(self) -> None:
        self._target_id = None
        self._draft_text = ""
        self._open = False
