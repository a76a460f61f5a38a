"""Authoritative messages plus live overlays for one open thread."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from events import EventBus, ThreadEvent, ThreadEventType
from log import log_extra
from models import BuildAnomaly, Message, StoreReceipt, ThreadBuild, ThreadNode
from thread_builder import build_thread

logger = logging.getLogger("threadweave.state")


class ThreadState:
    """Holds what a thread view renders and rebuilds it on every change.

    Three sources feed the tree:

    * the *authoritative* list from the last applied refetch, replaced
      wholesale and never edited in place;
    * *provisional* messages owned by in-flight commit attempts;
    * *confirmed* messages: posts the store accepted whose follow-up
      refetch failed.  Each is retired by the first refetch that contains
      it, or by any refetch issued after it was confirmed.

    Every change produces a new immutable :class:`~models.ThreadBuild`;
    readers never see a half-applied update.
    """

    def __init__(self, thread_id: str, *, event_bus: EventBus | None = None) -> None:
        self._thread_id = thread_id
        self._bus = event_bus
        self._authoritative: tuple[Message, ...] = ()
        self._provisional: dict[str, Message] = {}
        # message id → (message, refetch generation current when confirmed)
        self._confirmed: dict[str, tuple[Message, int]] = {}
        self._build = ThreadBuild()
        self._loaded = False
        self._issued_generation = 0
        self._applied_generation = 0

    # --- inspection ---

    @property
    def thread_id(self) -> str:
        return self._thread_id

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def authoritative(self) -> tuple[Message, ...]:
        return self._authoritative

    @property
    def roots(self) -> tuple[ThreadNode, ...]:
        return self._build.roots

    @property
    def anomalies(self) -> tuple[BuildAnomaly, ...]:
        return self._build.anomalies

    @property
    def provisional_ids(self) -> tuple[str, ...]:
        return tuple(self._provisional)

    @property
    def confirmed_ids(self) -> tuple[str, ...]:
        return tuple(self._confirmed)

    def has_message(self, message_id: str) -> bool:
        """Return *True* if *message_id* is a committed message of this thread."""
        if message_id in self._confirmed:
            return True
        return any(m.id == message_id for m in self._authoritative)

    # --- overlays ---

    def add_provisional(self, message: Message) -> None:
        if message.provisional_id is None:
            raise ValueError("Provisional messages need a provisional_id")
        self._provisional[message.provisional_id] = message
        self._rebuild(reason="provisional_added")

    def discard_provisional(self, provisional_id: str) -> bool:
        """Remove a provisional message; returns *False* if it was already gone."""
        if self._provisional.pop(provisional_id, None) is None:
            return False
        self._rebuild(reason="provisional_removed")
        return True

    def confirm(self, provisional_id: str, receipt: StoreReceipt) -> None:
        """Swap a provisional message for its store-confirmed form."""
        provisional = self._provisional.pop(provisional_id, None)
        if provisional is None:
            return
        confirmed = provisional.model_copy(
            update={
                "id": receipt.id,
                "provisional_id": None,
                "created_at": receipt.created_at,
            }
        )
        self._confirmed[receipt.id] = (confirmed, self._issued_generation)
        self._rebuild(reason="provisional_confirmed")

    # --- refetch ---

    def begin_refetch(self) -> int:
        """Reserve a generation number for a refetch about to start."""
        self._issued_generation += 1
        return self._issued_generation

    def apply_refetch(
        self,
        generation: int,
        messages: Iterable[Message],
        *,
        retire: Iterable[str] = (),
    ) -> bool:
        """Swap in *messages* as the authoritative list.

        Results from a refetch issued before the one last applied are
        dropped: they can only be older.  Provisional ids in *retire* are
        removed either way, in the same rebuild.  Returns *True* when the
        list was applied.
        """
        retired = [pid for pid in retire if self._provisional.pop(pid, None) is not None]
        if generation <= self._applied_generation:
            logger.info(
                "Dropping stale refetch %d (already at %d)",
                generation,
                self._applied_generation,
                extra=log_extra(self._thread_id),
            )
            if retired:
                self._rebuild(reason="provisional_removed")
            return False

        self._authoritative = tuple(messages)
        self._applied_generation = generation
        self._loaded = True
        present = {m.id for m in self._authoritative}
        self._confirmed = {
            mid: entry
            for mid, entry in self._confirmed.items()
            if mid not in present and entry[1] >= generation
        }
        self._rebuild(reason="refetched")
        return True

    # --- internals ---

    def _rebuild(self, *, reason: str) -> None:
        overlay = [entry[0] for entry in self._confirmed.values()]
        self._build = build_thread(
            [*self._authoritative, *overlay, *self._provisional.values()]
        )
        if self._bus is not None:
            self._bus.publish_nowait(
                ThreadEvent(
                    type=ThreadEventType.TREE_CHANGED,
                    thread_id=self._thread_id,
                    data={
                        "reason": reason,
                        "roots": len(self._build.roots),
                        "provisional": len(self._provisional),
                        "anomalies": len(self._build.anomalies),
                        "generation": self._applied_generation,
                    },
                )
            )
