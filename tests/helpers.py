"""Shared test helpers for threadweave tests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from config import ThreadConfig
from message_store import InMemoryMessageStore
from models import Author, Message, StoreReceipt

THREAD = "drive-42"
BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def at(seconds: float) -> datetime:
    """Return a fixed UTC timestamp *seconds* after :data:`BASE_TIME`."""
    return BASE_TIME + timedelta(seconds=seconds)


class MessageFactory:
    """Factory for committed Message instances."""

    @staticmethod
    def create(
        id: str | int,  # noqa: A002
        *,
        parent_id: str | int | None = None,
        created_at: float | datetime | None = 0,
        text: str | None = None,
        thread_id: str = THREAD,
        author: Author | None = None,
    ) -> Message:
        if isinstance(created_at, (int, float)):
            created_at = at(created_at)
        return Message(
            id=str(id),
            thread_id=thread_id,
            parent_id=str(parent_id) if parent_id is not None else None,
            author=author or Author(id="u1", name="Asha"),
            text=text if text is not None else f"message {id}",
            created_at=created_at,
        )

    @staticmethod
    def provisional(
        provisional_id: str,
        *,
        parent_id: str | None = None,
        text: str = "pending",
        thread_id: str = THREAD,
    ) -> Message:
        return Message(
            provisional_id=provisional_id,
            thread_id=thread_id,
            parent_id=parent_id,
            text=text,
        )


def scenario_messages() -> list[Message]:
    """Root, one reply and an orphan whose parent was never delivered."""
    return [
        MessageFactory.create(1, created_at=10, text="root"),
        MessageFactory.create(2, parent_id=1, created_at=20, text="reply"),
        MessageFactory.create(3, parent_id=99, created_at=5, text="orphan"),
    ]


class ScriptedStore:
    """MessageStore fake whose calls can be held open or made to fail.

    Set ``create_gate`` / ``list_gate`` to an :class:`asyncio.Event` to hold
    the matching call until the event is set.  Set ``create_error`` /
    ``list_error`` to an exception to make the next calls raise it.
    """

    def __init__(
        self,
        messages: Iterable[Message] = (),
        *,
        thread_id: str = THREAD,
        config: ThreadConfig | None = None,
    ) -> None:
        self.inner = InMemoryMessageStore(config)
        self.inner.seed(thread_id, messages)
        self.create_gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.create_error: BaseException | None = None
        self.list_error: BaseException | None = None
        self.create_calls: list[tuple[str, str, str | None]] = []
        self.list_calls = 0

    async def list_messages(self, thread_id: str) -> list[Message]:
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.list_error is not None:
            raise self.list_error
        return await self.inner.list_messages(thread_id)

    async def create_message(
        self,
        thread_id: str,
        text: str,
        parent_id: str | None = None,
        *,
        author: Author | None = None,
    ) -> StoreReceipt:
        self.create_calls.append((thread_id, text, parent_id))
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            raise self.create_error
        return await self.inner.create_message(
            thread_id, text, parent_id, author=author
        )


def keys(nodes: Iterable) -> list[str]:  # type: ignore[type-arg]
    """Return the message keys of *nodes* in order."""
    return [node.key for node in nodes]


async def settle() -> None:
    """Let every ready task run until it blocks."""
    for _ in range(5):
        await asyncio.sleep(0)
