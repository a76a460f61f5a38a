"""Store-facing contract, payload adapter and an in-memory reference store.

The real store lives outside this package.  It only has to offer two
coroutines (see :class:`MessageStore`).  Payloads from HTTP or document
stores usually arrive as loosely-typed dicts; :func:`message_from_payload`
normalises them into :class:`~models.Message`.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from collections.abc import Awaitable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, TypeVar, runtime_checkable

from config import ThreadConfig
from errors import (
    NetworkFailure,
    NotFound,
    PermissionDenied,
    StoreError,
    StoreTimeout,
    ValidationError,
)
from log import log_extra
from models import Author, Message, StoreReceipt

logger = logging.getLogger("threadweave.store")

_T = TypeVar("_T")

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@runtime_checkable
class MessageStore(Protocol):
    """The two operations the threading core needs from persistence."""

    async def list_messages(self, thread_id: str) -> list[Message]:
        """Return committed messages of *thread_id*, in any order.

        A store may cap the list; when it does it keeps the newest messages.
        """
        ...

    async def create_message(
        self,
        thread_id: str,
        text: str,
        parent_id: str | None = None,
        *,
        author: Author | None = None,
    ) -> StoreReceipt:
        """Persist a message and return its assigned id and timestamp.

        Raises :class:`~errors.PermissionDenied`, :class:`~errors.ValidationError`
        or :class:`~errors.NotFound`.
        """
        ...


# --- Payload adapter ---


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes, ISO-8601 strings and epoch seconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str) and value.strip():
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return None


def _normalise_attachment(raw: Any) -> Any:
    """Fold store-specific attachment types onto link / file / image."""
    if not isinstance(raw, Mapping):
        return raw
    kind = str(raw.get("type") or "file").lower()
    if kind not in ("link", "file", "image"):
        kind = "file"
    normalised = {k: v for k, v in raw.items() if k != "fileMetadata"}
    normalised["type"] = kind
    metadata = raw.get("fileMetadata")
    if kind == "file" and isinstance(metadata, Mapping):
        normalised.setdefault("size", metadata.get("size"))
        normalised.setdefault("mime_type", metadata.get("fileType") or "")
    return normalised


def message_from_payload(thread_id: str, payload: Mapping[str, Any]) -> Message:
    """Normalise one stored record (camelCase or snake_case) into a Message.

    Stored records always carry a timestamp in principle; one that does
    not is pinned to the Unix epoch so it sorts first instead of being
    mistaken for a provisional message.
    """
    created_at = _parse_timestamp(_pick(payload, "created_at", "createdAt"))
    author = Author(
        id=str(_pick(payload, "author_id", "authorId") or ""),
        name=_pick(payload, "author_name", "authorName"),
        avatar_ref=str(
            _pick(
                payload,
                "author_avatar_ref",
                "authorAvatarRef",
                "authorPhotoURL",
            )
            or ""
        ),
    )
    return Message(
        id=_pick(payload, "id"),
        thread_id=thread_id,
        parent_id=_pick(payload, "parent_id", "parentId"),
        author=author,
        text=str(_pick(payload, "text") or ""),
        created_at=created_at if created_at is not None else _EPOCH,
        attachments=tuple(
            _normalise_attachment(a) for a in _pick(payload, "attachments") or ()
        ),
    )


def messages_from_payload(
    thread_id: str,
    payloads: Iterable[Mapping[str, Any]],
    *,
    limit: int | None = None,
) -> list[Message]:
    """Normalise a list response, keeping at most *limit* records."""
    messages = [message_from_payload(thread_id, p) for p in payloads]
    if limit is not None and len(messages) > limit:
        logger.warning(
            "Thread returned %d messages, keeping the first %d",
            len(messages),
            limit,
            extra=log_extra(thread_id),
        )
        messages = messages[:limit]
    return messages


def receipt_from_payload(payload: Mapping[str, Any]) -> StoreReceipt:
    """Normalise a create response (``{"id", "createdAt"}``)."""
    created_at = _parse_timestamp(_pick(payload, "created_at", "createdAt"))
    if created_at is None:
        raise ValidationError("Create response is missing its timestamp")
    return StoreReceipt(id=_pick(payload, "id"), created_at=created_at)


# --- In-memory reference store ---


class InMemoryMessageStore:
    """Process-local store that honours the :class:`MessageStore` contract.

    Ids are unique hex strings and timestamps are strictly increasing per
    store, even when the wall clock stalls or goes backwards.
    """

    def __init__(
        self,
        config: ThreadConfig | None = None,
        *,
        default_author: Author | None = None,
    ) -> None:
        self._config = config or ThreadConfig()
        self._default_author = default_author or Author()
        self._threads: dict[str, list[Message]] = {}
        self._comments_enabled: dict[str, bool] = {}
        self._last_created: datetime | None = None
        self._seq = itertools.count(1)
        self._lock = asyncio.Lock()

    # --- thread administration ---

    def open_thread(self, thread_id: str, *, comments_enabled: bool = True) -> None:
        """Register *thread_id* so messages can be posted to it."""
        self._threads.setdefault(thread_id, [])
        self._comments_enabled[thread_id] = comments_enabled

    def set_comments_enabled(self, thread_id: str, enabled: bool) -> None:
        if thread_id not in self._threads:
            raise NotFound(f"Thread {thread_id} not found")
        self._comments_enabled[thread_id] = enabled

    def close_thread(self, thread_id: str) -> None:
        """Remove *thread_id* and everything posted to it."""
        self._threads.pop(thread_id, None)
        self._comments_enabled.pop(thread_id, None)

    def seed(self, thread_id: str, messages: Iterable[Message]) -> None:
        """Insert already-committed messages verbatim (ids, timestamps, parents)."""
        if thread_id not in self._threads:
            self.open_thread(thread_id)
        self._threads[thread_id].extend(messages)

    def delete_message(self, thread_id: str, message_id: str) -> None:
        """Drop one message; its replies become orphans."""
        if thread_id not in self._threads:
            raise NotFound(f"Thread {thread_id} not found")
        self._threads[thread_id] = [
            m for m in self._threads[thread_id] if m.id != message_id
        ]

    # --- MessageStore ---

    async def list_messages(self, thread_id: str) -> list[Message]:
        if thread_id not in self._threads:
            raise NotFound(f"Thread {thread_id} not found")
        ordered = sorted(self._threads[thread_id], key=Message.sort_key)
        return ordered[-self._config.fetch_limit :]

    async def create_message(
        self,
        thread_id: str,
        text: str,
        parent_id: str | None = None,
        *,
        author: Author | None = None,
    ) -> StoreReceipt:
        async with self._lock:
            if thread_id not in self._threads:
                raise NotFound(f"Thread {thread_id} not found")
            if not self._comments_enabled.get(thread_id, True):
                raise PermissionDenied(f"Thread {thread_id} does not accept messages")
            cleaned = text.strip()
            if not cleaned:
                raise ValidationError("Message text cannot be empty")
            if parent_id is not None and not any(
                m.id == parent_id for m in self._threads[thread_id]
            ):
                raise NotFound(f"Parent message {parent_id} not found")

            message = Message(
                id=f"{next(self._seq):06d}-{uuid.uuid4().hex[:12]}",
                thread_id=thread_id,
                parent_id=parent_id,
                author=author or self._default_author,
                text=cleaned,
                created_at=self._next_timestamp(),
            )
            self._threads[thread_id].append(message)

        logger.info(
            "Stored message %s (parent %s)",
            message.id,
            parent_id or "none",
            extra=log_extra(thread_id),
        )
        assert message.id is not None and message.created_at is not None  # noqa: S101
        return StoreReceipt(id=message.id, created_at=message.created_at)

    def _next_timestamp(self) -> datetime:
        now = datetime.now(UTC)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now


# --- Call helper ---


async def call_store(awaitable: Awaitable[_T], timeout: float) -> _T:
    """Await a store call, translating transport failures into store errors.

    Expiry of *timeout* becomes :class:`~errors.StoreTimeout`; connection
    and OS errors become :class:`~errors.NetworkFailure`.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except StoreError:
        raise
    except TimeoutError as exc:
        raise StoreTimeout(f"Store did not answer within {timeout}s") from exc
    except (ConnectionError, OSError) as exc:
        raise NetworkFailure(str(exc) or type(exc).__name__) from exc
