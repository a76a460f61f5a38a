"""Data models for threadweave."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import InvalidTransitionError

# --- Authors & attachments ---


class Author(BaseModel):
    """Display metadata for whoever wrote a message."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = "Anonymous"
    avatar_ref: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v: Any) -> str:
        """Blank or missing display names fall back to ``Anonymous``."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return "Anonymous"
        return v  # type: ignore[no-any-return]


class LinkAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["link"] = "link"
    url: str
    name: str = ""


class FileAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["file"] = "file"
    url: str
    name: str = ""
    size: int | None = None
    mime_type: str = ""


class ImageAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["image"] = "image"
    url: str
    name: str = ""
    width: int | None = None
    height: int | None = None


Attachment = Annotated[
    LinkAttachment | FileAttachment | ImageAttachment,
    Field(discriminator="type"),
]


def attachment_kind(attachment: LinkAttachment | FileAttachment | ImageAttachment) -> str:
    """Return the render-boundary kind for *attachment*.

    Raises :class:`TypeError` for anything outside the known variants so a
    new variant cannot slip through the renderer unnoticed.
    """
    if isinstance(attachment, LinkAttachment):
        return "link"
    if isinstance(attachment, FileAttachment):
        return "file"
    if isinstance(attachment, ImageAttachment):
        return "image"
    raise TypeError(f"Unknown attachment variant: {type(attachment).__name__}")


# --- Messages ---


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Message(BaseModel):
    """A single reply-capable message within a thread.

    ``id`` and ``created_at`` are assigned by the store.  A provisional
    message has neither; it is identified by ``provisional_id`` instead
    until the authoritative refetch replaces it.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    provisional_id: str | None = None
    thread_id: str
    parent_id: str | None = None
    author: Author = Field(default_factory=Author)
    text: str
    created_at: datetime | None = None
    attachments: tuple[Attachment, ...] = ()

    @field_validator("id", "parent_id", "thread_id", mode="before")
    @classmethod
    def _coerce_ids(cls, v: Any) -> Any:
        """Accept integer ids from stores that number their records."""
        if isinstance(v, bool):
            return v
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str) and v == "":
            return None
        return v

    @field_validator("created_at", mode="after")
    @classmethod
    def _normalise_tz(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v) if v is not None else None

    @property
    def key(self) -> str:
        """Identity within a build: the store id, else the provisional id."""
        return self.id if self.id is not None else (self.provisional_id or "")

    @property
    def is_provisional(self) -> bool:
        return self.id is None

    def sort_key(self) -> tuple[bool, datetime, str]:
        """Ordering key: ``(created_at, id)``, provisional messages last."""
        if self.created_at is None:
            return (True, datetime.min.replace(tzinfo=UTC), self.key)
        return (False, self.created_at, self.key)


class ThreadNode(BaseModel):
    """One message and its ordered replies within a built tree."""

    model_config = ConfigDict(frozen=True)

    message: Message
    children: tuple[ThreadNode, ...] = ()
    depth: int = 0

    @property
    def key(self) -> str:
        return self.message.key

    @property
    def id(self) -> str | None:
        return self.message.id

    @property
    def reply_count(self) -> int:
        return len(self.children)

    @property
    def descendant_count(self) -> int:
        total = 0
        stack = list(self.children)
        while stack:
            node = stack.pop()
            total += 1
            stack.extend(node.children)
        return total


# --- Build anomalies ---


class AnomalyKind(StrEnum):
    """Structural problems detected while building a tree."""

    DUPLICATE_ID = "duplicate_id"
    SELF_PARENT = "self_parent"
    CYCLE = "cycle"
    ORPHAN = "orphan"


class BuildAnomaly(BaseModel):
    """A message that could not be placed where its ``parent_id`` says."""

    model_config = ConfigDict(frozen=True)

    kind: AnomalyKind
    message_key: str
    parent_id: str | None = None


class ThreadBuild(BaseModel):
    """Full result of building a forest from a flat message list."""

    model_config = ConfigDict(frozen=True)

    roots: tuple[ThreadNode, ...] = ()
    anomalies: tuple[BuildAnomaly, ...] = ()


# --- Store ---


class StoreReceipt(BaseModel):
    """What a store returns after persisting a new message."""

    id: str
    created_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v

    @field_validator("created_at", mode="after")
    @classmethod
    def _normalise_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)


# --- Commit lifecycle ---


class CommitState(StrEnum):
    """Lifecycle status of an optimistic post."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    COMMITTED = "committed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: dict[CommitState, frozenset[CommitState]] = {
    CommitState.IDLE: frozenset({CommitState.SUBMITTING}),
    CommitState.SUBMITTING: frozenset({CommitState.COMMITTED, CommitState.FAILED}),
    CommitState.COMMITTED: frozenset(),
    CommitState.FAILED: frozenset(),
}


class PostErrorKind(StrEnum):
    """Categories of failure surfaced to the composer that posted."""

    VALIDATION = "validation"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    TIMEOUT = "timeout"
    REFRESH_FAILED = "refresh_failed"


class PostError(BaseModel):
    """Displayable description of why a post failed."""

    kind: PostErrorKind
    message: str = ""
    target_id: str | None = None
    retryable: bool = True


class CommitAttempt(BaseModel):
    """One in-flight (or finished) optimistic post on a single target."""

    thread_id: str
    target_id: str | None = None
    text: str
    provisional_id: str
    state: CommitState = CommitState.IDLE
    message_id: str | None = None
    created_at: datetime | None = None
    error: PostError | None = None
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    finished_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (CommitState.COMMITTED, CommitState.FAILED)

    def transition(self, new_state: CommitState) -> None:
        """Move to *new_state*, enforcing ``idle → submitting → terminal``."""
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move commit attempt from {self.state} to {new_state}"
            )
        self.state = new_state
        if self.is_terminal:
            self.finished_at = datetime.now(UTC).isoformat()


# --- Reply focus ---


class ReplyFocus(BaseModel):
    """Snapshot of the single open composer in a thread view.

    ``target_id=None`` with ``is_open=True`` is the top-level composer.
    """

    model_config = ConfigDict(frozen=True)

    target_id: str | None = None
    draft_text: str = ""
    is_open: bool = False
