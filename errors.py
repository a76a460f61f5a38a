"""Exception hierarchy for threadweave."""

from __future__ import annotations


class ThreadError(RuntimeError):
    """Base class for every error raised by the threading core."""


class ValidationError(ThreadError):
    """Raised when a submission is rejected before reaching the store.

    Blank text, a reply target that is not part of the thread, or a
    second submission on a target that already has one in flight.
    """


class DuplicateSubmitError(ValidationError):
    """Raised when a target already has a ``submitting`` attempt."""

    def __init__(self, target_id: str | None) -> None:
        where = "top level" if target_id is None else f"message {target_id}"
        super().__init__(f"A post is already in flight for {where}")
        self.target_id = target_id


class InvalidTransitionError(ThreadError):
    """Raised when a commit attempt is moved out of lifecycle order."""


class StoreError(ThreadError):
    """Base class for failures reported by a message store."""


class PermissionDenied(StoreError):
    """Raised when the thread does not accept new messages."""


class NotFound(StoreError):
    """Raised when the thread or the parent message no longer exists."""


class NetworkFailure(StoreError):
    """Raised when the store could not be reached."""


class StoreTimeout(NetworkFailure):
    """Raised when a store call exceeds the configured timeout."""
