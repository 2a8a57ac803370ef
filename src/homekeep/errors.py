"""Error taxonomy for the offline write queue.

Storage errors surface to whoever called ``perform``; remote errors are
classified so the sync engine can tell a retryable failure from a
terminal one.
"""

from __future__ import annotations


class HomekeepError(Exception):
    """Base class for all homekeep errors."""


class InvalidTransition(HomekeepError, ValueError):
    """An operation record was asked to move to a status it cannot reach."""


class UnresolvedDependency(HomekeepError):
    """A queued record references a local entity whose create never reached the remote store."""


class RemoteIdUnknown(UnresolvedDependency):
    """The create reached the remote store but its remote id was never reported."""


# ── Local store ──────────────────────────────────────────────────────


class StorageError(HomekeepError):
    """The local durable store rejected an operation."""


class StorageUnavailable(StorageError):
    """The local store cannot be opened or written."""


class StorageFull(StorageError):
    """The local store ran out of space."""


# ── Remote store ─────────────────────────────────────────────────────


class RemoteError(HomekeepError):
    """Error from the remote entity store."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkTransient(RemoteError):
    """Connectivity failure or timeout. Safe to retry."""


class RemoteRejected(RemoteError):
    """The remote store refused the payload (validation, conflict). Not retried."""


class RemoteNotFound(RemoteRejected):
    """The target entity does not exist on the remote store."""


class DuplicateIntent(RemoteError):
    """The idempotency key was already acknowledged by the remote store.

    Treated as success by callers; ``remote_id`` carries the id of the
    entity created by the first submission when the server reports it.
    """

    def __init__(
        self,
        message: str = "Idempotency key already used",
        remote_id: str | None = None,
        status_code: int | None = 409,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.remote_id = remote_id
