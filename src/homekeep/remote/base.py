"""Interface of the remote entity store the queue replays against."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class RemoteEntityStore(ABC):
    """
    The authoritative hosted entity store.

    Implementations raise :class:`~homekeep.errors.NetworkTransient` for
    connectivity failures and timeouts, :class:`~homekeep.errors.RemoteRejected`
    (or :class:`~homekeep.errors.RemoteNotFound`) for terminal refusals, and
    :class:`~homekeep.errors.DuplicateIntent` when an idempotency key was
    already acknowledged.
    """

    async def connect(self) -> None:  # noqa: B027
        """Open underlying resources. No-op by default."""

    async def disconnect(self) -> None:  # noqa: B027
        """Release underlying resources. No-op by default."""

    @abstractmethod
    async def create(
        self, entity_type: str, payload: dict[str, Any], *, idempotency_key: str
    ) -> str:
        """
        Create an entity.

        Returns:
            The id assigned by the remote store
        """
        ...

    @abstractmethod
    async def update(
        self,
        entity_type: str,
        entity_id: str,
        patch: dict[str, Any],
        *,
        idempotency_key: str,
    ) -> None:
        """Apply a partial update to an entity."""
        ...

    @abstractmethod
    async def delete(self, entity_type: str, entity_id: str, *, idempotency_key: str) -> None:
        """Delete an entity."""
        ...
