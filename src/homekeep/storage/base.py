"""Abstract base class for the local durable operation store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from homekeep.core.operation import OperationRecord, OperationStatus

# Fields a caller may change on a persisted record
PATCHABLE_FIELDS = frozenset({"status", "attempt_count", "last_error"})


def validate_patch(patch: dict[str, Any]) -> None:
    """Reject patches touching immutable record fields."""
    invalid = set(patch) - PATCHABLE_FIELDS
    if invalid:
        raise ValueError(f"Cannot patch operation record fields: {sorted(invalid)}")


class OperationStore(ABC):
    """
    Abstract interface for persisting queued operation records.

    Both the mutation façade and the sync engine write through this
    contract. Implementations guarantee read-your-writes within the
    process and must be safe against interleaved coroutine calls.
    """

    async def initialize(self) -> None:  # noqa: B027
        """Open underlying resources. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release underlying resources. No-op by default."""

    # ========== Operation Records ==========

    @abstractmethod
    async def append(self, record: OperationRecord) -> OperationRecord:
        """
        Persist a new record.

        Args:
            record: The record to store

        Returns:
            The stored record with its insertion ``sequence`` assigned

        Raises:
            StorageFull: If the underlying storage is out of space
            StorageUnavailable: If the write cannot be performed
            ValueError: If a record with the same id already exists
        """
        ...

    @abstractmethod
    async def list(
        self, *, statuses: Iterable[OperationStatus] | None = None
    ) -> list[OperationRecord]:
        """
        Return records in insertion order.

        Args:
            statuses: Only include records in these statuses (all if None)
        """
        ...

    @abstractmethod
    async def get(self, record_id: str) -> OperationRecord | None:
        """Get a record by id, or None if absent."""
        ...

    @abstractmethod
    async def remove(self, record_id: str) -> bool:
        """
        Delete a record.

        Idempotent: removing an absent id is a no-op.

        Returns:
            True if a record was deleted
        """
        ...

    @abstractmethod
    async def update(self, record_id: str, **patch: Any) -> OperationRecord | None:
        """
        Persist status or attempt changes to a record.

        Args:
            record_id: Record to change
            **patch: ``status``, ``attempt_count`` and/or ``last_error``

        Returns:
            The updated record, or None if the id is absent
        """
        ...

    async def save(self, record: OperationRecord) -> OperationRecord | None:
        """Persist the mutable fields of ``record``."""
        return await self.update(
            record.id,
            status=record.status,
            attempt_count=record.attempt_count,
            last_error=record.last_error,
        )

    async def count(self, *, statuses: Iterable[OperationStatus] | None = None) -> int:
        """Number of stored records, optionally filtered by status."""
        return len(await self.list(statuses=statuses))

    # ========== Local id mapping ==========

    @abstractmethod
    async def save_id_mapping(self, local_id: str, remote_id: str) -> None:
        """Remember the remote id assigned to a locally created entity."""
        ...

    @abstractmethod
    async def get_id_mapping(self, local_id: str) -> str | None:
        """Remote id for a local placeholder id, or None if not yet known."""
        ...

    @abstractmethod
    async def get_id_mappings(self) -> dict[str, str]:
        """All known local -> remote id mappings."""
        ...

    # ========== Acknowledged idempotency keys ==========

    @abstractmethod
    async def acknowledge(self, idempotency_key: str, remote_id: str | None = None) -> None:
        """Record that the remote store acknowledged a key."""
        ...

    @abstractmethod
    async def get_acknowledgement(self, idempotency_key: str) -> tuple[bool, str | None]:
        """
        Look up an acknowledged key.

        Returns:
            ``(acknowledged, remote_id)``
        """
        ...

    @abstractmethod
    async def forget_acknowledgement(self, idempotency_key: str) -> None:
        """Drop a key once its record has left the queue."""
        ...

    @abstractmethod
    async def prune_acknowledgements(self) -> int:
        """Drop acknowledged keys that no queued record carries. Returns the number dropped."""
        ...

    @abstractmethod
    async def prune_id_mappings(self, *, before: datetime, keep: Iterable[str] = ()) -> int:
        """
        Drop id mappings recorded before ``before``.

        Mappings for local ids in ``keep`` survive regardless of age.
        Returns the number dropped.
        """
        ...
