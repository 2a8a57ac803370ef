"""In-memory operation store for tests and ephemeral sessions."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from typing import Any

from homekeep.core.operation import OperationRecord, OperationStatus
from homekeep.storage.base import OperationStore, validate_patch
from homekeep.utils.timeutils import utcnow


class InMemoryOperationStore(OperationStore):
    """Dict-backed store. Data is lost when the process exits."""

    def __init__(self) -> None:
        self._records: dict[str, OperationRecord] = {}
        self._id_mappings: dict[str, tuple[str, datetime]] = {}
        self._acks: dict[str, str | None] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    async def append(self, record: OperationRecord) -> OperationRecord:
        async with self._lock:
            if record.id in self._records:
                raise ValueError(f"Operation record {record.id} already exists")
            self._sequence += 1
            stored = replace(record, sequence=self._sequence)
            self._records[stored.id] = stored
            return stored

    async def list(
        self, *, statuses: Iterable[OperationStatus] | None = None
    ) -> list[OperationRecord]:
        wanted = set(statuses) if statuses is not None else None
        records = sorted(self._records.values(), key=lambda r: r.sequence)
        if wanted is None:
            return records
        return [r for r in records if r.status in wanted]

    async def get(self, record_id: str) -> OperationRecord | None:
        return self._records.get(record_id)

    async def remove(self, record_id: str) -> bool:
        async with self._lock:
            return self._records.pop(record_id, None) is not None

    async def update(self, record_id: str, **patch: Any) -> OperationRecord | None:
        validate_patch(patch)
        async with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return None
            if "status" in patch:
                patch["status"] = OperationStatus(patch["status"])
            updated = replace(current, **patch)
            self._records[record_id] = updated
            return updated

    async def save_id_mapping(self, local_id: str, remote_id: str) -> None:
        self._id_mappings[local_id] = (remote_id, utcnow())

    async def get_id_mapping(self, local_id: str) -> str | None:
        entry = self._id_mappings.get(local_id)
        return entry[0] if entry is not None else None

    async def get_id_mappings(self) -> dict[str, str]:
        return {local_id: remote_id for local_id, (remote_id, _) in self._id_mappings.items()}

    async def acknowledge(self, idempotency_key: str, remote_id: str | None = None) -> None:
        self._acks[idempotency_key] = remote_id

    async def get_acknowledgement(self, idempotency_key: str) -> tuple[bool, str | None]:
        if idempotency_key not in self._acks:
            return False, None
        return True, self._acks[idempotency_key]

    async def forget_acknowledgement(self, idempotency_key: str) -> None:
        self._acks.pop(idempotency_key, None)

    async def prune_acknowledgements(self) -> int:
        queued = {r.idempotency_key for r in self._records.values()}
        stale = [key for key in self._acks if key not in queued]
        for key in stale:
            del self._acks[key]
        return len(stale)

    async def prune_id_mappings(self, *, before: datetime, keep: Iterable[str] = ()) -> int:
        kept = set(keep)
        stale = [
            local_id
            for local_id, (_, mapped_at) in self._id_mappings.items()
            if mapped_at < before and local_id not in kept
        ]
        for local_id in stale:
            del self._id_mappings[local_id]
        return len(stale)
