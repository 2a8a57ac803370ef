"""Mutation façade - the single entry point for application writes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from homekeep.core.entities import validate_entity_type
from homekeep.core.operation import (
    IDEMPOTENCY_FIELD,
    OperationAction,
    OperationRecord,
    OperationStatus,
    create_record,
    is_local_id,
    new_idempotency_key,
)
from homekeep.core.result import MutationResult
from homekeep.errors import DuplicateIntent, NetworkTransient

if TYPE_CHECKING:
    from homekeep.network.monitor import NetworkMonitor
    from homekeep.remote.base import RemoteEntityStore
    from homekeep.storage.base import OperationStore
    from homekeep.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

_QUEUED_STATUSES = (OperationStatus.PENDING, OperationStatus.IN_FLIGHT)


class MutationFacade:
    """
    Routes every create/update/delete either to the remote store or to the
    durable queue.

    - Online with an empty queue: call the remote store directly.
    - Online with queued work, or any local placeholder id involved: enqueue
      and trigger a drain, so this mutation cannot overtake earlier intent.
    - Offline: enqueue and return an optimistic local value at once.
    - Direct call fails at the network level: mark the connection offline
      and enqueue instead of losing the mutation.

    Store failures and remote rejections propagate to the caller.
    """

    def __init__(
        self,
        store: OperationStore,
        remote: RemoteEntityStore,
        monitor: NetworkMonitor,
        engine: SyncEngine,
        *,
        call_timeout: float = 15.0,
    ) -> None:
        self._store = store
        self._remote = remote
        self._monitor = monitor
        self._engine = engine
        self._call_timeout = call_timeout

    async def perform(
        self,
        entity_type: str,
        action: OperationAction | str,
        payload: dict[str, Any],
    ) -> MutationResult:
        """
        Apply a mutation now or queue it for later replay.

        Args:
            entity_type: Target collection (e.g. "Task")
            action: "create", "update" or "delete"
            payload: Full object for create; ``id`` plus changed fields for
                update; ``id`` for delete

        Returns:
            A confirmed result with the remote value, or an unconfirmed one
            carrying the optimistic local value and the queued record id

        Raises:
            ValueError: On malformed input
            RemoteRejected: If the remote store refused a direct call
            StorageFull, StorageUnavailable: If the mutation could not be queued
        """
        validate_entity_type(entity_type)
        action = OperationAction(action)
        payload = dict(payload)

        # Same key whether the mutation goes out now or after a delay
        if action == OperationAction.CREATE:
            payload.setdefault(IDEMPOTENCY_FIELD, new_idempotency_key(entity_type))
            key = str(payload[IDEMPOTENCY_FIELD])
        elif not payload.get("id"):
            raise ValueError(f"{action.value} payload for {entity_type} requires an 'id'")
        else:
            key = new_idempotency_key(entity_type)

        if self._monitor.is_online and await self._can_call_directly(payload):
            try:
                return await self._perform_remote(entity_type, action, payload, key)
            except NetworkTransient as e:
                logger.info("Direct %s %s failed (%s), queueing", action, entity_type, e)
                self._monitor.report_unreachable()

        return await self._enqueue(entity_type, action, payload, key)

    async def get_pending_count(self) -> int:
        """Number of records still waiting to reach the remote store."""
        return await self._store.count(statuses=_QUEUED_STATUSES)

    async def _can_call_directly(self, payload: dict[str, Any]) -> bool:
        if any(is_local_id(v) for k, v in payload.items() if k != IDEMPOTENCY_FIELD):
            return False
        return await self._store.count(statuses=_QUEUED_STATUSES) == 0

    async def _perform_remote(
        self, entity_type: str, action: OperationAction, payload: dict[str, Any], key: str
    ) -> MutationResult:
        try:
            if action == OperationAction.CREATE:
                remote_id = await self._call(
                    self._remote.create(entity_type, payload, idempotency_key=key)
                )
                return MutationResult.remote({**payload, "id": remote_id})

            entity_id = str(payload["id"])
            if action == OperationAction.UPDATE:
                patch = {k: v for k, v in payload.items() if k != "id"}
                await self._call(
                    self._remote.update(entity_type, entity_id, patch, idempotency_key=key)
                )
                return MutationResult.remote(payload)

            await self._call(self._remote.delete(entity_type, entity_id, idempotency_key=key))
            return MutationResult.remote({"id": entity_id})
        except DuplicateIntent as e:
            logger.debug("Duplicate intent for %s %s treated as success", action, entity_type)
            value = dict(payload)
            if e.remote_id:
                value["id"] = e.remote_id
            return MutationResult.remote(value)

    async def _call(self, coro: Any) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self._call_timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTransient(f"Remote call timed out after {self._call_timeout}s") from e

    async def _enqueue(
        self, entity_type: str, action: OperationAction, payload: dict[str, Any], key: str
    ) -> MutationResult:
        record = create_record(entity_type, action, payload, idempotency_key=key)
        stored = await self._store.append(record)
        logger.debug("Queued %s %s %s as %s", action, entity_type, stored.entity_id, stored.id)

        if self._monitor.is_online:
            self._engine.trigger()

        return MutationResult.local(_optimistic_value(stored), stored.id)


def _optimistic_value(record: OperationRecord) -> dict[str, Any]:
    """What the UI may render until the remote store confirms."""
    if record.action == OperationAction.DELETE:
        return {"id": record.entity_id, "_deleted": True}
    value = {k: v for k, v in record.payload.items() if k != IDEMPOTENCY_FIELD}
    value["id"] = record.entity_id
    value["_pending"] = True
    return value
