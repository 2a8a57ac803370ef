"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from homekeep.errors import DuplicateIntent, NetworkTransient, RemoteNotFound, RemoteRejected
from homekeep.network.monitor import NetworkMonitor, NetworkState
from homekeep.remote.base import RemoteEntityStore
from homekeep.storage.memory_store import InMemoryOperationStore
from homekeep.storage.sqlite_store import SQLiteOperationStore
from homekeep.sync.engine import SyncEngine
from homekeep.sync.events import EventBus, SyncEvent


class FakeRemote(RemoteEntityStore):
    """
    In-memory remote entity store honoring idempotency keys.

    Knobs:
        reachable: False makes every call raise NetworkTransient
        failures: exceptions raised by the next calls, in order
        reject_titles: payloads with one of these titles are rejected
        hang_after: after this many applied calls, calls never return
    """

    def __init__(self) -> None:
        self.entities: dict[str, dict[str, dict[str, Any]]] = {}
        self.attempts: list[tuple[str, str, str | None, str]] = []
        self.applied: list[tuple[str, str, str, dict[str, Any]]] = []
        self.seen_keys: dict[str, str | None] = {}
        self.failures: list[Exception] = []
        self.reject_titles: set[str] = set()
        self.reachable = True
        self.hang_after: int | None = None
        self._next_id = 0

    async def _check(self, key: str, payload: dict[str, Any] | None) -> None:
        if not self.reachable:
            raise NetworkTransient("Connection refused")
        if self.hang_after is not None and len(self.applied) >= self.hang_after:
            await asyncio.Event().wait()
        if self.failures:
            raise self.failures.pop(0)
        if payload and payload.get("title") in self.reject_titles:
            raise RemoteRejected(f"Rejected title {payload['title']!r}", status_code=422)
        if key in self.seen_keys:
            raise DuplicateIntent(remote_id=self.seen_keys[key])

    async def create(
        self, entity_type: str, payload: dict[str, Any], *, idempotency_key: str
    ) -> str:
        self.attempts.append(("create", entity_type, None, idempotency_key))
        await self._check(idempotency_key, payload)
        self._next_id += 1
        remote_id = f"srv-{self._next_id}"
        self.entities.setdefault(entity_type, {})[remote_id] = {**payload, "id": remote_id}
        self.seen_keys[idempotency_key] = remote_id
        self.applied.append(("create", entity_type, remote_id, dict(payload)))
        return remote_id

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        patch: dict[str, Any],
        *,
        idempotency_key: str,
    ) -> None:
        self.attempts.append(("update", entity_type, entity_id, idempotency_key))
        await self._check(idempotency_key, patch)
        entity = self.entities.get(entity_type, {}).get(entity_id)
        if entity is None:
            raise RemoteNotFound(f"{entity_type} {entity_id}", status_code=404)
        entity.update(patch)
        self.seen_keys[idempotency_key] = entity_id
        self.applied.append(("update", entity_type, entity_id, dict(patch)))

    async def delete(self, entity_type: str, entity_id: str, *, idempotency_key: str) -> None:
        self.attempts.append(("delete", entity_type, entity_id, idempotency_key))
        await self._check(idempotency_key, None)
        if self.entities.get(entity_type, {}).pop(entity_id, None) is None:
            raise RemoteNotFound(f"{entity_type} {entity_id}", status_code=404)
        self.seen_keys[idempotency_key] = entity_id
        self.applied.append(("delete", entity_type, entity_id, {}))

    def seed(self, entity_type: str, entity: dict[str, Any]) -> str:
        """Put an entity on the server as if it had been synced long ago."""
        self._next_id += 1
        remote_id = entity.get("id") or f"srv-{self._next_id}"
        self.entities.setdefault(entity_type, {})[remote_id] = {**entity, "id": remote_id}
        return remote_id


class EventRecorder:
    """Collects sync events for assertions."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def __call__(self, event: SyncEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def of_type(self, event_type: str) -> list[SyncEvent]:
        return [e for e in self.events if e.type.value == event_type]


@pytest.fixture
def remote() -> FakeRemote:
    """Create a reachable fake remote store."""
    return FakeRemote()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    """Record every event emitted on the bus."""
    rec = EventRecorder()
    events.add_listener(rec)
    return rec


@pytest.fixture
def monitor() -> NetworkMonitor:
    """Monitor that starts offline."""
    return NetworkMonitor(NetworkState.OFFLINE)


@pytest_asyncio.fixture
async def memory_store() -> AsyncGenerator[InMemoryOperationStore, None]:
    store = InMemoryOperationStore()
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "queue.db"


@pytest_asyncio.fixture
async def sqlite_store(db_path: Path) -> AsyncGenerator[SQLiteOperationStore, None]:
    """Create an initialized SQLite store in a temp directory."""
    store = SQLiteOperationStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def engine(
    memory_store: InMemoryOperationStore,
    remote: FakeRemote,
    events: EventBus,
    monitor: NetworkMonitor,
) -> AsyncGenerator[SyncEngine, None]:
    """
    Engine over the in-memory store.

    The backoff is long so a transient failure leaves the engine parked in
    error-backoff for the duration of a test.
    """
    sync_engine = SyncEngine(
        memory_store,
        remote,
        events,
        call_timeout=0.2,
        backoff_base=30.0,
        backoff_max=60.0,
        is_online=lambda: monitor.is_online,
    )
    yield sync_engine
    await sync_engine.stop()
