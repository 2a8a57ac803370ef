"""Process-scoped wiring of the offline write queue.

A :class:`SyncContext` owns the operation store, the remote store client,
the network monitor, the event bus, the sync engine and the mutation
façade. Build one at startup and hand it to whatever needs to write.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from homekeep.core.operation import OperationAction, OperationRecord, OperationStatus
from homekeep.network.monitor import NetworkMonitor, NetworkState
from homekeep.network.probe import ConnectivityProbe
from homekeep.remote.http_store import HTTPEntityStore
from homekeep.storage.factory import create_store
from homekeep.sync.engine import DrainReport, SyncEngine, SyncState
from homekeep.sync.events import EventBus, SyncEvent, SyncEventType, SyncListener
from homekeep.sync.facade import MutationFacade

if TYPE_CHECKING:
    from homekeep.config import HomekeepConfig
    from homekeep.core.result import MutationResult
    from homekeep.remote.base import RemoteEntityStore
    from homekeep.storage.base import OperationStore

logger = logging.getLogger(__name__)

_QUEUED_STATUSES = (OperationStatus.PENDING, OperationStatus.IN_FLIGHT)


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot for an offline indicator."""

    network: NetworkState
    engine: SyncState
    syncing: bool
    pending: int
    failed: int

    @property
    def label(self) -> str:
        if self.syncing:
            return "syncing"
        if self.network == NetworkState.OFFLINE:
            return "offline"
        if self.pending:
            return f"{self.pending} pending change{'s' if self.pending != 1 else ''}"
        return "up to date"

    @property
    def visible(self) -> bool:
        """Whether an indicator should be shown at all."""
        return self.syncing or self.network == NetworkState.OFFLINE or self.pending > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "network": self.network.value,
            "engine": self.engine.value,
            "syncing": self.syncing,
            "pending": self.pending,
            "failed": self.failed,
        }


class SyncContext:
    """
    The offline write queue, assembled.

    Usage:
        async with await SyncContext.open(config) as ctx:
            result = await ctx.perform("Task", "create", {"title": "Buy milk"})
            print((await ctx.status()).label)
    """

    def __init__(
        self,
        store: OperationStore,
        remote: RemoteEntityStore,
        *,
        monitor: NetworkMonitor | None = None,
        events: EventBus | None = None,
        probe: ConnectivityProbe | None = None,
        call_timeout: float = 15.0,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
    ) -> None:
        self.store = store
        self.remote = remote
        self.monitor = monitor or NetworkMonitor()
        self.events = events or EventBus()
        self.probe = probe
        self.engine = SyncEngine(
            store,
            remote,
            self.events,
            call_timeout=call_timeout,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
            is_online=lambda: self.monitor.is_online,
        )
        self.facade = MutationFacade(
            store, remote, self.monitor, self.engine, call_timeout=call_timeout
        )
        self._syncing = False
        self._unsubscribers: list[Callable[[], None]] = []
        self._started = False

    @classmethod
    async def open(
        cls,
        config: HomekeepConfig,
        *,
        store: OperationStore | None = None,
        remote: RemoteEntityStore | None = None,
        probe: bool | None = None,
    ) -> SyncContext:
        """
        Build and start a context from configuration.

        Args:
            config: Loaded configuration
            store: Override the configured operation store
            remote: Override the HTTP remote store client
            probe: Run the connectivity probe (defaults to ``sync.auto_probe``)
        """
        if store is None:
            store = await create_store(config)
        if remote is None:
            remote = HTTPEntityStore(
                config.remote.base_url,
                timeout=config.remote.timeout,
                api_key=config.remote.api_key,
            )

        monitor = NetworkMonitor()
        use_probe = config.sync.auto_probe if probe is None else probe
        connectivity = (
            ConnectivityProbe(
                config.remote.health_url,
                monitor,
                interval=config.sync.probe_interval,
                timeout=min(5.0, config.remote.timeout),
            )
            if use_probe
            else None
        )

        ctx = cls(
            store,
            remote,
            monitor=monitor,
            probe=connectivity,
            call_timeout=config.remote.timeout,
            backoff_base=config.sync.backoff_base,
            backoff_max=config.sync.backoff_max,
        )
        try:
            await ctx.start()
        except BaseException:
            await ctx.close()
            raise
        return ctx

    async def start(self) -> None:
        """Connect, wire reconnect edges to the engine and recover the queue."""
        if self._started:
            return
        self._started = True

        await self.remote.connect()
        self._unsubscribers.append(self.monitor.on_reconnect(self._on_reconnect))
        self._unsubscribers.append(self.events.add_listener(self._track_syncing))
        await self.engine.start()

        if self.probe is not None:
            # First probe settles the initial state; a reachable store fires the reconnect edge
            await self.probe.check_once()
            self.probe.start()

    async def close(self) -> None:
        """Stop background work and release resources."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        if self.probe is not None:
            await self.probe.stop()
        await self.engine.stop()
        await self.remote.disconnect()
        await self.store.close()
        self._started = False

    async def __aenter__(self) -> SyncContext:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    # ── UI surface ───────────────────────────────────────────────────

    async def perform(
        self,
        entity_type: str,
        action: OperationAction | str,
        payload: dict[str, Any],
    ) -> MutationResult:
        return await self.facade.perform(entity_type, action, payload)

    async def get_pending_count(self) -> int:
        return await self.facade.get_pending_count()

    def add_listener(self, listener: SyncListener) -> Callable[[], None]:
        return self.events.add_listener(listener)

    def get_network_state(self) -> NetworkState:
        return self.monitor.state

    async def list_pending(self) -> list[OperationRecord]:
        return await self.store.list(statuses=_QUEUED_STATUSES)

    async def list_failed(self) -> list[OperationRecord]:
        """Records the remote store rejected, awaiting retry or discard."""
        return await self.store.list(statuses=[OperationStatus.FAILED])

    async def retry(self, record_id: str) -> bool:
        return await self.engine.retry(record_id)

    async def discard(self, record_id: str) -> bool:
        return await self.engine.discard(record_id)

    async def sync_now(self) -> DrainReport:
        """Drain the queue now and wait for the result."""
        return await asyncio.shield(self.engine.trigger())

    async def status(self) -> SyncStatus:
        return SyncStatus(
            network=self.monitor.state,
            engine=self.engine.state,
            syncing=self._syncing or self.engine.is_draining,
            pending=await self.store.count(statuses=_QUEUED_STATUSES),
            failed=await self.store.count(statuses=[OperationStatus.FAILED]),
        )

    def _on_reconnect(self) -> None:
        logger.info("Connection restored, draining operation queue")
        self.engine.trigger()

    def _track_syncing(self, event: SyncEvent) -> None:
        if event.type == SyncEventType.SYNC_START:
            self._syncing = True
        elif event.type == SyncEventType.SYNC_COMPLETE or event.outcome == "transient":
            # A rejected record does not end the drain; a transient failure does
            self._syncing = False
