"""Synchronization engine - replays queued operations against the remote store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from homekeep.core.operation import (
    IDEMPOTENCY_FIELD,
    UNKNOWN_REMOTE_ID,
    OperationAction,
    OperationRecord,
    OperationStatus,
    is_local_id,
    mark_attempt,
    mark_failed,
    reset_failed,
    revert_to_pending,
)
from homekeep.errors import (
    DuplicateIntent,
    InvalidTransition,
    NetworkTransient,
    RemoteIdUnknown,
    RemoteNotFound,
    RemoteRejected,
    StorageError,
    UnresolvedDependency,
)
from homekeep.sync.collapse import plan_collapses
from homekeep.sync.events import EventBus, SyncEvent, SyncEventType
from homekeep.utils.timeutils import utcnow

if TYPE_CHECKING:
    from homekeep.remote.base import RemoteEntityStore
    from homekeep.storage.base import OperationStore

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    """Engine state."""

    IDLE = "idle"
    DRAINING = "draining"
    ERROR_BACKOFF = "error-backoff"


class _Outcome(StrEnum):
    DONE = "done"
    DUPLICATE = "duplicate"
    COLLAPSED = "collapsed"
    FAILED = "failed"
    TRANSIENT = "transient"


@dataclass
class DrainReport:
    """Counters for one drain run."""

    succeeded: int = 0
    failed: int = 0
    collapsed: int = 0
    interrupted: bool = False
    error: str | None = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + self.collapsed

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "collapsed": self.collapsed,
            "processed": self.processed,
            "interrupted": self.interrupted,
            "error": self.error,
        }


class SyncEngine:
    """
    Drains the operation queue against the remote entity store.

    States and transitions:
        idle          --trigger()-->          draining
        draining      --queue empty-->        idle            (sync-complete)
        draining      --transient failure-->  error-backoff   (retry scheduled)
        error-backoff --backoff elapsed-->    draining
        draining      --permanent failure-->  draining        (record failed, sync-error)

    Only one drain runs at a time: triggering while a drain is running joins
    it, and the running drain re-reads the queue before finishing so records
    appended meanwhile are not left behind. Records are replayed strictly in
    enqueue order.
    """

    def __init__(
        self,
        store: OperationStore,
        remote: RemoteEntityStore,
        events: EventBus,
        *,
        call_timeout: float = 15.0,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        is_online: Callable[[], bool] | None = None,
        mapping_retention: float = 7 * 24 * 3600.0,
    ) -> None:
        """
        Args:
            store: Durable queue to drain
            remote: Remote entity store to replay against
            events: Bus receiving lifecycle events
            call_timeout: Bound on each remote call in seconds
            backoff_base: First retry delay after a transient failure
            backoff_max: Cap on the retry delay
            is_online: Connectivity check consulted when a backoff elapses;
                while it returns False the engine waits for the next trigger
            mapping_retention: Seconds a local -> remote id mapping is kept
                after its create synced, once no queued record references it
        """
        self._store = store
        self._remote = remote
        self._events = events
        self._call_timeout = call_timeout
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._is_online = is_online
        self._mapping_retention = mapping_retention

        self._state = SyncState.IDLE
        self._drain_task: asyncio.Task[DrainReport] | None = None
        self._rerun_requested = False
        self._backoff_handle: asyncio.TimerHandle | None = None
        self._consecutive_failures = 0
        self._last_report: DrainReport | None = None
        self._stopped = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def consecutive_failures(self) -> int:
        """Transient failures since the last drain that reached an empty queue."""
        return self._consecutive_failures

    @property
    def last_report(self) -> DrainReport | None:
        return self._last_report

    def backoff_delay(self, failures: int) -> float:
        """Delay before retry number ``failures`` (1-based)."""
        if failures < 1:
            return 0.0
        return min(self._backoff_base * (2 ** (failures - 1)), self._backoff_max)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self, *, drain: bool = True) -> None:
        """Recover records left in-flight by a crash and optionally start a drain."""
        self._stopped = False
        recovered = await self._recover_in_flight()
        if recovered:
            logger.info("Recovered %d in-flight operation(s) after restart", recovered)

        # Keys whose record was removed before the key itself was forgotten
        pruned = await self._store.prune_acknowledgements()
        if pruned:
            logger.debug("Dropped %d acknowledgement(s) with no queued record", pruned)

        if drain and (self._is_online is None or self._is_online()):
            self.trigger()

    async def stop(self) -> None:
        """Cancel any scheduled retry and wait for a running drain to finish.

        No retry is scheduled after this returns, including one requested
        by the drain that was still running.
        """
        self._stopped = True
        self._cancel_backoff()
        if self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)
        self._cancel_backoff()
        if self._state == SyncState.ERROR_BACKOFF:
            self._set_state(SyncState.IDLE)

    def trigger(self) -> asyncio.Task[DrainReport]:
        """
        Start a drain, or join the one already running.

        Called on reconnect edges and for manual sync. Cancels a pending
        backoff timer.
        """
        if self._drain_task is not None and not self._drain_task.done():
            self._rerun_requested = True
            return self._drain_task

        self._cancel_backoff()
        self._drain_task = asyncio.create_task(self._drain(), name="homekeep-drain")
        return self._drain_task

    async def wait_idle(self) -> DrainReport | None:
        """Wait for the running drain, if any, and return its report."""
        if self._drain_task is not None:
            return await asyncio.shield(self._drain_task)
        return self._last_report

    # ── User actions on failed records ───────────────────────────────

    async def retry(self, record_id: str) -> bool:
        """Put a failed record back in the queue and trigger a drain."""
        record = await self._store.get(record_id)
        if record is None:
            return False
        await self._store.save(reset_failed(record))
        logger.info("Retrying failed operation %s", record_id)
        if self._is_online is None or self._is_online():
            self.trigger()
        return True

    async def discard(self, record_id: str) -> bool:
        """Drop a failed record. Pending records cannot be discarded."""
        record = await self._store.get(record_id)
        if record is None:
            return False
        if record.status != OperationStatus.FAILED:
            raise InvalidTransition(
                f"Only failed records can be discarded, {record_id} is {record.status}"
            )
        logger.info(
            "Discarding failed operation %s (%s %s)", record_id, record.action, record.entity_type
        )
        return await self._store.remove(record_id)

    # ── Drain ────────────────────────────────────────────────────────

    async def _drain(self) -> DrainReport:
        report = DrainReport()
        self._set_state(SyncState.DRAINING)

        try:
            await self._recover_in_flight()
            remaining = await self._store.count(statuses=[OperationStatus.PENDING])
            self._events.emit(SyncEvent(type=SyncEventType.SYNC_START, remaining=remaining))

            while True:
                self._rerun_requested = False
                pending = await self._store.list(statuses=[OperationStatus.PENDING])
                if not pending:
                    if self._rerun_requested:
                        continue
                    break

                pending = await self._collapse(pending, report)

                for index, record in enumerate(pending):
                    outcome = await self._replay(record, report, len(pending) - index - 1)
                    if outcome == _Outcome.TRANSIENT:
                        report.interrupted = True
                        self._enter_backoff()
                        return self._finish(report)

            await self._prune_id_mappings()

        except StorageError as e:
            logger.warning("Drain stopped: operation store failed: %s", e)
            report.interrupted = True
            report.error = str(e)
            self._events.emit(
                SyncEvent(
                    type=SyncEventType.SYNC_ERROR,
                    outcome=_Outcome.TRANSIENT.value,
                    error=str(e),
                    processed=report.processed,
                )
            )
            self._enter_backoff()
            return self._finish(report)

        self._consecutive_failures = 0
        self._set_state(SyncState.IDLE)
        self._events.emit(
            SyncEvent(type=SyncEventType.SYNC_COMPLETE, processed=report.processed, remaining=0)
        )
        logger.info(
            "Sync complete: %d succeeded, %d failed, %d collapsed",
            report.succeeded,
            report.failed,
            report.collapsed,
        )
        return self._finish(report)

    def _finish(self, report: DrainReport) -> DrainReport:
        self._last_report = report
        return report

    async def _recover_in_flight(self) -> int:
        """Return in-flight records to pending.

        Outside a drain no record can legitimately be in flight; one found
        here was interrupted by a crash or a store failure.
        """
        recovered = 0
        for record in await self._store.list(statuses=[OperationStatus.IN_FLIGHT]):
            await self._store.save(revert_to_pending(record, record.last_error))
            recovered += 1
        return recovered

    async def _collapse(
        self, pending: list[OperationRecord], report: DrainReport
    ) -> list[OperationRecord]:
        """Drop create/delete pairs of never-synced entities. Returns what is left to replay."""
        dropped = plan_collapses(pending)
        if not dropped:
            return pending

        dropped_ids = {r.id for r in dropped}
        for record in dropped:
            await self._store.remove(record.id)
            report.collapsed += 1
            self._events.emit(
                SyncEvent(
                    type=SyncEventType.SYNC_PROGRESS,
                    record_id=record.id,
                    entity_type=record.entity_type,
                    action=record.action.value,
                    outcome=_Outcome.COLLAPSED.value,
                    processed=report.processed,
                )
            )
        logger.debug("Collapsed %d operation(s) on never-synced entities", len(dropped))
        return [r for r in pending if r.id not in dropped_ids]

    async def _replay(
        self, record: OperationRecord, report: DrainReport, remaining: int
    ) -> _Outcome:
        """Replay one record and persist the result."""
        attempt = mark_attempt(record)
        await self._store.save(attempt)

        try:
            remote_id = await self._apply(attempt)
            outcome = _Outcome.DONE
        except DuplicateIntent as e:
            remote_id = e.remote_id
            outcome = _Outcome.DUPLICATE
        except NetworkTransient as e:
            await self._store.save(revert_to_pending(attempt, str(e)))
            logger.info(
                "Transient failure on %s %s (attempt %d): %s",
                attempt.action,
                attempt.entity_type,
                attempt.attempt_count,
                e,
            )
            self._events.emit(
                self._record_event(
                    SyncEventType.SYNC_ERROR, attempt, _Outcome.TRANSIENT, report, remaining, str(e)
                )
            )
            return _Outcome.TRANSIENT
        except (RemoteRejected, UnresolvedDependency) as e:
            return await self._fail(attempt, str(e), report, remaining)
        except StorageError:
            raise
        except Exception as e:
            logger.warning(
                "Unexpected error replaying %s %s",
                attempt.action,
                attempt.entity_type,
                exc_info=True,
            )
            return await self._fail(attempt, f"Unexpected error: {e}", report, remaining)

        await self._acknowledge(attempt, remote_id)
        report.succeeded += 1
        self._events.emit(
            self._record_event(SyncEventType.SYNC_PROGRESS, attempt, outcome, report, remaining)
        )
        logger.debug(
            "Replayed %s %s %s (%s)", attempt.action, attempt.entity_type, attempt.entity_id, outcome
        )
        return outcome

    async def _fail(
        self, record: OperationRecord, reason: str, report: DrainReport, remaining: int
    ) -> _Outcome:
        await self._store.save(mark_failed(record, reason))
        report.failed += 1
        logger.warning(
            "Operation %s (%s %s) rejected: %s",
            record.id,
            record.action,
            record.entity_type,
            reason,
        )
        self._events.emit(
            self._record_event(
                SyncEventType.SYNC_ERROR, record, _Outcome.FAILED, report, remaining, reason
            )
        )
        return _Outcome.FAILED

    async def _acknowledge(self, record: OperationRecord, remote_id: str | None) -> None:
        """Persist the acknowledgement, then drop the record from the queue."""
        if record.action == OperationAction.CREATE and is_local_id(record.entity_id):
            if remote_id:
                await self._store.save_id_mapping(record.entity_id, remote_id)
            else:
                # Later records on this entity fail instead of being skipped
                logger.warning(
                    "Create %s acknowledged without a remote id; %s cannot be targeted",
                    record.entity_type,
                    record.entity_id,
                )
                await self._store.save_id_mapping(record.entity_id, UNKNOWN_REMOTE_ID)
        await self._store.acknowledge(record.idempotency_key, remote_id)
        await self._store.remove(record.id)
        await self._store.forget_acknowledgement(record.idempotency_key)

    async def _prune_id_mappings(self) -> None:
        """Drop old mappings no remaining record can still need."""
        referenced: set[str] = set()
        for record in await self._store.list():
            if is_local_id(record.entity_id):
                referenced.add(record.entity_id)
            referenced.update(v for v in record.payload.values() if is_local_id(v))
        cutoff = utcnow() - timedelta(seconds=self._mapping_retention)
        pruned = await self._store.prune_id_mappings(before=cutoff, keep=referenced)
        if pruned:
            logger.debug("Dropped %d id mapping(s) older than %s", pruned, cutoff.isoformat())

    async def _apply(self, record: OperationRecord) -> str | None:
        """Send one record to the remote store. Returns the remote id for creates."""
        acknowledged, known_id = await self._store.get_acknowledgement(record.idempotency_key)
        if acknowledged:
            raise DuplicateIntent("Acknowledged before restart", remote_id=known_id, status_code=None)

        try:
            if record.action == OperationAction.CREATE:
                payload = await self._resolve_payload(record)
                return await asyncio.wait_for(
                    self._remote.create(
                        record.entity_type, payload, idempotency_key=record.idempotency_key
                    ),
                    timeout=self._call_timeout,
                )

            if record.action == OperationAction.UPDATE:
                target = await self._resolve_id(record.entity_id)
                patch = await self._resolve_payload(record)
                patch.pop("id", None)
                await asyncio.wait_for(
                    self._remote.update(
                        record.entity_type,
                        target,
                        patch,
                        idempotency_key=record.idempotency_key,
                    ),
                    timeout=self._call_timeout,
                )
                return target

            return await self._apply_delete(record)
        except asyncio.TimeoutError as e:
            raise NetworkTransient(f"Remote call timed out after {self._call_timeout}s") from e

    async def _apply_delete(self, record: OperationRecord) -> str | None:
        try:
            target = await self._resolve_id(record.entity_id)
        except RemoteIdUnknown:
            raise
        except UnresolvedDependency:
            # The entity never reached the remote store: nothing to delete
            logger.debug("Delete of unsynced %s %s is a no-op", record.entity_type, record.entity_id)
            return None

        try:
            await asyncio.wait_for(
                self._remote.delete(record.entity_type, target, idempotency_key=record.idempotency_key),
                timeout=self._call_timeout,
            )
        except RemoteNotFound:
            logger.debug("Delete of %s %s: already gone", record.entity_type, target)
        return target

    async def _resolve_id(self, entity_id: str) -> str:
        if not is_local_id(entity_id):
            return entity_id
        remote_id = await self._store.get_id_mapping(entity_id)
        if remote_id is None:
            raise UnresolvedDependency(f"Entity {entity_id} was never created on the remote store")
        if remote_id == UNKNOWN_REMOTE_ID:
            raise RemoteIdUnknown(
                f"Entity {entity_id} exists on the remote store but its id was never reported"
            )
        return remote_id

    async def _resolve_payload(self, record: OperationRecord) -> dict[str, Any]:
        """Rewrite local ids referenced by the payload to their remote ids."""
        payload: dict[str, Any] = {}
        for key, value in record.payload.items():
            if key == "id" and record.action == OperationAction.CREATE and is_local_id(value):
                continue
            if key != IDEMPOTENCY_FIELD and is_local_id(value):
                value = await self._resolve_id(value)
            payload[key] = value
        return payload

    # ── State helpers ────────────────────────────────────────────────

    def _record_event(
        self,
        event_type: SyncEventType,
        record: OperationRecord,
        outcome: _Outcome,
        report: DrainReport,
        remaining: int,
        error: str | None = None,
    ) -> SyncEvent:
        return SyncEvent(
            type=event_type,
            record_id=record.id,
            entity_type=record.entity_type,
            action=record.action.value,
            outcome=outcome.value,
            error=error,
            processed=report.processed,
            remaining=remaining,
        )

    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.info("Sync engine: %s -> %s", self._state, state)
            self._state = state

    def _enter_backoff(self) -> None:
        self._consecutive_failures += 1
        delay = self.backoff_delay(self._consecutive_failures)
        self._set_state(SyncState.ERROR_BACKOFF)
        if self._stopped:
            logger.info(
                "Engine stopped; not scheduling a retry (failure #%d)", self._consecutive_failures
            )
            return
        loop = asyncio.get_running_loop()
        self._backoff_handle = loop.call_later(delay, self._on_backoff_elapsed)
        logger.info("Retrying sync in %.1fs (failure #%d)", delay, self._consecutive_failures)

    def _on_backoff_elapsed(self) -> None:
        self._backoff_handle = None
        if self._stopped:
            return
        if self._is_online is not None and not self._is_online():
            logger.info("Backoff elapsed while offline; waiting for reconnect")
            return
        self.trigger()

    def _cancel_backoff(self) -> None:
        if self._backoff_handle is not None:
            self._backoff_handle.cancel()
            self._backoff_handle = None
