"""Replay of queued operations and the mutation entry point."""

from homekeep.sync.collapse import plan_collapses
from homekeep.sync.context import SyncContext, SyncStatus
from homekeep.sync.engine import DrainReport, SyncEngine, SyncState
from homekeep.sync.events import EventBus, SyncEvent, SyncEventType, SyncListener
from homekeep.sync.facade import MutationFacade

__all__ = [
    # Engine
    "DrainReport",
    "SyncEngine",
    "SyncState",
    "plan_collapses",
    # Events
    "EventBus",
    "SyncEvent",
    "SyncEventType",
    "SyncListener",
    # Entry points
    "MutationFacade",
    "SyncContext",
    "SyncStatus",
]
