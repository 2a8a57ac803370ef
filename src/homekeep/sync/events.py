"""In-process publish/subscribe for sync lifecycle events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from homekeep.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class SyncEventType(StrEnum):
    """Lifecycle events of a drain."""

    SYNC_START = "sync-start"
    SYNC_PROGRESS = "sync-progress"
    SYNC_ERROR = "sync-error"
    SYNC_COMPLETE = "sync-complete"


@dataclass(frozen=True)
class SyncEvent:
    """
    A lifecycle event emitted by the sync engine.

    Per-record events (progress, error) carry the record fields; start and
    complete events carry only the counters.
    """

    type: SyncEventType
    timestamp: datetime = field(default_factory=utcnow)
    record_id: str | None = None
    entity_type: str | None = None
    action: str | None = None
    outcome: str | None = None  # "done", "duplicate", "collapsed", "failed"
    error: str | None = None
    processed: int = 0
    remaining: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "record_id": self.record_id,
            "entity_type": self.entity_type,
            "action": self.action,
            "outcome": self.outcome,
            "error": self.error,
            "processed": self.processed,
            "remaining": self.remaining,
        }


SyncListener = Callable[[SyncEvent], None]


class EventBus:
    """
    Synchronous, best-effort event delivery.

    Listeners run in registration order on the emitting coroutine. A
    failing listener is logged and skipped. Events are not stored: a
    listener registered after an event fired never sees it.
    """

    def __init__(self) -> None:
        self._listeners: list[SyncListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: SyncListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A function that unregisters this listener. Calling it more than
            once is harmless.
        """
        self._listeners.append(listener)
        registered = True

        def unsubscribe() -> None:
            nonlocal registered
            # Each handle removes only its own registration
            if registered:
                registered = False
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SyncEvent) -> None:
        """Deliver an event to every registered listener."""
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("Sync listener failed on %s", event.type, exc_info=True)
