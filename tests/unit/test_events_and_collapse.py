"""Tests for sync/events.py and sync/collapse.py."""

from __future__ import annotations

from dataclasses import replace

import pytest

from homekeep.core.operation import OperationRecord, create_record
from homekeep.sync.collapse import plan_collapses
from homekeep.sync.events import EventBus, SyncEvent, SyncEventType

# ─────────── EventBus ───────────


class TestEventBus:
    """Tests for listener registration and delivery."""

    def test_delivers_in_registration_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []
        bus.add_listener(lambda e: seen.append(f"a:{e.type}"))
        bus.add_listener(lambda e: seen.append(f"b:{e.type}"))

        bus.emit(SyncEvent(type=SyncEventType.SYNC_START))

        assert seen == ["a:sync-start", "b:sync-start"]

    def test_unsubscribe_is_idempotent(self) -> None:
        bus = EventBus()
        seen: list[SyncEvent] = []
        unsubscribe = bus.add_listener(seen.append)
        assert bus.listener_count == 1

        unsubscribe()
        unsubscribe()
        bus.emit(SyncEvent(type=SyncEventType.SYNC_COMPLETE))

        assert seen == []
        assert bus.listener_count == 0

    def test_unsubscribe_removes_only_its_own_registration(self) -> None:
        bus = EventBus()
        seen: list[SyncEvent] = []
        first = bus.add_listener(seen.append)
        bus.add_listener(seen.append)

        first()
        first()
        bus.emit(SyncEvent(type=SyncEventType.SYNC_COMPLETE))

        assert bus.listener_count == 1
        assert len(seen) == 1

    def test_listener_may_unsubscribe_during_emit(self) -> None:
        bus = EventBus()
        seen: list[str] = []
        unsubscribe = None

        def once(event: SyncEvent) -> None:
            seen.append("once")
            assert unsubscribe is not None
            unsubscribe()

        unsubscribe = bus.add_listener(once)
        bus.add_listener(lambda e: seen.append("always"))

        bus.emit(SyncEvent(type=SyncEventType.SYNC_START))
        bus.emit(SyncEvent(type=SyncEventType.SYNC_START))

        assert seen == ["once", "always", "always"]

    def test_failing_listener_is_isolated(self) -> None:
        bus = EventBus()
        seen: list[SyncEvent] = []

        def broken(event: SyncEvent) -> None:
            raise RuntimeError("listener bug")

        bus.add_listener(broken)
        bus.add_listener(seen.append)

        bus.emit(SyncEvent(type=SyncEventType.SYNC_ERROR, error="x"))

        assert len(seen) == 1

    def test_no_replay_for_late_listener(self) -> None:
        bus = EventBus()
        bus.emit(SyncEvent(type=SyncEventType.SYNC_START))

        seen: list[SyncEvent] = []
        bus.add_listener(seen.append)
        assert seen == []

    def test_event_to_dict(self) -> None:
        event = SyncEvent(
            type=SyncEventType.SYNC_PROGRESS,
            record_id="op-1",
            entity_type="Task",
            action="create",
            outcome="done",
            processed=1,
            remaining=2,
        )
        data = event.to_dict()
        assert data["type"] == "sync-progress"
        assert data["outcome"] == "done"
        assert data["remaining"] == 2
        assert "timestamp" in data


# ─────────── plan_collapses ───────────


def _queue(*records: OperationRecord) -> list[OperationRecord]:
    return [replace(r, sequence=i + 1) for i, r in enumerate(records)]


class TestPlanCollapses:
    """Tests for cancelling never-synced create/delete pairs."""

    def test_create_then_delete_collapses(self) -> None:
        create = create_record("ShoppingItem", "create", {"title": "B"})
        delete = create_record("ShoppingItem", "delete", {"id": create.entity_id})
        queue = _queue(create, delete)

        assert [r.id for r in plan_collapses(queue)] == [create.id, delete.id]

    def test_updates_in_between_are_dropped_too(self) -> None:
        create = create_record("Task", "create", {"title": "A"})
        update = create_record("Task", "update", {"id": create.entity_id, "title": "A2"})
        other = create_record("Task", "create", {"title": "keep me"})
        delete = create_record("Task", "delete", {"id": create.entity_id})
        queue = _queue(create, update, other, delete)

        dropped = plan_collapses(queue)

        assert [r.id for r in dropped] == [create.id, update.id, delete.id]

    def test_create_without_delete_kept(self) -> None:
        create = create_record("Task", "create", {"title": "A"})
        update = create_record("Task", "update", {"id": create.entity_id, "title": "A2"})

        assert plan_collapses(_queue(create, update)) == []

    def test_delete_of_synced_entity_kept(self) -> None:
        delete = create_record("Task", "delete", {"id": "srv-1"})
        assert plan_collapses(_queue(delete)) == []

    def test_delete_of_local_id_without_create_kept(self) -> None:
        # The create already reached the remote store in an earlier drain
        delete = create_record("Task", "delete", {"id": "local-abc"})
        assert plan_collapses(_queue(delete)) == []

    def test_same_local_id_different_type_not_collapsed(self) -> None:
        create = create_record("Task", "create", {"title": "A"})
        delete = create_record("Bill", "delete", {"id": create.entity_id})

        assert plan_collapses(_queue(create, delete)) == []

    @pytest.mark.parametrize("count", [0, 1])
    def test_small_queues(self, count: int) -> None:
        records = [create_record("Task", "create", {"title": "x"}) for _ in range(count)]
        assert plan_collapses(_queue(*records)) == []
