"""Operation records - the durable form of one queued mutation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from homekeep.core.entities import validate_entity_type
from homekeep.errors import InvalidTransition
from homekeep.utils.timeutils import to_millis, utcnow

LOCAL_ID_PREFIX = "local-"

# Id mapping value for a create the remote store acknowledged without returning its id
UNKNOWN_REMOTE_ID = ""

# Payload field carrying the idempotency key of a create
IDEMPOTENCY_FIELD = "_idempotency_key"


class OperationAction(StrEnum):
    """Kind of mutation against the remote entity store."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OperationStatus(StrEnum):
    """Replay status of a queued record.

    A record that reaches ``done`` is removed from the store instead of
    being stored with that status.
    """

    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    FAILED = "failed"


def new_idempotency_key(entity_type: str = "op") -> str:
    """Generate a globally unique idempotency key (time + random)."""
    return f"{entity_type.lower()}_{to_millis(utcnow())}_{uuid4().hex}"


def new_local_id() -> str:
    """Generate a placeholder id for an entity created while offline."""
    return f"{LOCAL_ID_PREFIX}{uuid4().hex}"


def is_local_id(value: Any) -> bool:
    """Check whether a value is a locally assigned placeholder id."""
    return isinstance(value, str) and value.startswith(LOCAL_ID_PREFIX)


@dataclass(frozen=True)
class OperationRecord:
    """
    One intended mutation against the remote entity store.

    Records are immutable; status changes produce a new record which the
    caller persists through the operation store.

    Attributes:
        id: Locally generated id, stable for the life of the record
        entity_type: Target collection (e.g. "Task", "ShoppingItem")
        action: create, update or delete
        payload: Full object for create, target id plus patch for update,
            target id for delete
        idempotency_key: Token unique per logical intent, never changes
        entity_id: Target entity id (local placeholder id for a create)
        enqueued_at: When the record was created
        attempt_count: Replay attempts made so far
        status: pending, in-flight or failed
        last_error: Reason of the last failure, shown for failed records
        sequence: Insertion order assigned by the store (0 until appended)
    """

    id: str
    entity_type: str
    action: OperationAction
    payload: dict[str, Any]
    idempotency_key: str
    entity_id: str
    enqueued_at: datetime = field(default_factory=utcnow)
    attempt_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    last_error: str | None = None
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "action": self.action.value,
            "payload": self.payload,
            "idempotency_key": self.idempotency_key,
            "entity_id": self.entity_id,
            "enqueued_at": self.enqueued_at.isoformat(),
            "attempt_count": self.attempt_count,
            "status": self.status.value,
            "last_error": self.last_error,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OperationRecord:
        return cls(
            id=data["id"],
            entity_type=data["entity_type"],
            action=OperationAction(data["action"]),
            payload=dict(data.get("payload") or {}),
            idempotency_key=data["idempotency_key"],
            entity_id=data.get("entity_id", ""),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            attempt_count=int(data.get("attempt_count", 0)),
            status=OperationStatus(data.get("status", OperationStatus.PENDING.value)),
            last_error=data.get("last_error"),
            sequence=int(data.get("sequence", 0)),
        )


def create_record(
    entity_type: str,
    action: OperationAction | str,
    payload: dict[str, Any],
    *,
    idempotency_key: str | None = None,
    entity_id: str | None = None,
) -> OperationRecord:
    """
    Build a new pending record for a mutation.

    Args:
        entity_type: Target collection name
        action: create, update or delete
        payload: Mutation data; update and delete payloads must carry ``id``
        idempotency_key: Key already stamped by the caller (generated if None)
        entity_id: Explicit target id (defaults to ``payload["id"]``, or a new
            local id for a create)

    Returns:
        A record with status pending and no attempts

    Raises:
        ValueError: On an unknown action, bad entity type or missing target id
    """
    validate_entity_type(entity_type)
    action = OperationAction(action)
    payload = dict(payload)

    if action == OperationAction.CREATE:
        key = idempotency_key or payload.get(IDEMPOTENCY_FIELD) or new_idempotency_key(entity_type)
        payload[IDEMPOTENCY_FIELD] = key
        target = entity_id or payload.get("id") or new_local_id()
    else:
        target = entity_id or payload.get("id")
        if not target:
            raise ValueError(f"{action.value} payload for {entity_type} requires an 'id'")
        payload["id"] = target
        key = idempotency_key or new_idempotency_key(entity_type)

    return OperationRecord(
        id=uuid4().hex,
        entity_type=entity_type,
        action=action,
        payload=payload,
        idempotency_key=key,
        entity_id=str(target),
        enqueued_at=utcnow(),
        attempt_count=0,
        status=OperationStatus.PENDING,
    )


def mark_attempt(record: OperationRecord) -> OperationRecord:
    """Start a replay attempt: bump the attempt count and go in-flight."""
    if record.status != OperationStatus.PENDING:
        raise InvalidTransition(f"Cannot attempt record {record.id} in status {record.status}")
    return replace(
        record,
        attempt_count=record.attempt_count + 1,
        status=OperationStatus.IN_FLIGHT,
    )


def revert_to_pending(record: OperationRecord, reason: str | None = None) -> OperationRecord:
    """Roll an in-flight record back after a transient failure."""
    if record.status != OperationStatus.IN_FLIGHT:
        raise InvalidTransition(f"Cannot revert record {record.id} from status {record.status}")
    return replace(record, status=OperationStatus.PENDING, last_error=reason)


def mark_failed(record: OperationRecord, reason: str) -> OperationRecord:
    """Move a record to the terminal failed status."""
    if record.status == OperationStatus.FAILED:
        raise InvalidTransition(f"Record {record.id} already failed")
    return replace(record, status=OperationStatus.FAILED, last_error=reason)


def reset_failed(record: OperationRecord) -> OperationRecord:
    """User-initiated retry of a failed record."""
    if record.status != OperationStatus.FAILED:
        raise InvalidTransition(f"Record {record.id} is not failed")
    return replace(record, status=OperationStatus.PENDING, last_error=None)
