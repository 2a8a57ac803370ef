"""Core data models for homekeep."""

from homekeep.core.entities import validate_entity_type
from homekeep.core.operation import (
    IDEMPOTENCY_FIELD,
    LOCAL_ID_PREFIX,
    UNKNOWN_REMOTE_ID,
    OperationAction,
    OperationRecord,
    OperationStatus,
    create_record,
    is_local_id,
    mark_attempt,
    mark_failed,
    new_idempotency_key,
    new_local_id,
    reset_failed,
    revert_to_pending,
)
from homekeep.core.result import MutationResult

__all__ = [
    # Entities
    "validate_entity_type",
    # Operation records
    "IDEMPOTENCY_FIELD",
    "LOCAL_ID_PREFIX",
    "UNKNOWN_REMOTE_ID",
    "OperationAction",
    "OperationRecord",
    "OperationStatus",
    "create_record",
    "is_local_id",
    "mark_attempt",
    "mark_failed",
    "new_idempotency_key",
    "new_local_id",
    "reset_failed",
    "revert_to_pending",
    # Results
    "MutationResult",
]
