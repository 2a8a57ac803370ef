"""Cancel never-synced entities that were deleted before reaching the remote store."""

from __future__ import annotations

from collections.abc import Sequence

from homekeep.core.operation import OperationAction, OperationRecord, is_local_id


def plan_collapses(records: Sequence[OperationRecord]) -> list[OperationRecord]:
    """
    Find records that cancel out before submission.

    A pending ``create`` of a locally-identified entity followed by a pending
    ``delete`` of the same entity never needs to reach the remote store:
    the create, every update in between and the delete are all dropped.

    Args:
        records: Pending records in insertion order

    Returns:
        The records to drop, in insertion order
    """
    chains: dict[tuple[str, str], list[OperationRecord]] = {}
    dropped: list[OperationRecord] = []

    for record in records:
        if not is_local_id(record.entity_id):
            continue

        key = (record.entity_type, record.entity_id)
        if record.action == OperationAction.CREATE:
            chains[key] = [record]
            continue

        chain = chains.get(key)
        if chain is None:
            continue

        chain.append(record)
        if record.action == OperationAction.DELETE:
            dropped.extend(chain)
            del chains[key]

    dropped.sort(key=lambda r: r.sequence)
    return dropped
