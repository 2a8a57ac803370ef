"""Time helpers.

All timestamps are naive datetimes expressed in UTC so they compare and
serialize consistently between SQLite rows and in-memory records.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_millis(value: datetime) -> int:
    """Milliseconds since the epoch for a naive UTC datetime."""
    return int(value.replace(tzinfo=UTC).timestamp() * 1000)
