"""Tagged result of a mutation issued through the façade."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of ``perform``.

    ``confirmed`` is True when the remote store acknowledged the mutation
    and ``remote_value`` holds what it returned. Otherwise the mutation was
    queued, ``local_value`` is the optimistic value the UI may render, and
    ``record_id`` names the queued operation record.
    """

    confirmed: bool
    local_value: dict[str, Any] = field(default_factory=dict)
    remote_value: dict[str, Any] = field(default_factory=dict)
    record_id: str | None = None

    @classmethod
    def remote(cls, value: dict[str, Any]) -> MutationResult:
        return cls(confirmed=True, remote_value=value)

    @classmethod
    def local(cls, value: dict[str, Any], record_id: str) -> MutationResult:
        return cls(confirmed=False, local_value=value, record_id=record_id)

    @property
    def value(self) -> dict[str, Any]:
        """The remote value when confirmed, else the optimistic local one."""
        return self.remote_value if self.confirmed else self.local_value

    @property
    def queued(self) -> bool:
        return not self.confirmed

    def to_dict(self) -> dict[str, Any]:
        return {
            "confirmed": self.confirmed,
            "value": self.value,
            "record_id": self.record_id,
        }
