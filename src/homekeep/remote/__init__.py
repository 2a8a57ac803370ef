"""Remote entity store clients."""

from homekeep.remote.base import RemoteEntityStore
from homekeep.remote.http_store import HTTPEntityStore

__all__ = ["HTTPEntityStore", "RemoteEntityStore"]
