"""Local durable storage for queued operations."""

from homekeep.storage.base import OperationStore
from homekeep.storage.factory import create_store
from homekeep.storage.memory_store import InMemoryOperationStore
from homekeep.storage.sqlite_store import SQLiteOperationStore

__all__ = [
    "OperationStore",
    "InMemoryOperationStore",
    "SQLiteOperationStore",
    "create_store",
]
