"""Operation store factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from homekeep.storage.memory_store import InMemoryOperationStore
from homekeep.storage.sqlite_store import SQLiteOperationStore

if TYPE_CHECKING:
    from homekeep.config import HomekeepConfig
    from homekeep.storage.base import OperationStore

logger = logging.getLogger(__name__)


async def create_store(config: HomekeepConfig) -> OperationStore:
    """
    Create and initialize the operation store named by the config.

    Args:
        config: Loaded configuration

    Returns:
        An initialized store

    Raises:
        StorageUnavailable: If the SQLite database cannot be opened
    """
    store: OperationStore
    if config.storage.backend == "memory":
        logger.warning("Using in-memory operation store: queued changes will not survive restart")
        store = InMemoryOperationStore()
    else:
        store = SQLiteOperationStore(config.db_path)

    await store.initialize()
    return store
