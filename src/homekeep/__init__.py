"""homekeep - offline-first write queue and sync engine for household data."""

from homekeep.config import HomekeepConfig
from homekeep.core.operation import OperationAction, OperationRecord, OperationStatus
from homekeep.core.result import MutationResult
from homekeep.network.monitor import NetworkMonitor, NetworkState
from homekeep.sync.context import SyncContext, SyncStatus
from homekeep.sync.events import SyncEvent, SyncEventType

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "HomekeepConfig",
    # Operation records
    "OperationAction",
    "OperationRecord",
    "OperationStatus",
    "MutationResult",
    # Connectivity
    "NetworkMonitor",
    "NetworkState",
    # Sync
    "SyncContext",
    "SyncStatus",
    "SyncEvent",
    "SyncEventType",
    # Version
    "__version__",
]
