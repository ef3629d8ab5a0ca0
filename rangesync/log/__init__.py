"""Event log storage, its HTTP endpoint and the client-side sync task."""

from .server import create_log_router
from .store import LogStore
from .sync_task import LogSyncTask, SyncMode, SyncResult, SyncStatus, calculate_delta

__all__ = [
    "LogStore",
    "LogSyncTask",
    "SyncMode",
    "SyncResult",
    "SyncStatus",
    "calculate_delta",
    "create_log_router",
]
