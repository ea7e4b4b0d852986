"""
AEGIS Sync Module
Reconciles locally recorded reports with the remote authority.
"""
from .authority import BatchResult, HttpAuthority, RemoteAuthority
from .engine import SyncEngine, SyncOutcome, SyncResult, SyncStatus

__all__ = [
    "BatchResult",
    "HttpAuthority",
    "RemoteAuthority",
    "SyncEngine",
    "SyncOutcome",
    "SyncResult",
    "SyncStatus",
]
