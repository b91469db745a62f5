"""
sync - Synchronization between the local store and the remote.
"""

from journal_sync.sync.engine import SyncEngine, SyncState, SyncStats
from journal_sync.sync.pending import PendingRecordManager
from journal_sync.sync.resolver import Resolution, UploadDecision, resolve, resolve_upload
from journal_sync.sync.scheduler import SyncScheduler
from journal_sync.sync.tombstones import TombstoneCollector

__all__ = [
    "PendingRecordManager",
    "Resolution",
    "SyncEngine",
    "SyncScheduler",
    "SyncState",
    "SyncStats",
    "TombstoneCollector",
    "UploadDecision",
    "resolve",
    "resolve_upload",
]
