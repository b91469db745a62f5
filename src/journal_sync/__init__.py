"""
journal_sync - Offline-first journal storage and sync

Local-first storage of journal entries and books with last-write-wins
synchronization to a remote document store.
"""

__version__ = "0.3.0"

from journal_sync.errors import (
    ContentUnavailableOfflineError,
    RemoteError,
    RemoteUnavailableError,
    StoreError,
    StoreNotReadyError,
    SyncError,
    ValidationError,
)
from journal_sync.models import Book, Entry, EntryType, TextAlign
from journal_sync.store.record_store import LocalStore
from journal_sync.sync.engine import SyncEngine, SyncState

__all__ = [
    # Core
    "LocalStore",
    "SyncEngine",
    "SyncState",
    # Models
    "Book",
    "Entry",
    "EntryType",
    "TextAlign",
    # Errors
    "ContentUnavailableOfflineError",
    "RemoteError",
    "RemoteUnavailableError",
    "StoreError",
    "StoreNotReadyError",
    "SyncError",
    "ValidationError",
]
