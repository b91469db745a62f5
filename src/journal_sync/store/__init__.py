"""
store - Local persistence for journal entries and books.
"""

from journal_sync.store.index_cache import IndexCache
from journal_sync.store.record_store import (
    BOOK_KIND,
    ENTRY_KIND,
    LocalStore,
    RecordCollection,
    RecordKind,
)

__all__ = [
    "BOOK_KIND",
    "ENTRY_KIND",
    "IndexCache",
    "LocalStore",
    "RecordCollection",
    "RecordKind",
]
