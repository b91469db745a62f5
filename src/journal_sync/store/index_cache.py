"""
index_cache.py - In-memory snapshot of a metadata index.

The cache holds one immutable MetadataIndex plus an id lookup table.
Both are swapped together, so a reader always sees either the
pre-update or the post-update snapshot, never a partial batch.
"""

from typing import Any

from journal_sync.models import MetadataIndex


class IndexCache:
    """Versioned, swap-on-write cache of one record kind's index."""

    def __init__(self, version: int):
        self._version = version
        self._snapshot: MetadataIndex | None = None
        self._by_id: dict[str, Any] = {}

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> MetadataIndex | None:
        return self._snapshot

    def get_entry(self, record_id: str) -> Any | None:
        return self._by_id.get(record_id)

    def replace(self, index: MetadataIndex) -> None:
        by_id = {entry.id: entry for entry in index.entries}
        self._snapshot, self._by_id = index, by_id

    def invalidate(self) -> None:
        self._snapshot, self._by_id = None, {}


def merge_entries(index: MetadataIndex, updates: list[Any]) -> MetadataIndex:
    """Return a copy of index with entries replaced (or appended) by id."""
    merged = {entry.id: entry for entry in index.entries}
    for entry in updates:
        merged[entry.id] = entry
    return MetadataIndex(
        version=index.version,
        last_sync_time=index.last_sync_time,
        entries=tuple(merged.values()),
    )


def remove_entries(index: MetadataIndex, record_ids: set[str]) -> MetadataIndex:
    return MetadataIndex(
        version=index.version,
        last_sync_time=index.last_sync_time,
        entries=tuple(e for e in index.entries if e.id not in record_ids),
    )
