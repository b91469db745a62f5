"""
pending.py - Drafts that exist only in memory.

A new entry stays a pending draft until it first becomes valid
(non-empty trimmed title or body). Discarding a pending draft never
touches storage.
"""

import logging
import threading
from dataclasses import replace

from journal_sync.models import Entry, EntryType, create_entry, is_valid_for_save
from journal_sync.store.record_store import RecordCollection
from journal_sync.utils.timestamps import next_updated_at

logger = logging.getLogger(__name__)


class PendingRecordManager:
    """Tracks entries created locally but not yet persisted."""

    def __init__(self, entries: RecordCollection):
        self._entries = entries
        self._drafts: dict[str, Entry] = {}
        self._lock = threading.Lock()

    def create(self, entry_type: EntryType = EntryType.POEM) -> Entry:
        entry = create_entry(entry_type)
        with self._lock:
            self._drafts[entry.id] = entry
        logger.debug(f"Created pending entry {entry.id}")
        return entry

    def save(self, entry: Entry) -> bool:
        """
        Persist an entry, or keep it in memory if it is a still-invalid draft.

        Returns:
            True if the entry was written to the store
        """
        with self._lock:
            pending = entry.id in self._drafts
            if pending and not is_valid_for_save(entry):
                self._drafts[entry.id] = entry
                return False

        previous = self._entries.get_metadata(entry.id)
        updated_at = next_updated_at(previous.updated_at if previous else entry.updated_at)
        self._entries.save_record(replace(entry, updated_at=updated_at, is_synced=False))

        if pending:
            with self._lock:
                self._drafts.pop(entry.id, None)
            logger.debug(f"Pending entry {entry.id} persisted")
        return True

    def discard(self, record_id: str) -> bool:
        """Drop a pending draft. Returns False if the id was not pending."""
        with self._lock:
            return self._drafts.pop(record_id, None) is not None

    def is_pending(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._drafts

    def get_draft(self, record_id: str) -> Entry | None:
        with self._lock:
            return self._drafts.get(record_id)
