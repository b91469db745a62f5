"""
tombstones.py - Garbage collection of synced soft-deletes.

A tombstone is kept locally until the remote knows about it and the
retention window has passed; only then is it hard-deleted. Unsynced
tombstones are never collected, since the delete has not reached the
remote yet.
"""

import logging
from datetime import datetime, timedelta

from journal_sync.config import TOMBSTONE_RETENTION
from journal_sync.store.record_store import RecordCollection
from journal_sync.utils.timestamps import parse_iso, utc_now

logger = logging.getLogger(__name__)


class TombstoneCollector:
    """Purges synced tombstones older than the retention window."""

    def __init__(self, retention: timedelta = TOMBSTONE_RETENTION):
        self.retention = retention

    def collect(self, collection: RecordCollection, now: datetime | None = None) -> list[str]:
        """
        Hard-delete expired tombstones from a collection.

        Returns:
            Ids of purged records
        """
        cutoff = (now or utc_now()) - self.retention
        expired = [
            entry.id
            for entry in collection.get_all_metadata(include_deleted=True)
            if entry.deleted_at is not None
            and entry.is_synced
            and parse_iso(entry.deleted_at) < cutoff
        ]

        for record_id in expired:
            collection.hard_delete(record_id)

        if expired:
            logger.info(f"Purged {len(expired)} {collection.name} tombstones")
        return expired
