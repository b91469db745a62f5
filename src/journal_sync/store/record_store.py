"""
record_store.py - Embedded local record store.

The LocalStore owns one SQLite connection and exposes one
RecordCollection per record kind (entries, books). Each collection
keeps:
- full record bodies, fetched on demand
- a compact metadata index, cached in memory

Every write updates the body and its metadata projection in a single
transaction; the in-memory index is swapped only after commit.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from journal_sync.config import (
    BOOK_INDEX_VERSION,
    ENTRY_INDEX_VERSION,
    KIND_BOOKS,
    KIND_ENTRIES,
)
from journal_sync.db.connection import (
    create_connection,
    execute_in_transaction,
    verify_integrity,
)
from journal_sync.db.schema import initialize_tables
from journal_sync.errors import StoreNotReadyError, ValidationError
from journal_sync.models import (
    Book,
    BookMetadata,
    Entry,
    EntryMetadata,
    MetadataIndex,
    is_deleted,
    metadata_from_book,
    metadata_from_entry,
)
from journal_sync.store.index_cache import IndexCache, merge_entries, remove_entries
from journal_sync.utils.msgpack_codec import pack_value, unpack_value
from journal_sync.utils.timestamps import is_newer, next_updated_at, parse_iso, to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordKind:
    """Describes how one record kind is stored and projected."""
    name: str
    index_version: int
    record_type: type
    metadata_type: type
    project: Callable[[Any], Any]


ENTRY_KIND = RecordKind(
    name=KIND_ENTRIES,
    index_version=ENTRY_INDEX_VERSION,
    record_type=Entry,
    metadata_type=EntryMetadata,
    project=metadata_from_entry,
)

BOOK_KIND = RecordKind(
    name=KIND_BOOKS,
    index_version=BOOK_INDEX_VERSION,
    record_type=Book,
    metadata_type=BookMetadata,
    project=metadata_from_book,
)


class RecordCollection:
    """
    Bodies and metadata index for a single record kind.

    Reads issued before the store is initialized return empty results;
    writes raise StoreNotReadyError.
    """

    def __init__(self, store: "LocalStore", kind: RecordKind):
        self._store = store
        self.kind = kind
        self._cache = IndexCache(kind.index_version)

    @property
    def name(self) -> str:
        return self.kind.name

    def _require_ready(self, operation: str) -> sqlite3.Connection:
        conn = self._store.connection_or_none
        if conn is None:
            raise StoreNotReadyError(operation, kind=self.kind.name)
        return conn

    # ========== METADATA INDEX ==========

    def get_metadata_index(self) -> MetadataIndex:
        with self._store.lock:
            cached = self._cache.get()
            if cached is not None:
                return cached

            conn = self._store.connection_or_none
            if conn is None:
                logger.warning(f"Store not initialized; {self.kind.name} index is empty")
                return MetadataIndex(version=self.kind.index_version)

            index = self._load_or_rebuild(conn)
            self._cache.replace(index)
            return index

    def rebuild_index(self) -> MetadataIndex:
        """Re-derive the index from every stored full record."""
        with self._store.lock:
            conn = self._require_ready("rebuild_index")
            index = self._rebuild(conn)
            self._cache.replace(index)
            return index

    def _load_or_rebuild(self, conn: sqlite3.Connection) -> MetadataIndex:
        row = conn.execute(
            "SELECT value FROM record_index WHERE kind = ?", (self.kind.name,)
        ).fetchone()

        if row is None:
            logger.info(f"{self.kind.name} index not found, building from stored records")
            return self._rebuild(conn)

        try:
            data = unpack_value(row[0])
            version = data.get("version")
            if version != self.kind.index_version:
                logger.info(
                    f"{self.kind.name} index version {version} does not match "
                    f"{self.kind.index_version}, rebuilding"
                )
                return self._rebuild(conn)
            index = MetadataIndex(
                version=version,
                last_sync_time=data.get("lastSyncTime"),
                entries=tuple(
                    self.kind.metadata_type.from_dict(item) for item in data["entries"]
                ),
            )
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.error(f"{self.kind.name} index unreadable ({e}), rebuilding")
            return self._rebuild(conn)

        logger.debug(f"Loaded {self.kind.name} index: {len(index.entries)} records")
        return index

    def _rebuild(self, conn: sqlite3.Connection) -> MetadataIndex:
        rows = conn.execute(
            "SELECT value FROM records WHERE kind = ? ORDER BY id", (self.kind.name,)
        ).fetchall()
        records = [self._decode_record(row[0]) for row in rows]
        index = MetadataIndex(
            version=self.kind.index_version,
            entries=tuple(self.kind.project(record) for record in records),
        )
        execute_in_transaction(conn, lambda c: self._write_index(c, index))
        logger.info(f"Rebuilt {self.kind.name} index: {len(index.entries)} records")
        return index

    def _write_index(self, conn: sqlite3.Connection, index: MetadataIndex) -> None:
        conn.execute(
            """
            INSERT INTO record_index (kind, value) VALUES (?, ?)
            ON CONFLICT(kind) DO UPDATE SET value = excluded.value
            """,
            (self.kind.name, pack_value(index.to_dict())),
        )

    def get_last_sync_time(self) -> datetime | None:
        index = self.get_metadata_index()
        return parse_iso(index.last_sync_time) if index.last_sync_time else None

    def update_last_sync_time(self, sync_time: datetime) -> None:
        with self._store.lock:
            conn = self._require_ready("update_last_sync_time")
            index = replace(self.get_metadata_index(), last_sync_time=to_iso(sync_time))
            execute_in_transaction(conn, lambda c: self._write_index(c, index))
            self._cache.replace(index)

    # ========== METADATA QUERIES ==========

    def get_metadata(self, record_id: str) -> Any | None:
        with self._store.lock:
            self.get_metadata_index()
            return self._cache.get_entry(record_id)

    def get_all_metadata(self, include_deleted: bool = False) -> list[Any]:
        entries = self.get_metadata_index().entries
        if include_deleted:
            return list(entries)
        return [entry for entry in entries if not is_deleted(entry)]

    def get_all_active(self) -> list[Any]:
        """Non-deleted metadata, most recently updated first."""
        active = self.get_all_metadata()
        active.sort(key=lambda entry: parse_iso(entry.updated_at), reverse=True)
        return active

    def get_unsynced_metadata(self) -> list[Any]:
        return [entry for entry in self.get_metadata_index().entries if not entry.is_synced]

    def batch_update_metadata(self, metadata_list: list[Any]) -> None:
        """
        Replace metadata entries in bulk with a single index write.

        A cached body older than its incoming metadata is dropped, so the
        next body fetch returns the newer remote content.
        """
        if not metadata_list:
            return

        with self._store.lock:
            conn = self._require_ready("batch_update_metadata")
            new_index = merge_entries(self.get_metadata_index(), metadata_list)

            def do_update(c: sqlite3.Connection) -> int:
                dropped = 0
                for metadata in metadata_list:
                    row = c.execute(
                        "SELECT updated_at FROM records WHERE kind = ? AND id = ?",
                        (self.kind.name, metadata.id),
                    ).fetchone()
                    if row is not None and is_newer(metadata.updated_at, row[0]):
                        c.execute(
                            "DELETE FROM records WHERE kind = ? AND id = ?",
                            (self.kind.name, metadata.id),
                        )
                        dropped += 1
                self._write_index(c, new_index)
                return dropped

            dropped = execute_in_transaction(conn, do_update)
            self._cache.replace(new_index)

        logger.info(
            f"Batch updated {len(metadata_list)} {self.kind.name} metadata items "
            f"({dropped} stale bodies dropped)"
        )

    # ========== FULL RECORDS ==========

    def get_full_record(self, record_id: str) -> Any | None:
        with self._store.lock:
            conn = self._store.connection_or_none
            if conn is None:
                return None
            row = conn.execute(
                "SELECT value FROM records WHERE kind = ? AND id = ?",
                (self.kind.name, record_id),
            ).fetchone()
        return self._decode_record(row[0]) if row else None

    def has_local_body(self, record_id: str) -> bool:
        with self._store.lock:
            conn = self._store.connection_or_none
            if conn is None:
                return False
            row = conn.execute(
                "SELECT 1 FROM records WHERE kind = ? AND id = ?",
                (self.kind.name, record_id),
            ).fetchone()
        return row is not None

    def list_locally_cached_body_ids(self) -> set[str]:
        with self._store.lock:
            conn = self._store.connection_or_none
            if conn is None:
                return set()
            rows = conn.execute(
                "SELECT id FROM records WHERE kind = ?", (self.kind.name,)
            ).fetchall()
        return {row[0] for row in rows}

    def save_record(self, record: Any) -> None:
        self.save_records([record])

    def save_records(self, records: list[Any]) -> None:
        """Upsert full records and their metadata projections atomically."""
        if not records:
            return

        with self._store.lock:
            conn = self._require_ready("save_record")
            new_index = merge_entries(
                self.get_metadata_index(), [self.kind.project(r) for r in records]
            )

            def do_save(c: sqlite3.Connection) -> None:
                for record in records:
                    c.execute(
                        """
                        INSERT INTO records (kind, id, updated_at, value) VALUES (?, ?, ?, ?)
                        ON CONFLICT(kind, id) DO UPDATE SET
                            updated_at = excluded.updated_at,
                            value = excluded.value
                        """,
                        (
                            self.kind.name,
                            record.id,
                            record.updated_at,
                            pack_value(record.to_dict()),
                        ),
                    )
                self._write_index(c, new_index)

            execute_in_transaction(conn, do_save)
            self._cache.replace(new_index)

    def soft_delete(self, record_id: str) -> Any | None:
        """
        Mark a record as deleted (tombstone) and unsynced.

        Returns the tombstone, or None if the body is not stored locally.
        """
        with self._store.lock:
            record = self.get_full_record(record_id)
            if record is None:
                return None
            now = next_updated_at(record.updated_at)
            tombstone = replace(record, deleted_at=now, updated_at=now, is_synced=False)
            self.save_record(tombstone)
            return tombstone

    def hard_delete(self, record_id: str) -> None:
        """Remove body and metadata permanently."""
        with self._store.lock:
            conn = self._require_ready("hard_delete")
            new_index = remove_entries(self.get_metadata_index(), {record_id})

            def do_delete(c: sqlite3.Connection) -> None:
                c.execute(
                    "DELETE FROM records WHERE kind = ? AND id = ?",
                    (self.kind.name, record_id),
                )
                self._write_index(c, new_index)

            execute_in_transaction(conn, do_delete)
            self._cache.replace(new_index)

    def mark_synced(self, record_id: str, expected_updated_at: str) -> bool:
        """
        Flag a record as synced after a successful upload.

        Only applies if the stored record still carries the uploaded
        updated_at; an edit made during the upload stays unsynced.
        """
        with self._store.lock:
            record = self.get_full_record(record_id)
            if record is None or record.updated_at != expected_updated_at:
                return False
            if not record.is_synced:
                self.save_record(replace(record, is_synced=True))
            return True

    def _decode_record(self, blob: bytes) -> Any:
        return self.kind.record_type.from_dict(unpack_value(blob))

    def invalidate_cache(self) -> None:
        self._cache.invalidate()


class LocalStore:
    """
    Durable local persistence for journal entries and books.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self.entries = RecordCollection(self, ENTRY_KIND)
        self.books = RecordCollection(self, BOOK_KIND)

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def is_ready(self) -> bool:
        return self._conn is not None

    @property
    def connection_or_none(self) -> sqlite3.Connection | None:
        return self._conn

    def initialize(self) -> None:
        """Open the database and create tables. Idempotent."""
        with self._lock:
            if self._conn is not None:
                return
            conn = create_connection(self._db_path)
            initialize_tables(conn)
            self._conn = conn
        logger.info(f"Local store initialized at {self._db_path}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            for collection in self.collections():
                collection.invalidate_cache()

    def collections(self) -> tuple[RecordCollection, RecordCollection]:
        return (self.entries, self.books)

    def check_integrity(self) -> bool:
        with self._lock:
            if self._conn is None:
                return False
            return verify_integrity(self._conn)

    def clear_all(self) -> None:
        """Remove every record and index. Irreversible."""
        with self._lock:
            if self._conn is None:
                raise StoreNotReadyError("clear_all")

            def do_clear(c: sqlite3.Connection) -> None:
                c.execute("DELETE FROM records")
                c.execute("DELETE FROM record_index")

            execute_in_transaction(self._conn, do_clear)
            for collection in self.collections():
                collection.invalidate_cache()
