"""
service.py - Journal operations on top of the store and sync engine.

This is the surface a UI talks to:
- entry lifecycle (pending drafts, save, delete, discard)
- on-demand body loading with offline detection
- listing with sort, type filter and search
- body prefetch
- book membership management

Every local write is followed by a background upload attempt.
"""

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Any

from journal_sync.config import KIND_ENTRIES, PREFETCH_BATCH_DELAY_SECONDS, PREFETCH_BATCH_SIZE
from journal_sync.errors import ContentUnavailableOfflineError, ValidationError
from journal_sync.models import (
    Book,
    BookMetadata,
    Entry,
    EntryMetadata,
    EntryType,
    create_book,
    is_deleted,
)
from journal_sync.store.record_store import LocalStore
from journal_sync.sync.engine import SyncEngine
from journal_sync.sync.pending import PendingRecordManager
from journal_sync.utils.timestamps import next_updated_at, parse_iso

logger = logging.getLogger(__name__)


class SortOrder(Enum):
    ALPHABETIC = "alphabetic"
    LAST_UPDATED = "lastUpdated"
    CREATED = "created"
    STARS = "stars"


def _sort_key(sort: SortOrder):
    if sort is SortOrder.ALPHABETIC:
        return lambda m: m.title.casefold()
    if sort is SortOrder.LAST_UPDATED:
        return lambda m: parse_iso(m.updated_at)
    if sort is SortOrder.STARS:
        return lambda m: (m.stars, parse_iso(m.updated_at))
    return lambda m: parse_iso(m.created_at)


class JournalService:
    """Entry and book operations for one local store."""

    def __init__(self, store: LocalStore, engine: SyncEngine):
        self.store = store
        self.engine = engine
        self.pending = PendingRecordManager(store.entries)
        self._body_cache: dict[str, Entry] = {}
        self._unsubscribe = engine.on_sync_changed(self._on_sync_changed)

    def close(self) -> None:
        self._unsubscribe()
        self._body_cache.clear()

    def _on_sync_changed(self, kind: str) -> None:
        if kind == KIND_ENTRIES:
            self._body_cache.clear()

    async def _run_in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _request_upload(self) -> None:
        if self.engine.is_online:
            await self.engine.upload_pending()

    # ========== ENTRIES ==========

    def create_entry(self, entry_type: EntryType = EntryType.POEM) -> Entry:
        """New in-memory draft; nothing is stored until it is valid."""
        return self.pending.create(entry_type)

    async def save_entry(self, entry: Entry) -> bool:
        saved = await self._run_in_executor(self.pending.save, entry)
        if not saved:
            return False
        self._body_cache.pop(entry.id, None)
        await self._request_upload()
        return True

    def discard_entry(self, record_id: str) -> bool:
        return self.pending.discard(record_id)

    async def delete_entry(self, record_id: str) -> bool:
        """
        Delete an entry.

        Pending drafts are discarded; stored entries become tombstones
        that are uploaded like any other change.

        Raises:
            ContentUnavailableOfflineError: If only metadata is known locally
                and the body cannot be fetched
        """
        if self.pending.discard(record_id):
            return True

        record = await self._run_in_executor(self.store.entries.get_full_record, record_id)
        if record is None:
            if await self.get_full_entry(record_id) is None:
                return False
        elif is_deleted(record):
            return False

        tombstone = await self._run_in_executor(self.store.entries.soft_delete, record_id)
        self._body_cache.pop(record_id, None)
        if tombstone is None:
            return False
        await self._request_upload()
        return True

    async def get_full_entry(self, record_id: str) -> Entry | None:
        """
        Load an entry with its body.

        Lookup order: pending draft, in-memory cache, local store,
        remote fetch.

        Returns:
            The entry, or None if no such (non-deleted) entry is known

        Raises:
            ContentUnavailableOfflineError: If metadata exists but the
                body is not stored locally and cannot be fetched
        """
        draft = self.pending.get_draft(record_id)
        if draft is not None:
            return draft

        cached = self._body_cache.get(record_id)
        if cached is not None:
            return cached

        local = await self._run_in_executor(self.store.entries.get_full_record, record_id)
        if local is not None:
            if is_deleted(local):
                return None
            self._body_cache[record_id] = local
            return local

        metadata = await self._run_in_executor(self.store.entries.get_metadata, record_id)
        if metadata is None or is_deleted(metadata):
            return None

        fetched = await self.engine.fetch_entry_body(record_id)
        if fetched is None:
            raise ContentUnavailableOfflineError(record_id)
        if is_deleted(fetched):
            return None
        self._body_cache[record_id] = fetched
        return fetched

    def is_available_offline(self, record_id: str) -> bool:
        if self.pending.is_pending(record_id):
            return True
        return self.store.entries.has_local_body(record_id)

    async def prefetch_bodies(
        self,
        record_ids: list[str],
        batch_size: int = PREFETCH_BATCH_SIZE,
        delay: float = PREFETCH_BATCH_DELAY_SECONDS,
    ) -> int:
        """
        Download missing bodies in small batches.

        Returns:
            Number of bodies fetched
        """
        if not self.engine.is_online:
            return 0

        cached = await self._run_in_executor(self.store.entries.list_locally_cached_body_ids)
        missing = [record_id for record_id in record_ids if record_id not in cached]

        fetched = 0
        for start in range(0, len(missing), batch_size):
            if start:
                await asyncio.sleep(delay)
            batch = missing[start:start + batch_size]
            results = await asyncio.gather(*(self.engine.fetch_entry_body(i) for i in batch))
            fetched += sum(1 for result in results if result is not None)

        if fetched:
            logger.info(f"Prefetched {fetched} entry bodies")
        return fetched

    def list_entries(
        self,
        sort: SortOrder = SortOrder.CREATED,
        ascending: bool = False,
        entry_type: EntryType | None = None,
        query: str | None = None,
    ) -> list[EntryMetadata]:
        """
        Active entries, sorted and optionally filtered.

        With a query, title matches come first, then preview matches,
        then matches in locally stored bodies; each group keeps the
        requested sort order.
        """
        entries = self.store.entries.get_all_metadata()
        if entry_type is not None:
            entries = [m for m in entries if m.type is entry_type]

        key = _sort_key(sort)
        entries.sort(key=key, reverse=not ascending)

        needle = (query or "").strip().casefold()
        if not needle:
            return entries

        title_hits, preview_hits, rest = [], [], []
        for metadata in entries:
            if needle in metadata.title.casefold():
                title_hits.append(metadata)
            elif needle in metadata.preview.casefold():
                preview_hits.append(metadata)
            else:
                rest.append(metadata)

        body_hits = []
        for metadata in rest:
            entry = self.store.entries.get_full_record(metadata.id)
            if entry is not None and needle in entry.body.casefold():
                body_hits.append(metadata)

        return title_hits + preview_hits + body_hits

    # ========== BOOKS ==========

    def list_books(self) -> list[BookMetadata]:
        return self.store.books.get_all_active()

    def get_book(self, book_id: str) -> Book | None:
        book = self.store.books.get_full_record(book_id)
        if book is None or is_deleted(book):
            return None
        return book

    def get_book_entries(self, book_id: str) -> list[EntryMetadata]:
        """Member entries in book order, skipping deleted or unknown ids."""
        book = self._require_book(book_id)
        members = []
        for entry_id in book.writing_ids:
            metadata = self.store.entries.get_metadata(entry_id)
            if metadata is not None and not is_deleted(metadata):
                members.append(metadata)
        return members

    async def create_book(self, title: str) -> Book:
        title = self._clean_title(title)
        book = create_book(title)
        await self._run_in_executor(self.store.books.save_record, book)
        await self._request_upload()
        return book

    async def rename_book(self, book_id: str, title: str) -> Book:
        return await self._update_book(book_id, title=self._clean_title(title))

    async def add_to_book(self, book_id: str, entry_id: str) -> Book:
        book = self._require_book(book_id)
        if entry_id in book.writing_ids:
            return book
        return await self._update_book(book_id, writing_ids=book.writing_ids + (entry_id,))

    async def remove_from_book(self, book_id: str, entry_id: str) -> Book:
        book = self._require_book(book_id)
        if entry_id not in book.writing_ids:
            return book
        remaining = tuple(i for i in book.writing_ids if i != entry_id)
        return await self._update_book(book_id, writing_ids=remaining)

    async def reorder_book(self, book_id: str, ordered_ids: list[str]) -> Book:
        book = self._require_book(book_id)
        if sorted(ordered_ids) != sorted(book.writing_ids):
            raise ValidationError(
                "New order must contain exactly the book's entries",
                field="ordered_ids",
                value=ordered_ids,
            )
        return await self._update_book(book_id, writing_ids=tuple(ordered_ids))

    async def delete_book(self, book_id: str) -> bool:
        self._require_book(book_id)
        tombstone = await self._run_in_executor(self.store.books.soft_delete, book_id)
        if tombstone is None:
            return False
        await self._request_upload()
        return True

    def _require_book(self, book_id: str) -> Book:
        book = self.get_book(book_id)
        if book is None:
            raise ValidationError("Unknown book", field="book_id", value=book_id)
        return book

    @staticmethod
    def _clean_title(title: str) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Book title must not be empty", field="title")
        return cleaned

    async def _update_book(self, book_id: str, **changes: Any) -> Book:
        book = self._require_book(book_id)
        updated = replace(
            book,
            **changes,
            updated_at=next_updated_at(book.updated_at),
            is_synced=False,
        )
        await self._run_in_executor(self.store.books.save_record, updated)
        await self._request_upload()
        return updated
