"""
engine.py - Offline-first sync engine.

Keeps the local store consistent with a remote document store:
- Full sync: upload, then scan the whole remote collection
- Incremental sync: upload, then scan documents updated after the watermark
- Background upload of unsynced records (per-record LWW check first)
- Live subscription to remote changes
- Online/offline state machine

Two targets are synced: entries (metadata-only downloads, bodies
fetched on demand) and books (full downloads).

All store access runs in the default executor; remote calls are
awaited on the event loop. A single is_syncing flag serializes
sync operations; one that finds it set returns immediately.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from journal_sync.config import (
    PROGRESS_REPORT_EVERY,
    REMOTE_BOOK_COLLECTION,
    REMOTE_ENTRY_COLLECTION,
    REMOTE_ENTRY_META_COLLECTION,
    REMOTE_PAGE_SIZE,
)
from journal_sync.errors import (
    RemoteError,
    RemoteUnavailableError,
    SyncError,
    ValidationError,
)
from journal_sync.logging_config import SyncLogger
from journal_sync.models import Entry, metadata_from_book
from journal_sync.remote.base import (
    ChangeType,
    DocumentChange,
    RemoteDocumentStore,
    Subscription,
)
from journal_sync.remote.codec import (
    book_from_document,
    book_to_document,
    entry_from_body_document,
    entry_meta_from_document,
    entry_to_body_document,
    entry_to_meta_document,
)
from journal_sync.store.record_store import LocalStore, RecordCollection
from journal_sync.sync.resolver import Resolution, UploadDecision, resolve, resolve_upload
from journal_sync.sync.tombstones import TombstoneCollector
from journal_sync.utils.timestamps import is_newer, to_iso, utc_now

logger = logging.getLogger(__name__)


class SyncState(Enum):
    OFFLINE = "offline"
    INITIALIZING = "initializing"
    FULL_SYNC = "full_sync"
    INCREMENTAL_SYNC = "incremental_sync"
    STEADY = "steady"
    REINITIALIZING = "reinitializing"


@dataclass
class SyncStats:
    syncs_completed: int = 0
    uploads: int = 0
    downloads: int = 0
    tombstones_purged: int = 0
    failures: int = 0
    last_sync_time: str | None = None


@dataclass(frozen=True)
class SyncTarget:
    """
    How one local record kind maps onto remote collections.

    remote_collection is the collection that is scanned, subscribed
    and compared against; body_collection, if set, additionally
    receives the full record on upload.
    """
    collection: RecordCollection
    remote_collection: str
    body_collection: str | None
    decode: Callable[[str, dict], Any]
    to_metadata: Callable[[Any], Any]
    encode: Callable[[Any], dict]
    encode_body: Callable[[Any], dict] | None = None
    full_downloads: bool = False

    @property
    def kind(self) -> str:
        return self.collection.name


def _identity(item: Any) -> Any:
    return item


def build_targets(store: LocalStore) -> tuple[SyncTarget, SyncTarget]:
    entries = SyncTarget(
        collection=store.entries,
        remote_collection=REMOTE_ENTRY_META_COLLECTION,
        body_collection=REMOTE_ENTRY_COLLECTION,
        decode=entry_meta_from_document,
        to_metadata=_identity,
        encode=entry_to_meta_document,
        encode_body=entry_to_body_document,
    )
    books = SyncTarget(
        collection=store.books,
        remote_collection=REMOTE_BOOK_COLLECTION,
        body_collection=None,
        decode=book_from_document,
        to_metadata=metadata_from_book,
        encode=book_to_document,
        full_downloads=True,
    )
    return entries, books


class SyncEngine:
    """
    Coordinates local store and remote document store.

    Observers:
    - on_sync_changed(cb(kind)): local data of a kind changed from the remote
    - on_loading_changed(cb(is_loading, progress)): full sync progress 0..100
    - on_state_changed(cb(state))
    Each registration returns an unsubscribe callable.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteDocumentStore,
        online: bool = True,
        tombstones: TombstoneCollector | None = None,
    ):
        self.store = store
        self.remote = remote
        self.stats = SyncStats()
        self._online = online
        self._state = SyncState.OFFLINE
        self._initialized = False
        self._is_syncing = False
        self._targets = build_targets(store)
        self._tombstones = tombstones or TombstoneCollector()
        self._sync_log = SyncLogger()
        self._subscriptions: list[Subscription] = []
        self._sync_listeners: list[Callable[[str], None]] = []
        self._loading_listeners: list[Callable[[bool, int], None]] = []
        self._state_listeners: list[Callable[[SyncState], None]] = []

    # ========== STATE ==========

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def targets(self) -> tuple[SyncTarget, SyncTarget]:
        return self._targets

    def _set_state(self, state: SyncState) -> None:
        if self._state != state:
            logger.debug(f"Sync state {self._state.value} -> {state.value}")
            self._state = state
            self._emit(self._state_listeners, state)

    # ========== OBSERVERS ==========

    def on_sync_changed(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._register(self._sync_listeners, callback)

    def on_loading_changed(self, callback: Callable[[bool, int], None]) -> Callable[[], None]:
        return self._register(self._loading_listeners, callback)

    def on_state_changed(self, callback: Callable[[SyncState], None]) -> Callable[[], None]:
        return self._register(self._state_listeners, callback)

    @staticmethod
    def _register(listeners: list, callback: Callable) -> Callable[[], None]:
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    @staticmethod
    def _emit(listeners: list, *args: Any) -> None:
        for callback in list(listeners):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Observer callback failed: {e}")

    # ========== LIFECYCLE ==========

    async def initialize(self) -> bool:
        """
        First sync after start-up, then subscribe to remote changes.

        Each target runs a full sync if it has no watermark, otherwise
        an incremental one.
        """
        if not self._online:
            self._set_state(SyncState.OFFLINE)
            return False
        if self._is_syncing:
            return False

        self._set_state(SyncState.INITIALIZING)
        ok = await self._run_sync(full=False)
        if not ok or not self._online:
            return False

        try:
            await self._subscribe_all()
        except SyncError as e:
            logger.warning(f"Subscription failed: {e}")
            return False

        self._initialized = True
        logger.info("Sync engine initialized")
        return True

    async def set_online(self, online: bool) -> None:
        """
        Connectivity transition.

        Going offline only flips the flag; coming back online
        initializes (first time) or runs an incremental sync.
        """
        was_online = self._online
        self._online = online

        if not online:
            if was_online:
                logger.info("Connectivity lost")
            self._set_state(SyncState.OFFLINE)
            return

        if was_online:
            return

        logger.info("Connectivity restored")
        if not self._initialized:
            await self.initialize()
            return

        self._set_state(SyncState.REINITIALIZING)
        await self._run_sync(full=False)

    async def tick(self) -> bool:
        """Periodic work: upload pending changes, or retry initialization."""
        if not self._online:
            return False
        if not self._initialized:
            return await self.initialize()
        return await self.upload_pending()

    async def sync_once(self, full: bool = False) -> bool:
        """One-shot sync of every target, without subscribing."""
        if not self._online:
            return False
        return await self._run_sync(full=full)

    async def dispose(self) -> None:
        """Cancel subscriptions and drop observers."""
        for subscription in self._subscriptions:
            try:
                await subscription.close()
            except Exception as e:
                logger.warning(f"Failed to close subscription: {e}")
        self._subscriptions.clear()
        self._sync_listeners.clear()
        self._loading_listeners.clear()
        self._state_listeners.clear()
        self._initialized = False
        self._state = SyncState.OFFLINE

    # ========== SYNC ==========

    async def _run_sync(self, full: bool) -> bool:
        if self._is_syncing:
            logger.debug("Sync already in progress, skipping")
            return False

        self._is_syncing = True
        try:
            ok = True
            for target in self._targets:
                if not self._online:
                    logger.info(f"Went offline, skipping {target.kind} sync")
                    ok = False
                    break
                if not await self._sync_target(target, full):
                    ok = False
                    break
        finally:
            self._is_syncing = False

        if ok:
            self.stats.syncs_completed += 1
            self.stats.last_sync_time = to_iso(utc_now())

        if not self._online:
            self._set_state(SyncState.OFFLINE)
        elif ok:
            self._set_state(SyncState.STEADY)
        elif not self._initialized:
            self._set_state(SyncState.OFFLINE)
        else:
            self._set_state(SyncState.STEADY)
        return ok

    async def _sync_target(self, target: SyncTarget, full: bool) -> bool:
        watermark = await self._run_in_executor(target.collection.get_last_sync_time)
        is_full = full or watermark is None
        mode = "full" if is_full else "incremental"
        self._set_state(SyncState.FULL_SYNC if is_full else SyncState.INCREMENTAL_SYNC)

        self._sync_log.sync_started(mode, target.kind)
        started_at = utc_now()
        start_time = time.perf_counter()
        if is_full:
            self._emit(self._loading_listeners, True, 0)

        try:
            await self._upload_target(target)
            scanned, staged = await self._download(
                target,
                updated_after=None if is_full else to_iso(watermark),
                report_progress=is_full,
            )
            applied = await self._run_in_executor(self._apply_staged, target, staged)
            await self._run_in_executor(target.collection.update_last_sync_time, started_at)

            if is_full:
                purged = await self._run_in_executor(self._tombstones.collect, target.collection)
                if purged:
                    self.stats.tombstones_purged += len(purged)
                    self._sync_log.tombstones_collected(target.kind, len(purged))
        except SyncError as e:
            self.stats.failures += 1
            self._sync_log.sync_failed(mode, target.kind, str(e))
            return False
        finally:
            if is_full:
                self._emit(self._loading_listeners, False, 100)

        self.stats.downloads += applied
        self._sync_log.sync_completed(
            mode,
            target.kind,
            scanned=scanned,
            applied=applied,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        if applied:
            self._emit(self._sync_listeners, target.kind)
        return True

    async def _download(
        self,
        target: SyncTarget,
        updated_after: str | None,
        report_progress: bool,
    ) -> tuple[int, list[Any]]:
        """
        Page through the remote collection and stage INSERT_REMOTE items.

        Returns:
            (documents scanned, staged items)
        """
        index = await self._run_in_executor(target.collection.get_metadata_index)
        local_by_id = {entry.id: entry for entry in index.entries}

        staged: list[Any] = []
        scanned = 0
        page_token = None
        while True:
            page = await self.remote.list_documents(
                target.remote_collection,
                updated_after=updated_after,
                page_size=REMOTE_PAGE_SIZE,
                page_token=page_token,
            )
            for doc in page.documents:
                scanned += 1
                if report_progress and page.total and scanned % PROGRESS_REPORT_EVERY == 0:
                    self._emit(self._loading_listeners, True, scanned * 100 // page.total)
                try:
                    item = target.decode(doc.id, doc.data)
                except (ValidationError, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed {target.remote_collection}/{doc.id}: {e}")
                    continue
                resolution = resolve(local_by_id.get(doc.id), target.to_metadata(item))
                if resolution is Resolution.INSERT_REMOTE:
                    staged.append(item)

            page_token = page.next_page_token
            if not page_token:
                break

        return scanned, staged

    def _apply_staged(self, target: SyncTarget, items: list[Any], force: bool = False) -> int:
        """
        Write staged remote items in one batch.

        Items are resolved again against the current index under the
        store lock, so a local edit made during the download is kept.
        """
        if not items:
            return 0

        collection = target.collection
        with self.store.lock:
            if force:
                accepted = list(items)
            else:
                accepted = []
                for item in items:
                    local = collection.get_metadata(item.id)
                    resolution = resolve(local, target.to_metadata(item))
                    if local is not None:
                        self._sync_log.conflict_resolved(target.kind, item.id, resolution.value)
                    if resolution is Resolution.INSERT_REMOTE:
                        accepted.append(item)

            if target.full_downloads:
                collection.save_records(accepted)
            else:
                collection.batch_update_metadata(accepted)
        return len(accepted)

    # ========== UPLOAD ==========

    async def upload_pending(self) -> bool:
        """Background upload of every unsynced record."""
        if not self._online or self._is_syncing:
            return False

        self._is_syncing = True
        try:
            for target in self._targets:
                await self._upload_target(target)
        except SyncError as e:
            self.stats.failures += 1
            logger.warning(f"Upload aborted: {e}")
            return False
        finally:
            self._is_syncing = False
        return True

    async def _upload_target(self, target: SyncTarget) -> int:
        """
        Upload unsynced records of one target.

        RemoteUnavailableError aborts the pass; other remote errors
        skip the record, which stays unsynced for the next pass.
        """
        unsynced = await self._run_in_executor(target.collection.get_unsynced_metadata)
        if not unsynced:
            return 0

        uploaded = 0
        pulled: list[Any] = []
        for metadata in unsynced:
            record = await self._run_in_executor(target.collection.get_full_record, metadata.id)
            if record is None:
                logger.warning(f"Unsynced {target.kind}/{metadata.id} has no local body")
                continue

            try:
                decision, remote_item = await self._upload_decision(target, record)
                if decision is UploadDecision.PUSH:
                    if target.body_collection and target.encode_body:
                        await self.remote.set_document(
                            target.body_collection, record.id, target.encode_body(record)
                        )
                    await self.remote.set_document(
                        target.remote_collection, record.id, target.encode(record)
                    )
                    await self._run_in_executor(
                        target.collection.mark_synced, record.id, record.updated_at
                    )
                    uploaded += 1
                elif decision is UploadDecision.PULL_REMOTE:
                    pulled.append(remote_item)
                else:
                    await self._run_in_executor(
                        target.collection.mark_synced, record.id, record.updated_at
                    )
            except RemoteUnavailableError:
                raise
            except RemoteError as e:
                self.stats.failures += 1
                logger.error(f"Upload of {target.kind}/{record.id} failed: {e}")

        if pulled:
            await self._run_in_executor(self._apply_staged, target, pulled, True)
            self.stats.downloads += len(pulled)
            self._emit(self._sync_listeners, target.kind)

        self.stats.uploads += uploaded
        if uploaded:
            logger.info(f"Uploaded {uploaded} {target.kind} records")
        return uploaded

    async def _upload_decision(self, target: SyncTarget, record: Any) -> tuple[UploadDecision, Any]:
        data = await self.remote.get_document(target.remote_collection, record.id)
        if data is None:
            return UploadDecision.PUSH, None
        try:
            remote_item = target.decode(record.id, data)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Remote {target.kind}/{record.id} unreadable, overwriting: {e}")
            return UploadDecision.PUSH, None
        decision = resolve_upload(record, target.to_metadata(remote_item))
        if decision is UploadDecision.PULL_REMOTE:
            self._sync_log.conflict_resolved(target.kind, record.id, decision.value)
        return decision, remote_item

    # ========== SUBSCRIPTION ==========

    async def _subscribe_all(self) -> None:
        if self._subscriptions:
            return
        for target in self._targets:
            subscription = await self.remote.subscribe(
                target.remote_collection, self._make_change_handler(target)
            )
            self._subscriptions.append(subscription)

    def _make_change_handler(self, target: SyncTarget):
        async def handle(changes: list[DocumentChange], initial: bool) -> None:
            if initial:
                return
            try:
                await self._apply_remote_changes(target, changes)
            except SyncError as e:
                logger.error(f"Failed to apply {target.remote_collection} changes: {e}")

        return handle

    async def _apply_remote_changes(self, target: SyncTarget, changes: list[DocumentChange]) -> None:
        staged: list[Any] = []
        removed: list[str] = []
        for change in changes:
            if change.type is ChangeType.REMOVED:
                removed.append(change.id)
                continue
            try:
                staged.append(target.decode(change.id, change.data))
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed change {target.remote_collection}/{change.id}: {e}")

        changed = await self._run_in_executor(self._apply_staged, target, staged)
        for record_id in removed:
            if await self._run_in_executor(self._remove_if_synced, target, record_id):
                changed += 1

        if changed:
            self.stats.downloads += changed
            self._emit(self._sync_listeners, target.kind)

    def _remove_if_synced(self, target: SyncTarget, record_id: str) -> bool:
        """Hard-delete a record removed remotely, unless it has local changes."""
        with self.store.lock:
            local = target.collection.get_metadata(record_id)
            if local is None:
                return False
            if not local.is_synced:
                logger.info(f"Keeping unsynced {target.kind}/{record_id} removed remotely")
                return False
            target.collection.hard_delete(record_id)
            return True

    # ========== BODIES ==========

    async def fetch_entry_body(self, record_id: str) -> Entry | None:
        """
        Download an entry body and cache it locally.

        Returns None when offline, unreachable or not found.
        """
        if not self._online:
            return None
        try:
            data = await self.remote.get_document(REMOTE_ENTRY_COLLECTION, record_id)
        except SyncError as e:
            logger.warning(f"Body fetch for {record_id} failed: {e}")
            return None
        if data is None:
            return None

        try:
            entry = entry_from_body_document(record_id, data)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Remote body {record_id} unreadable: {e}")
            return None

        await self._run_in_executor(self._cache_body, entry)
        return entry

    def _cache_body(self, entry: Entry) -> None:
        entries = self.store.entries
        with self.store.lock:
            current = entries.get_metadata(entry.id)
            if current is not None and not current.is_synced:
                return
            if current is not None and is_newer(current.updated_at, entry.updated_at):
                return
            entries.save_record(entry)

    async def _run_in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)
