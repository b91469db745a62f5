"""
test_engine.py - Tests for the sync engine against an in-memory remote.

These tests verify:
- full and incremental download decisions
- upload idempotency and the upload-time LWW check
- no resurrection of deleted records
- live subscription handling
- online/offline transitions and failure handling
"""

import asyncio
from dataclasses import replace
from datetime import timedelta

from journal_sync.errors import RemoteError
from journal_sync.models import create_book, create_entry, generate_preview
from journal_sync.remote.memory import InMemoryDocumentStore
from journal_sync.sync.engine import SyncEngine, SyncState
from journal_sync.utils.timestamps import to_iso, utc_now


def iso_offset(**delta) -> str:
    return to_iso(utc_now() + timedelta(**delta))


def meta_doc(title, updated_at, body="", deleted_at=None, preview=None):
    return {
        "title": title,
        "preview": generate_preview(body) if preview is None else preview,
        "createdAt": updated_at,
        "updatedAt": updated_at,
        "deletedAt": deleted_at,
        "type": "siir",
        "stars": 0,
    }


async def put_remote_entry(remote, doc_id, title, body, updated_at, deleted_at=None, preview=None):
    await remote.set_document("records", doc_id, {
        "title": title,
        "body": body,
        "footer": "",
        "createdAt": updated_at,
        "updatedAt": updated_at,
        "styleFlags": {"isBold": False, "textAlign": "left"},
        "deletedAt": deleted_at,
        "type": "siir",
        "stars": 0,
    })
    await remote.set_document(
        "records_meta", doc_id, meta_doc(title, updated_at, body, deleted_at, preview)
    )


class RejectingRemote(InMemoryDocumentStore):
    """Answers writes to the given collections with an error status."""

    def __init__(self, rejected):
        super().__init__()
        self.rejected = set(rejected)

    async def set_document(self, collection, doc_id, data):
        if collection in self.rejected:
            raise RemoteError("rejected", collection=collection, document_id=doc_id, status_code=503)
        await super().set_document(collection, doc_id, data)


class DisconnectingRemote(InMemoryDocumentStore):
    """Takes the engine offline as soon as a download starts."""

    def __init__(self):
        super().__init__()
        self.engine = None
        self.listed = []

    async def list_documents(self, collection, *args, **kwargs):
        self.listed.append(collection)
        await self.engine.set_online(False)
        return await super().list_documents(collection, *args, **kwargs)


class TestInitialization:
    def test_initialize_on_empty_remote(self, store, remote):
        engine = SyncEngine(store, remote)
        states = []
        engine.on_state_changed(states.append)

        assert asyncio.run(engine.initialize()) is True

        assert engine.is_initialized
        assert engine.state is SyncState.STEADY
        assert states[0] is SyncState.INITIALIZING
        assert SyncState.FULL_SYNC in states
        assert store.entries.get_last_sync_time() is not None
        assert store.books.get_last_sync_time() is not None

    def test_full_sync_downloads_metadata_only(self, store, remote):
        async def scenario():
            await put_remote_entry(remote, "x1", "Uzak", "<p>uzak gövde</p>", iso_offset(minutes=-5))
            engine = SyncEngine(store, remote)
            assert await engine.initialize()
            await engine.dispose()

        asyncio.run(scenario())

        metadata = store.entries.get_metadata("x1")
        assert metadata.title == "Uzak"
        assert metadata.preview == "uzak gövde"
        assert metadata.is_synced is True
        assert store.entries.get_full_record("x1") is None

    def test_unknown_remote_tombstone_is_not_inserted(self, store, remote):
        async def scenario():
            ts = iso_offset(minutes=-5)
            await put_remote_entry(remote, "gone", "Silinmiş", "", ts, deleted_at=ts)
            assert await SyncEngine(store, remote).initialize()

        asyncio.run(scenario())
        assert store.entries.get_metadata("gone") is None

    def test_loading_progress_is_reported(self, store, remote):
        events = []

        async def scenario():
            ts = iso_offset(minutes=-5)
            for i in range(250):
                await remote.set_document("records_meta", f"d{i:03d}", meta_doc(f"t{i}", ts))
            engine = SyncEngine(store, remote)
            engine.on_loading_changed(lambda loading, progress: events.append((loading, progress)))
            assert await engine.initialize()

        asyncio.run(scenario())

        assert events[0] == (True, 0)
        assert (True, 40) in events
        assert (True, 80) in events
        assert events[-1] == (False, 100)
        assert len(store.entries.get_all_metadata()) == 250


class TestUpload:
    def test_upload_is_idempotent(self, store, remote):
        entry = create_entry(title="yerel", body="<p>metin</p>")

        async def scenario():
            engine = SyncEngine(store, remote)
            assert await engine.initialize()
            store.entries.save_record(entry)
            assert await engine.upload_pending()
            assert await engine.upload_pending()

        asyncio.run(scenario())

        assert remote.write_counts == {"records": 1, "records_meta": 1}
        assert store.entries.get_metadata(entry.id).is_synced is True

        body = asyncio.run(remote.get_document("records", entry.id))
        assert body["body"] == "<p>metin</p>"
        assert "isSynced" not in body

    def test_newer_remote_wins_over_unsynced_local(self, store, remote):
        local_time, remote_time = iso_offset(minutes=-20), iso_offset(minutes=-10)
        local = replace(create_entry(title="yerel", body="eski"), updated_at=local_time)
        store.entries.save_record(local)

        async def scenario():
            await put_remote_entry(remote, local.id, "uzak", "yeni", remote_time)
            before = dict(remote.write_counts)
            assert await SyncEngine(store, remote).initialize()
            return before

        before = asyncio.run(scenario())

        metadata = store.entries.get_metadata(local.id)
        assert metadata.title == "uzak"
        assert metadata.is_synced is True
        assert store.entries.get_full_record(local.id) is None
        assert remote.write_counts == before

    def test_equal_timestamps_mark_synced_without_push(self, store, remote):
        ts = iso_offset(minutes=-10)
        local = replace(create_entry(title="aynı", body="b"), created_at=ts, updated_at=ts)
        store.entries.save_record(local)

        async def scenario():
            await put_remote_entry(remote, local.id, "aynı", "b", ts)
            before = dict(remote.write_counts)
            assert await SyncEngine(store, remote).initialize()
            return before

        before = asyncio.run(scenario())

        assert store.entries.get_metadata(local.id).is_synced is True
        assert remote.write_counts == before

    def test_local_delete_is_not_resurrected(self, store, remote):
        older = iso_offset(minutes=-10)
        entry = replace(create_entry(title="silinecek", body="b"), updated_at=older, is_synced=True)
        store.entries.save_record(entry)
        store.entries.soft_delete(entry.id)

        async def scenario():
            await put_remote_entry(remote, entry.id, "silinecek", "b", older)
            assert await SyncEngine(store, remote).initialize()
            return await remote.get_document("records_meta", entry.id)

        remote_meta = asyncio.run(scenario())

        assert remote_meta["deletedAt"] is not None
        metadata = store.entries.get_metadata(entry.id)
        assert metadata.deleted_at is not None
        assert metadata.is_synced is True
        assert store.entries.get_all_metadata() == []

    def test_books_upload_as_full_documents(self, store, remote):
        book = replace(create_book("Kitap"), writing_ids=("e1", "e2"))
        store.books.save_record(book)

        async def scenario():
            assert await SyncEngine(store, remote).initialize()
            return await remote.get_document("collections", book.id)

        doc = asyncio.run(scenario())

        assert doc["memberIds"] == ["e1", "e2"]
        assert store.books.get_metadata(book.id).is_synced is True

    def test_rejected_metadata_push_stays_unsynced_until_retry(self, store):
        remote = RejectingRemote({"records_meta"})
        entry = create_entry(title="yarım kaldı", body="<p>b</p>")
        store.entries.save_record(entry)
        engine = SyncEngine(store, remote)

        asyncio.run(engine.upload_pending())

        assert store.entries.get_metadata(entry.id).is_synced is False
        assert remote.document_ids("records") == [entry.id]
        assert remote.document_ids("records_meta") == []
        assert engine.stats.failures == 1

        remote.rejected.clear()
        assert asyncio.run(engine.upload_pending()) is True

        assert store.entries.get_metadata(entry.id).is_synced is True
        assert remote.document_ids("records") == [entry.id]
        assert remote.document_ids("records_meta") == [entry.id]
        assert remote.write_counts == {"records": 2, "records_meta": 1}


class TestIncrementalSync:
    def test_remote_update_replaces_synced_local(self, store, remote):
        t1 = iso_offset(minutes=-10)
        x = replace(
            create_entry(title="eski", body="<p>eski gövde</p>"),
            created_at=t1,
            updated_at=t1,
            is_synced=True,
        )
        store.entries.save_record(x)
        states = []

        async def scenario():
            await put_remote_entry(remote, x.id, "eski", "<p>eski gövde</p>", t1)
            engine = SyncEngine(store, remote)
            assert await engine.sync_once()

            engine.on_state_changed(states.append)
            await put_remote_entry(
                remote, x.id, "yeni", "<p>yeni gövde</p>", iso_offset(minutes=10), preview="bayat"
            )
            await put_remote_entry(remote, "older", "eski belge", "b", iso_offset(minutes=-30))
            assert await engine.sync_once()

            assert store.entries.get_full_record(x.id) is None
            return await engine.fetch_entry_body(x.id)

        fetched = asyncio.run(scenario())

        assert SyncState.INCREMENTAL_SYNC in states
        assert SyncState.FULL_SYNC not in states
        assert store.entries.get_metadata("older") is None

        assert fetched.body == "<p>yeni gövde</p>"
        metadata = store.entries.get_metadata(x.id)
        assert metadata.title == "yeni"
        assert metadata.preview == "yeni gövde"
        assert store.entries.get_full_record(x.id).body == "<p>yeni gövde</p>"

    def test_full_sync_collects_old_tombstones(self, store, remote):
        deleted_at = iso_offset(days=-8)
        y = replace(
            create_entry(title="eski silinmiş"),
            updated_at=deleted_at,
            deleted_at=deleted_at,
            is_synced=True,
        )
        store.entries.save_record(y)
        engine = SyncEngine(store, remote)

        assert asyncio.run(engine.sync_once(full=True)) is True

        assert store.entries.get_full_record(y.id) is None
        assert store.entries.get_metadata(y.id) is None
        assert engine.stats.tombstones_purged == 1

    def test_collected_tombstone_is_not_resurrected(self, store, remote):
        deleted_at = iso_offset(days=-8)
        y = replace(
            create_entry(title="geri gelmesin", body="<p>b</p>"),
            updated_at=deleted_at,
            deleted_at=deleted_at,
            is_synced=True,
        )
        store.entries.save_record(y)

        async def scenario():
            await put_remote_entry(remote, y.id, y.title, y.body, deleted_at, deleted_at=deleted_at)
            engine = SyncEngine(store, remote)
            first = await engine.sync_once(full=True)
            second = await engine.sync_once(full=True)
            return engine, first, second

        engine, first, second = asyncio.run(scenario())

        assert first is True and second is True
        assert engine.stats.tombstones_purged == 1
        assert store.entries.get_metadata(y.id) is None
        assert store.entries.get_all_metadata(include_deleted=True) == []
        assert store.entries.get_full_record(y.id) is None

    def test_concurrent_syncs_are_excluded(self, store, remote):
        engine = SyncEngine(store, remote)

        async def scenario():
            return await asyncio.gather(engine.sync_once(), engine.sync_once())

        results = asyncio.run(scenario())
        assert sorted(results) == [False, True]
        assert not engine.is_syncing


class TestSubscription:
    def test_remote_changes_are_applied_live(self, store, remote):
        changed = []

        async def scenario():
            engine = SyncEngine(store, remote)
            assert await engine.initialize()
            engine.on_sync_changed(changed.append)
            await put_remote_entry(remote, "live1", "canlı", "<p>c</p>", iso_offset(seconds=1))
            await engine.dispose()

        asyncio.run(scenario())

        assert store.entries.get_metadata("live1").title == "canlı"
        assert changed == ["entries"]

    def test_initial_snapshot_is_ignored(self, store, remote):
        async def scenario():
            engine = SyncEngine(store, remote)
            assert await engine.initialize()
            # A document written while not subscribed arrives only through
            # the next sync, not through a replayed initial snapshot
            await engine.dispose()
            await put_remote_entry(remote, "late", "geç", "", iso_offset(seconds=1))
            engine2 = SyncEngine(store, remote, online=False)
            await engine2._subscribe_all()
            await engine2.dispose()

        asyncio.run(scenario())
        assert store.entries.get_metadata("late") is None

    def test_remote_removal_respects_unsynced_local(self, store, remote):
        synced = create_entry(title="senkron")
        edited = create_entry(title="düzenlenecek")
        store.entries.save_records([synced, edited])

        async def scenario():
            engine = SyncEngine(store, remote)
            assert await engine.initialize()

            store.entries.save_record(
                replace(edited, title="yerel düzenleme", updated_at=iso_offset(seconds=5), is_synced=False)
            )
            await remote.delete_document("records_meta", synced.id)
            await remote.delete_document("records_meta", edited.id)
            await engine.dispose()

        asyncio.run(scenario())

        assert store.entries.get_metadata(synced.id) is None
        assert store.entries.get_full_record(synced.id) is None
        kept = store.entries.get_metadata(edited.id)
        assert kept.title == "yerel düzenleme"
        assert kept.is_synced is False

    def test_two_devices_converge(self, two_stores, remote):
        store_a, store_b = two_stores

        async def scenario():
            engine_a = SyncEngine(store_a, remote)
            engine_b = SyncEngine(store_b, remote)
            assert await engine_a.initialize()
            assert await engine_b.initialize()

            entry = create_entry(title="paylaşılan", body="v1")
            store_a.entries.save_record(entry)
            assert await engine_a.upload_pending()
            assert store_b.entries.get_metadata(entry.id).title == "paylaşılan"

            fetched = await engine_b.fetch_entry_body(entry.id)
            store_b.entries.save_record(
                replace(fetched, body="v2", updated_at=iso_offset(seconds=5), is_synced=False)
            )
            assert await engine_b.upload_pending()

            assert store_a.entries.get_full_record(entry.id) is None
            latest = await engine_a.fetch_entry_body(entry.id)
            await engine_a.dispose()
            await engine_b.dispose()
            return latest

        latest = asyncio.run(scenario())
        assert latest.body == "v2"


class TestConnectivity:
    def test_offline_start_then_online(self, store, remote):
        engine = SyncEngine(store, remote, online=False)
        states = []
        engine.on_state_changed(states.append)

        async def scenario():
            assert await engine.initialize() is False
            assert engine.state is SyncState.OFFLINE

            await engine.set_online(True)
            assert engine.is_initialized
            assert engine.state is SyncState.STEADY

            await engine.set_online(False)
            assert engine.state is SyncState.OFFLINE

            await engine.set_online(True)
            await engine.dispose()

        asyncio.run(scenario())

        assert SyncState.REINITIALIZING in states
        assert states.index(SyncState.REINITIALIZING) < len(states) - 1
        assert states[-1] is SyncState.STEADY

    def test_unreachable_remote_keeps_watermark_and_retries(self, store, remote):
        entry = create_entry(title="bekleyen")
        store.entries.save_record(entry)
        remote.available = False
        engine = SyncEngine(store, remote)

        async def scenario():
            assert await engine.initialize() is False
            assert store.entries.get_last_sync_time() is None
            assert store.entries.get_metadata(entry.id).is_synced is False

            remote.available = True
            assert await engine.tick() is True
            await engine.dispose()

        asyncio.run(scenario())

        assert engine.stats.failures >= 1
        assert store.entries.get_metadata(entry.id).is_synced is True

    def test_fetch_body_offline_returns_none(self, store, remote):
        async def scenario():
            await put_remote_entry(remote, "b1", "t", "<p>g</p>", iso_offset(minutes=-1))
            engine = SyncEngine(store, remote, online=False)
            return await engine.fetch_entry_body("b1")

        assert asyncio.run(scenario()) is None
        assert store.entries.get_full_record("b1") is None

    def test_observer_unsubscribe(self, store, remote):
        engine = SyncEngine(store, remote)
        states = []
        unsubscribe = engine.on_state_changed(states.append)
        unsubscribe()

        asyncio.run(engine.sync_once())
        assert states == []

    def test_going_offline_mid_sync_stops_and_stays_offline(self, store):
        remote = DisconnectingRemote()
        engine = SyncEngine(store, remote)
        remote.engine = engine

        assert asyncio.run(engine.sync_once(full=True)) is False

        assert engine.is_online is False
        assert engine.state is SyncState.OFFLINE
        assert remote.listed == ["records_meta"]
        assert store.books.get_last_sync_time() is None

    def test_going_offline_during_initialize_does_not_subscribe(self, store):
        remote = DisconnectingRemote()
        engine = SyncEngine(store, remote)
        remote.engine = engine

        async def scenario():
            ok = await engine.initialize()
            await remote.set_document("records_meta", "late", meta_doc("geç", iso_offset(minutes=-1)))
            return ok

        assert asyncio.run(scenario()) is False
        assert engine.is_initialized is False
        assert engine.state is SyncState.OFFLINE
        assert store.entries.get_metadata("late") is None
