"""
test_pending.py - Tests for in-memory drafts.
"""

from dataclasses import replace

from journal_sync.models import EntryType
from journal_sync.sync.pending import PendingRecordManager
from journal_sync.utils.timestamps import parse_iso


class TestPendingRecords:
    def test_create_does_not_touch_storage(self, store):
        pending = PendingRecordManager(store.entries)
        draft = pending.create(EntryType.PROSE)

        assert pending.is_pending(draft.id)
        assert draft.type is EntryType.PROSE
        assert store.entries.get_all_metadata(include_deleted=True) == []
        assert store.entries.list_locally_cached_body_ids() == set()

    def test_invalid_draft_stays_in_memory(self, store):
        pending = PendingRecordManager(store.entries)
        draft = pending.create()

        edited = replace(draft, footer="only a footer")
        assert pending.save(edited) is False
        assert pending.get_draft(draft.id).footer == "only a footer"
        assert store.entries.get_metadata(draft.id) is None

    def test_valid_draft_is_persisted_once(self, store):
        pending = PendingRecordManager(store.entries)
        draft = pending.create()

        assert pending.save(replace(draft, body="ilk satır")) is True
        assert not pending.is_pending(draft.id)

        stored = store.entries.get_full_record(draft.id)
        assert stored.body == "ilk satır"
        assert stored.is_synced is False
        assert parse_iso(stored.updated_at) >= parse_iso(draft.updated_at)

    def test_discard_leaves_no_trace(self, store):
        pending = PendingRecordManager(store.entries)
        draft = pending.create()
        pending.save(replace(draft, footer="x"))

        assert pending.discard(draft.id) is True
        assert not pending.is_pending(draft.id)
        all_ids = {m.id for m in store.entries.get_all_metadata(include_deleted=True)}
        assert draft.id not in all_ids
        assert draft.id not in store.entries.list_locally_cached_body_ids()

    def test_discard_of_persisted_entry_is_noop(self, store):
        pending = PendingRecordManager(store.entries)
        draft = pending.create()
        pending.save(replace(draft, title="Deneme"))

        assert pending.discard(draft.id) is False
        assert store.entries.get_metadata(draft.id) is not None

    def test_save_of_stored_entry_marks_unsynced(self, store):
        pending = PendingRecordManager(store.entries)
        draft = pending.create()
        pending.save(replace(draft, title="v1"))
        store.entries.mark_synced(draft.id, store.entries.get_metadata(draft.id).updated_at)

        # Stored entries are saved even when emptied
        assert pending.save(replace(draft, title="", body="")) is True
        assert store.entries.get_metadata(draft.id).is_synced is False
