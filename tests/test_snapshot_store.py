"""
Tests for charversions/snapshot_store.py

Covers:
    - Identity allocation, reuse by storage key, ephemeral fallback
    - Snapshot ids, listing order, get/rename/delete
    - Auto-backup dedup and pruning cap
    - Backup slot and garbage collection of empty records
    - Record/index consistency when a write fails
    - Reloading from storage and corrupt blobs
"""

import json

import pytest

from charversions.errors import NotFoundError, StorageError, ValidationError
from charversions.models import SnapshotSource
from charversions.snapshot_store import (
    INDEX_NAME,
    UID_LENGTH,
    SnapshotStore,
    generate_version_uid,
    record_name,
)
from charversions.storage import MemoryStorage
from conftest import FailingStorage, FailingWriter, step_clock


def _index(storage):
    return json.loads(storage.read(INDEX_NAME))


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class TestIdentity:
    def test_generated_uid_shape(self):
        uid = generate_version_uid()
        assert len(uid) == UID_LENGTH
        assert uid.isalnum()

    def test_allocates_and_persists(self, store, sample_card):
        uid = store.ensure_identity(sample_card)
        assert sample_card["data"]["extensions"]["version_uid"] == uid
        assert sample_card["data"]["extensions"]["talkativeness"] == "0.5"
        assert not store.is_ephemeral(uid)

    def test_idempotent(self, store, sample_card):
        assert store.ensure_identity(sample_card) == store.ensure_identity(sample_card)

    def test_key_map_updated(self, store, memory_storage, sample_card):
        uid = store.ensure_identity(sample_card)
        assert store.lookup_identity("seraphine.png") == uid
        assert _index(memory_storage)["key_map"] == {"seraphine.png": uid}

    def test_reuses_identity_by_key(self, store, sample_card):
        uid = store.ensure_identity(sample_card)
        reimported = {"avatar": "seraphine.png", "data": {"name": "Seraphine"}}
        assert store.ensure_identity(reimported) == uid
        assert reimported["data"]["extensions"]["version_uid"] == uid

    def test_rekeyed_document_drops_stale_key(self, store, sample_card):
        uid = store.ensure_identity(sample_card)
        sample_card["avatar"] = "seraphine-v2.png"
        assert store.ensure_identity(sample_card) == uid
        assert store.lookup_identity("seraphine-v2.png") == uid
        assert store.lookup_identity("seraphine.png") is None

    def test_resolve_does_not_write(self, store, memory_storage, sample_card):
        uid, is_new = store.resolve_identity(sample_card)
        assert is_new
        assert "version_uid" not in sample_card["data"]["extensions"]
        assert memory_storage.read(INDEX_NAME) is None

        store.persist_identity(sample_card, uid)
        assert sample_card["data"]["extensions"]["version_uid"] == uid
        assert store.resolve_identity(sample_card) == (uid, False)

    def test_resolve_reuses_identity_by_key(self, store, sample_card):
        uid = store.ensure_identity(sample_card)
        reimported = {"avatar": "seraphine.png", "data": {"name": "Seraphine"}}
        assert store.resolve_identity(reimported) == (uid, True)
        assert "extensions" not in reimported["data"]

    def test_ephemeral_when_writer_fails(self, memory_storage, sample_card):
        store = SnapshotStore(memory_storage, writer=FailingWriter())
        uid = store.ensure_identity(sample_card)
        assert store.is_ephemeral(uid)
        assert "version_uid" not in sample_card["data"]["extensions"]
        assert store.ensure_identity(sample_card) == uid
        assert store.find_identity(sample_card) == uid

    def test_ephemeral_store_still_works(self, memory_storage, sample_card):
        store = SnapshotStore(memory_storage, writer=FailingWriter())
        uid = store.ensure_identity(sample_card)
        store.save_snapshot(uid, "first", "local", {"name": "x"})
        assert len(store.list_snapshots(uid)) == 1

    def test_non_mapping_document(self, store):
        with pytest.raises(ValidationError):
            store.ensure_identity("not a document")


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class TestSnapshots:
    def test_ids_increase(self, store):
        a = store.save_snapshot("uid1", "a", "local", {"name": "A"})
        b = store.save_snapshot("uid1", "b", "local", {"name": "B"})
        assert (a, b) == (1, 2)

    def test_ids_never_reused(self, store):
        store.save_snapshot("uid1", "a", "local", {"name": "A"})
        second = store.save_snapshot("uid1", "b", "local", {"name": "B"})
        store.delete_snapshot("uid1", second)
        assert store.save_snapshot("uid1", "c", "local", {"name": "C"}) == 3

    def test_list_newest_first(self, store):
        for label in ("a", "b", "c"):
            store.save_snapshot("uid1", label, "local", {"name": label})
        assert [s.label for s in store.list_snapshots("uid1")] == ["c", "b", "a"]

    def test_list_ties_broken_by_id(self, memory_storage):
        store = SnapshotStore(memory_storage, clock=lambda: 5)
        store.save_snapshot("uid1", "a", "local", {"name": "a"})
        store.save_snapshot("uid1", "b", "local", {"name": "b"})
        assert [s.id for s in store.list_snapshots("uid1")] == [2, 1]

    def test_list_unknown_creates_nothing(self, store, memory_storage):
        assert store.list_snapshots("ghost") == []
        assert memory_storage.read(record_name("ghost")) is None

    def test_get_returns_copy(self, store):
        snap_id = store.save_snapshot("uid1", "a", "local", {"tags": ["x"]})
        snap = store.get_snapshot("uid1", snap_id)
        snap.data["tags"].append("mutated")
        assert store.get_snapshot("uid1", snap_id).data == {"tags": ["x"]}

    def test_saved_data_is_copied(self, store):
        data = {"tags": ["x"]}
        snap_id = store.save_snapshot("uid1", "a", "local", data)
        data["tags"].append("later")
        assert store.get_snapshot("uid1", snap_id).data == {"tags": ["x"]}

    def test_unknown_ids_raise(self, store):
        store.save_snapshot("uid1", "a", "local", {})
        with pytest.raises(NotFoundError):
            store.get_snapshot("uid1", 99)
        with pytest.raises(NotFoundError):
            store.delete_snapshot("uid1", 99)
        with pytest.raises(NotFoundError):
            store.rename_snapshot("uid1", 99, "x")
        with pytest.raises(NotFoundError):
            store.get_snapshot("nobody", 1)

    def test_rename(self, store):
        snap_id = store.save_snapshot("uid1", "old", "local", {})
        store.rename_snapshot("uid1", snap_id, "new")
        assert store.get_snapshot("uid1", snap_id).label == "new"

    def test_bad_source_rejected(self, store):
        with pytest.raises(ValidationError):
            store.save_snapshot("uid1", "a", "chub_restore", {})

    def test_index_summary(self, store):
        store.save_snapshot("uid1", "a", "local", {}, display_name="Sera", current_key="s.png")
        store.save_snapshot("uid1", "b", "local", {})
        entry = store.list_documents()["uid1"]
        assert entry.display_name == "Sera"
        assert entry.current_key == "s.png"
        assert entry.snapshot_count == 2
        assert store.lookup_identity("s.png") == "uid1"


# ---------------------------------------------------------------------------
# Auto-backup dedup and cap
# ---------------------------------------------------------------------------

class TestAutoBackups:
    def test_identical_auto_backup_deduplicated(self, store):
        first = store.save_snapshot("uid1", "Edit", SnapshotSource.AUTO_BACKUP, {"name": "A", "tags": ["x"]})
        second = store.save_snapshot("uid1", "Edit again", "auto_backup", {"tags": ["x"], "name": "A"})
        assert second == first
        assert len(store.list_snapshots("uid1")) == 1

    def test_dedup_only_against_latest(self, store):
        store.save_snapshot("uid1", "1", "auto_backup", {"name": "A"})
        store.save_snapshot("uid1", "2", "auto_backup", {"name": "B"})
        third = store.save_snapshot("uid1", "3", "auto_backup", {"name": "A"})
        assert third == 3

    def test_local_snapshots_not_deduplicated(self, store):
        store.save_snapshot("uid1", "1", "local", {"name": "A"})
        store.save_snapshot("uid1", "2", "local", {"name": "A"})
        assert len(store.list_snapshots("uid1")) == 2

    def test_cap_keeps_most_recent(self, store):
        for i in range(11):
            store.save_snapshot("uid1", f"auto {i}", "auto_backup", {"n": i})
        snaps = store.list_snapshots("uid1")
        assert len(snaps) == 10
        assert sorted(s.data["n"] for s in snaps) == list(range(1, 11))

    def test_cap_leaves_other_sources(self, memory_storage):
        store = SnapshotStore(memory_storage, max_auto_backups=2)
        store.save_snapshot("uid1", "mine", "local", {"n": "local"})
        for i in range(4):
            store.save_snapshot("uid1", f"auto {i}", "auto_backup", {"n": i})
        sources = [s.source for s in store.list_snapshots("uid1")]
        assert sources.count(SnapshotSource.LOCAL) == 1
        assert sources.count(SnapshotSource.AUTO_BACKUP) == 2

    def test_zero_disables_cap(self, memory_storage):
        store = SnapshotStore(memory_storage, max_auto_backups=0)
        for i in range(15):
            store.save_snapshot("uid1", str(i), "auto_backup", {"n": i})
        assert len(store.list_snapshots("uid1")) == 15

    def test_negative_cap_rejected(self, memory_storage):
        with pytest.raises(ValidationError):
            SnapshotStore(memory_storage, max_auto_backups=-1)


# ---------------------------------------------------------------------------
# Backup slot and GC
# ---------------------------------------------------------------------------

class TestBackupAndGC:
    def test_backup_round_trip(self, store):
        assert store.get_backup("uid1") is None
        store.save_backup("uid1", {"name": "before"})
        assert store.get_backup("uid1").data == {"name": "before"}

    def test_second_backup_overwrites(self, store):
        store.save_backup("uid1", {"name": "one"})
        store.save_backup("uid1", {"name": "two"})
        assert store.get_backup("uid1").data == {"name": "two"}

    def test_clear_backup_gc(self, store, memory_storage):
        store.save_backup("uid1", {"name": "x"}, current_key="x.png")
        assert store.clear_backup("uid1") is True
        assert memory_storage.read(record_name("uid1")) is None
        assert "uid1" not in _index(memory_storage)["documents"]
        assert store.lookup_identity("x.png") is None
        assert store.clear_backup("uid1") is False

    def test_delete_only_snapshot_gc(self, store, memory_storage):
        snap_id = store.save_snapshot("uid1", "only", "local", {"name": "x"})
        store.delete_snapshot("uid1", snap_id)
        assert memory_storage.read(record_name("uid1")) is None
        assert "uid1" not in _index(memory_storage)["documents"]
        assert store.list_snapshots("uid1") == []
        assert memory_storage.read(record_name("uid1")) is None

    def test_delete_keeps_record_with_backup(self, store, memory_storage):
        snap_id = store.save_snapshot("uid1", "only", "local", {})
        store.save_backup("uid1", {"name": "b"})
        store.delete_snapshot("uid1", snap_id)
        assert memory_storage.read(record_name("uid1")) is not None
        assert store.get_backup("uid1") is not None


# ---------------------------------------------------------------------------
# Persistence and failures
# ---------------------------------------------------------------------------

class TestPersistence:
    def test_new_store_reads_existing_blobs(self, memory_storage):
        first = SnapshotStore(memory_storage, clock=step_clock())
        first.save_snapshot("uid1", "a", "local", {"name": "A"}, current_key="a.png")
        first.save_backup("uid1", {"name": "pre"})

        second = SnapshotStore(memory_storage)
        assert [s.label for s in second.list_snapshots("uid1")] == ["a"]
        assert second.get_backup("uid1").data == {"name": "pre"}
        assert second.lookup_identity("a.png") == "uid1"
        assert second.save_snapshot("uid1", "b", "local", {}) == 2

    def test_corrupt_index_starts_fresh(self, memory_storage):
        memory_storage.write(INDEX_NAME, b"{broken")
        store = SnapshotStore(memory_storage)
        assert store.list_documents() == {}
        store.save_snapshot("uid1", "a", "local", {})
        assert "uid1" in _index(memory_storage)["documents"]

    def test_corrupt_record_raises(self, memory_storage):
        memory_storage.write(record_name("uid1"), b"not json")
        store = SnapshotStore(memory_storage)
        with pytest.raises(StorageError):
            store.list_snapshots("uid1")

    def test_record_write_failure(self):
        storage = FailingStorage(fail_on={record_name("uid1")})
        store = SnapshotStore(storage)
        with pytest.raises(StorageError):
            store.save_snapshot("uid1", "a", "local", {})
        assert store.list_snapshots("uid1") == []
        assert storage.read(INDEX_NAME) is None

    def test_index_write_failure_rolls_back_record(self):
        storage = FailingStorage()
        store = SnapshotStore(storage)
        store.save_snapshot("uid1", "a", "local", {"name": "A"})
        before = storage.read(record_name("uid1"))

        storage.fail_on.add(INDEX_NAME)
        with pytest.raises(StorageError):
            store.save_snapshot("uid1", "b", "local", {"name": "B"})

        assert storage.read(record_name("uid1")) == before
        assert [s.label for s in store.list_snapshots("uid1")] == ["a"]
        storage.fail_on.clear()
        assert store.save_snapshot("uid1", "b", "local", {"name": "B"}) == 2

    def test_index_failure_during_gc_restores_record(self):
        storage = FailingStorage()
        store = SnapshotStore(storage)
        snap_id = store.save_snapshot("uid1", "only", "local", {})
        storage.fail_on.add(INDEX_NAME)
        with pytest.raises(StorageError):
            store.delete_snapshot("uid1", snap_id)
        assert storage.read(record_name("uid1")) is not None
        assert len(store.list_snapshots("uid1")) == 1

    def test_backend_exceptions_wrapped(self):
        class Exploding(MemoryStorage):
            def read(self, name):
                raise RuntimeError("backend down")

        store = SnapshotStore(Exploding())
        with pytest.raises(StorageError, match="backend down"):
            store.list_snapshots("uid1")
