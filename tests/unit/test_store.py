"""Tests for the cache store: expiry, audits, locking and invalidation."""
import threading
import time
from unittest.mock import patch

import pytest

from imgforge.cache.connections import ConnectionManager, NamedConnection
from imgforge.cache.store import CacheStore
from imgforge.constants.constants import ConnectionKind, OrphanPolicy
from imgforge.core.config import AuditConfig, CacheConfig
from imgforge.core.exceptions import StoreIOError
from imgforge.io.exceptions import IndexWriteError, StorageWriteError


def connection_for(kind, tmp_path, name="main"):
    if kind is ConnectionKind.LOCAL:
        return NamedConnection(name, kind, {"cache_directory": str(tmp_path / "disk")})
    if kind is ConnectionKind.ZARR:
        return NamedConnection(name, kind, {"path": str(tmp_path / "cache.zarr")})
    return NamedConnection(name, kind)


@pytest.fixture
def store(cache_backend_kind, tmp_path, clock):
    manager = ConnectionManager([connection_for(cache_backend_kind, tmp_path)])
    store = CacheStore(manager, CacheConfig(build_lock_timeout=0.2), AuditConfig(), clock)
    yield store
    store.close()


@pytest.fixture
def memory_store(clock):
    manager = ConnectionManager([NamedConnection("main", ConnectionKind.MEMORY)])
    store = CacheStore(manager, CacheConfig(build_lock_timeout=0.2, write_timeout=0.2), AuditConfig(), clock)
    yield store
    store.close()


class TestPutGet:

    def test_round_trip(self, store):
        assert store.put("beach_-_3c_-_abc.jpg", b"payload", 60, "beach.jpg") is True
        assert store.get("beach_-_3c_-_abc.jpg") == b"payload"

    def test_record_written(self, store, clock):
        store.put("k.jpg", b"12345", 60, "beach.jpg")
        assert store.entries()["k.jpg"] == {
            "created_at": clock.now, "ttl": 60, "size": 5, "source_ref": "beach.jpg",
        }

    def test_miss(self, store):
        assert store.get("absent.jpg") is None

    def test_zero_ttl_stores_nothing(self, store):
        assert store.put("k.jpg", b"x", 0) is False
        assert store.get("k.jpg") is None

    def test_perpetual_never_expires(self, store, clock):
        store.put("k.jpg", b"x", -1)
        clock.advance(10 ** 9)
        assert store.get("k.jpg") == b"x"

    def test_expired_entry_not_served(self, store, clock):
        store.put("k.jpg", b"x", 10)
        clock.advance(5)
        assert store.get("k.jpg") == b"x"
        clock.advance(15)
        assert store.get("k.jpg") is None

    def test_expired_entry_removed_in_background(self, store, clock):
        store.put("k.jpg", b"x", 10)
        clock.advance(20)
        assert store.get("k.jpg") is None
        store.close()
        backend = store.connections.backend_for()
        assert backend.list_keys() == []
        assert "k.jpg" not in backend.load_index()

    def test_invalid_key_rejected(self, store):
        with pytest.raises(StoreIOError):
            store.put("../escape.jpg", b"x", 60)

    def test_delete(self, store):
        store.put("k.jpg", b"x", 60)
        assert store.delete("k.jpg") is True
        assert store.get("k.jpg") is None
        assert "k.jpg" not in store.entries()


class TestWriteFailures:

    def test_write_error(self, memory_store):
        backend = memory_store.connections.backend_for()
        with patch.object(backend, "write", side_effect=StorageWriteError("full")):
            with pytest.raises(StoreIOError):
                memory_store.put("k.jpg", b"x", 60)

    def test_write_timeout(self, memory_store):
        backend = memory_store.connections.backend_for()
        with patch.object(backend, "write", side_effect=lambda key, data: time.sleep(0.6)):
            with pytest.raises(StoreIOError, match="Timed out"):
                memory_store.put("k.jpg", b"x", 60)

    def test_index_failure_keeps_payload(self, memory_store):
        backend = memory_store.connections.backend_for()
        with patch.object(backend, "record_entry", side_effect=IndexWriteError("locked")):
            assert memory_store.put("k.jpg", b"x", 60) is True
        assert memory_store.get("k.jpg") == b"x"

    def test_read_error_wrapped(self, memory_store):
        memory_store.put("k.jpg", b"x", 60)
        backend = memory_store.connections.backend_for()
        with patch.object(backend, "read", side_effect=PermissionError("denied")):
            with pytest.raises(StoreIOError):
                memory_store.get("k.jpg")


class TestAudit:

    def test_expired_entries_removed(self, store, clock):
        store.put("old_-_a_-_h.jpg", b"old", 10)
        store.put("new_-_e10_-_h.jpg", b"new", 3600)
        clock.advance(20)

        report = store.audit()

        assert report.files_found == 2
        assert report.database_entries == 2
        assert report.files_removed == 1
        assert report.files_size_removed == 3
        assert report.entries_removed == 1
        assert store.get("old_-_a_-_h.jpg") is None
        assert store.get("new_-_e10_-_h.jpg") == b"new"
        assert "old_-_a_-_h.jpg" not in store.entries()

    def test_orphans_indexed(self, store):
        backend = store.connections.backend_for()
        backend.write("orphan.jpg", b"orphan")

        report = store.audit()

        assert report.files_without_db_entries == 1
        assert report.entries_added == 1
        assert store.entries()["orphan.jpg"]["size"] == 6
        assert store.get("orphan.jpg") == b"orphan"

    def test_orphans_removed_by_policy(self, cache_backend_kind, tmp_path, clock):
        manager = ConnectionManager([connection_for(cache_backend_kind, tmp_path)])
        store = CacheStore(manager, CacheConfig(), AuditConfig(orphan_policy=OrphanPolicy.REMOVE), clock)
        try:
            manager.backend_for().write("orphan.jpg", b"orphan")
            report = store.audit()
            assert report.files_removed == 1
            assert manager.backend_for().list_keys() == []
        finally:
            store.close()

    def test_records_without_files_purged(self, store):
        store.connections.backend_for().record_entry("ghost.jpg", {"ttl": 60, "created_at": 0})
        report = store.audit()
        assert report.entries_removed == 1
        assert store.entries() == {}

    def test_cancelled_audit_keeps_records(self, store):
        store.connections.backend_for().record_entry("ghost.jpg", {"ttl": 60, "created_at": 0})
        cancel = threading.Event()
        cancel.set()

        report = store.audit(cancel_event=cancel)

        assert report.cancelled is True
        assert "ghost.jpg" in store.entries()

    def test_audit_during_put_keeps_fresh_entry(self, cache_backend_kind, tmp_path, clock):
        manager = ConnectionManager([connection_for(cache_backend_kind, tmp_path)])
        store = CacheStore(manager, CacheConfig(), AuditConfig(orphan_policy=OrphanPolicy.REMOVE), clock)
        backend = manager.backend_for()
        record_entry = backend.record_entry
        reports = []

        def audit_then_record(key, record):
            reports.append(store.audit())
            record_entry(key, record)

        try:
            with patch.object(backend, "record_entry", side_effect=audit_then_record):
                assert store.put("a_-_3c_-_abc.png", b"payload", 60) is True
            assert reports[0].files_removed == 0
            assert store.get("a_-_3c_-_abc.png") == b"payload"
            assert "a_-_3c_-_abc.png" in store.entries()
        finally:
            store.close()

    def test_audit_sweeps_stale_lock_files(self, tmp_path, clock):
        manager = ConnectionManager([connection_for(ConnectionKind.LOCAL, tmp_path)])
        store = CacheStore(manager, CacheConfig(), AuditConfig(), clock)
        root = tmp_path / "disk"
        try:
            store.put("thumbs/k.jpg", b"x", 60)
            for key in ("thumbs/k.jpg", "thumbs/gone.jpg", "old/gone.jpg"):
                with store.lock(key):
                    pass

            report = store.audit()

            assert report.locks_removed == 2
            assert (root / "thumbs" / "k.jpg.lock").exists()
            assert not (root / "thumbs" / "gone.jpg.lock").exists()
            assert not (root / "old").exists()
            assert store.get("thumbs/k.jpg") == b"x"
        finally:
            store.close()

    def test_entries_being_built_are_skipped(self, store, clock):
        store.put("k.jpg", b"x", 10)
        clock.advance(20)
        with store.lock("k.jpg") as acquired:
            assert acquired
            report = store.audit()
        assert report.files_removed == 0
        assert store.connections.backend_for().exists("k.jpg")

    def test_background_audit(self, store, clock):
        store.put("k.jpg", b"x", 10)
        clock.advance(20)
        report = store.start_audit().result(timeout=5)
        assert report.files_removed == 1
        assert report.as_dict()["connection"] == "main"

    def test_schedule_disabled_by_default(self, store):
        assert store.start_audit_schedule() is False


class TestLocks:

    def test_lock_marks_building(self, store):
        assert not store.is_building("k.jpg")
        with store.lock("k.jpg") as acquired:
            assert acquired is True
            assert store.is_building("k.jpg")
        assert not store.is_building("k.jpg")

    def test_put_marks_building(self, store):
        seen = []
        backend = store.connections.backend_for()
        write = backend.write

        def write_and_look(key, data):
            seen.append(store.is_building(key))
            write(key, data)

        with patch.object(backend, "write", side_effect=write_and_look):
            store.put("k.jpg", b"x", 60)
        assert seen == [True]
        assert not store.is_building("k.jpg")

    def test_contended_lock_times_out(self, store):
        results = []

        def contender():
            with store.lock("k.jpg") as acquired:
                results.append(acquired)

        with store.lock("k.jpg"):
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join(5)

        assert results == [False]

    def test_lock_released_for_next_builder(self, store):
        with store.lock("k.jpg"):
            pass
        with store.lock("k.jpg") as acquired:
            assert acquired is True


class TestInvalidate:

    def test_prefix(self, store):
        store.put("beach_-_3c_-_a.jpg", b"1", 60, "beach.jpg")
        store.put("thumbs/beach_-_3c_-_b.jpg", b"2", 60, "beach.jpg")
        store.put("other_-_3c_-_c.jpg", b"3", 60, "other.jpg")

        assert store.invalidate_prefix("beach_-_") == 2
        assert store.get("other_-_3c_-_c.jpg") == b"3"
        assert set(store.entries()) == {"other_-_3c_-_c.jpg"}

    def test_source_filter(self, store):
        store.put("beach_-_3c_-_a.jpg", b"1", 60, "a/beach.jpg")
        store.put("beach_-_3c_-_b.jpg", b"2", 60, "b/beach.jpg")

        assert store.invalidate_prefix("beach_-_", "a/beach.jpg") == 1
        assert store.get("beach_-_3c_-_b.jpg") == b"2"
