"""Tests for the cache storage backends."""
import pytest

from imgforge.constants.constants import ConnectionKind
from imgforge.io.base import _create_cache_backend, validate_key
from imgforge.io.disk import DiskCacheBackend
from imgforge.io.exceptions import StorageResolutionError
from imgforge.io.memory import MemoryCacheBackend
from imgforge.io.zarr import ZarrCacheBackend, object_store_location


@pytest.fixture
def cache_backend(cache_backend_kind, tmp_path):
    if cache_backend_kind is ConnectionKind.LOCAL:
        return _create_cache_backend(cache_backend_kind, {"cache_directory": str(tmp_path / "disk")})
    if cache_backend_kind is ConnectionKind.ZARR:
        return _create_cache_backend(cache_backend_kind, {"path": str(tmp_path / "cache.zarr")})
    return _create_cache_backend(cache_backend_kind)


class TestValidateKey:

    @pytest.mark.parametrize("key", ["a.jpg", "dir/a.jpg", "x/y/z_-_3c_-_ab.png"])
    def test_valid(self, key):
        assert validate_key(key) == key

    @pytest.mark.parametrize("key", ["", "  ", "/abs.jpg", "../up.jpg", "a/../b.jpg", "a//b", "a\\b"])
    def test_invalid(self, key):
        with pytest.raises(StorageResolutionError):
            validate_key(key)


class TestCacheBackendContract:

    def test_factory_kind(self, cache_backend, cache_backend_kind):
        assert cache_backend.kind is cache_backend_kind

    def test_write_read(self, cache_backend):
        cache_backend.write("entry.jpg", b"\x00\x01payload")
        assert cache_backend.read("entry.jpg") == b"\x00\x01payload"
        assert cache_backend.exists("entry.jpg")

    def test_overwrite(self, cache_backend):
        cache_backend.write("entry.jpg", b"first")
        cache_backend.write("entry.jpg", b"second!")
        assert cache_backend.read("entry.jpg") == b"second!"
        assert cache_backend.stat("entry.jpg").size == 7

    def test_missing_entry(self, cache_backend):
        with pytest.raises(FileNotFoundError):
            cache_backend.read("missing.jpg")
        with pytest.raises(FileNotFoundError):
            cache_backend.stat("missing.jpg")
        assert not cache_backend.exists("missing.jpg")

    def test_nested_keys_listed(self, cache_backend):
        cache_backend.write("b.jpg", b"b")
        cache_backend.write("thumbs/a.jpg", b"a")
        assert cache_backend.list_keys() == ["b.jpg", "thumbs/a.jpg"]

    def test_delete(self, cache_backend):
        cache_backend.write("thumbs/a.jpg", b"a")
        assert cache_backend.delete("thumbs/a.jpg") is True
        assert cache_backend.delete("thumbs/a.jpg") is False
        assert cache_backend.list_keys() == []

    def test_index_records(self, cache_backend):
        cache_backend.record_entry("a.jpg", {"ttl": 60, "size": 1})
        cache_backend.record_entry("b.jpg", {"ttl": -1, "size": 2})
        cache_backend.remove_records(["a.jpg"])
        assert cache_backend.load_index() == {"b.jpg": {"ttl": -1, "size": 2}}

    def test_merge_keeps_existing_records(self, cache_backend):
        cache_backend.record_entry("a.jpg", {"ttl": 60})
        cache_backend.merge_records({"a.jpg": {"ttl": 1}, "c.jpg": {"ttl": 2}}, removed=["zzz.jpg"])
        assert cache_backend.load_index() == {"a.jpg": {"ttl": 60}, "c.jpg": {"ttl": 2}}

    def test_index_snapshot_is_detached(self, cache_backend):
        cache_backend.record_entry("a.jpg", {"ttl": 60})
        snapshot = cache_backend.load_index()
        snapshot["b.jpg"] = {}
        assert "b.jpg" not in cache_backend.load_index()

    def test_rejects_escaping_keys(self, cache_backend):
        with pytest.raises(StorageResolutionError):
            cache_backend.write("../outside.jpg", b"x")


class TestDiskCacheBackend:

    def test_index_and_locks_not_listed(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        backend.write("a.jpg", b"a")
        backend.record_entry("a.jpg", {"ttl": 60})
        with backend.key_lock("a.jpg", timeout=1):
            assert backend.is_locked("a.jpg")
            assert backend.list_keys() == ["a.jpg"]
        assert not backend.is_locked("a.jpg")
        assert (tmp_path / "cache_index.json").exists()

    def test_delete_prunes_empty_directories(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        backend.write("x/y/a.jpg", b"a")
        backend.delete("x/y/a.jpg")
        assert not (tmp_path / "x").exists()
        assert tmp_path.exists()

    def test_delete_removes_lock_file(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        backend.write("x/y/a.jpg", b"a")
        with backend.key_lock("x/y/a.jpg", timeout=1):
            pass
        assert (tmp_path / "x" / "y" / "a.jpg.lock").exists()
        assert backend.delete("x/y/a.jpg") is True
        assert not (tmp_path / "x").exists()

    def test_delete_keeps_held_lock_file(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        backend.write("a.jpg", b"a")
        with backend.key_lock("a.jpg", timeout=1):
            assert backend.delete("a.jpg") is True
            assert backend.is_locked("a.jpg")
        assert (tmp_path / "a.jpg.lock").exists()

    def test_sweep_locks(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        backend.write("kept.jpg", b"k")
        backend.record_entry("kept.jpg", {"ttl": 60})
        for key in ("kept.jpg", "gone.jpg", "sub/gone.jpg"):
            with backend.key_lock(key, timeout=1):
                pass

        assert backend.sweep_locks() == 2
        assert sorted(p.name for p in tmp_path.rglob("*.lock")) == ["cache_index.json.lock", "kept.jpg.lock"]
        assert not (tmp_path / "sub").exists()

    def test_sweep_skips_held_locks(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        with backend.key_lock("building.jpg", timeout=1):
            assert backend.sweep_locks() == 0
        assert backend.sweep_locks() == 1

    def test_files_are_plain_payloads(self, tmp_path):
        backend = DiskCacheBackend(tmp_path)
        backend.write("a.jpg", b"raw bytes")
        assert (tmp_path / "a.jpg").read_bytes() == b"raw bytes"


class TestMemoryCacheBackend:

    def test_no_locks_to_sweep(self):
        assert MemoryCacheBackend().sweep_locks() == 0

    def test_clear(self):
        backend = MemoryCacheBackend(clock=lambda: 42.0)
        backend.write("a.jpg", b"a")
        backend.record_entry("a.jpg", {})
        assert backend.stat("a.jpg").mtime == 42.0
        backend.clear()
        assert backend.list_keys() == []
        assert backend.load_index() == {}


class TestObjectStoreLocation:

    def test_s3(self):
        url, options = object_store_location(ConnectionKind.S3, {
            "key": "k", "secret": "s", "region": "eu-west-1", "bucket": "images",
        })
        assert url == "s3://images/imgforge-cache.zarr"
        assert options["client_kwargs"] == {"region_name": "eu-west-1"}

    def test_r2_endpoint(self):
        url, options = object_store_location(ConnectionKind.R2, {
            "key": "k", "secret": "s", "account_id": "acct", "bucket": "b", "path": "/derived/",
        })
        assert url == "s3://b/derived"
        assert options["client_kwargs"]["endpoint_url"] == "https://acct.r2.cloudflarestorage.com"

    def test_dospaces_endpoint(self):
        url, options = object_store_location(ConnectionKind.DOSPACES, {
            "key": "k", "secret": "s", "region": "ams3", "space": "media",
        })
        assert url == "s3://media/imgforge-cache.zarr"
        assert options["client_kwargs"]["endpoint_url"] == "https://ams3.digitaloceanspaces.com"

    def test_missing_field(self):
        with pytest.raises(KeyError):
            object_store_location(ConnectionKind.S3, {"key": "k", "secret": "s"})

    def test_not_object_store(self):
        with pytest.raises(ValueError):
            object_store_location(ConnectionKind.ZARR, {"key": "k", "secret": "s"})


class TestZarrCacheBackend:

    def test_reopen_keeps_entries_and_index(self, tmp_path):
        location = tmp_path / "store.zarr"
        backend = ZarrCacheBackend(location)
        backend.write("a.jpg", b"zarr payload")
        backend.record_entry("a.jpg", {"ttl": 60})

        reopened = ZarrCacheBackend(location)
        assert reopened.read("a.jpg") == b"zarr payload"
        assert reopened.load_index() == {"a.jpg": {"ttl": 60}}
