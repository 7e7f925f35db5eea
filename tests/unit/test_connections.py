"""Tests for named storage connections."""
from unittest.mock import patch

import pytest

from imgforge.cache.connections import MASK, ConnectionManager, NamedConnection
from imgforge.constants.constants import ConnectionKind
from imgforge.core.config import ConnectionSpec, TransformConfig
from imgforge.core.exceptions import BackendInitError, ConnectionNotFoundError, ValidationError
from imgforge.io.disk import DiskCacheBackend
from imgforge.io.memory import MemoryCacheBackend


def s3(name="bucket", **overrides):
    config = {"key": "AKIA", "secret": "hunter2", "region": "eu-west-1", "bucket": "images"}
    config.update(overrides)
    return NamedConnection(name, ConnectionKind.S3, config)


class TestNamedConnection:

    def test_missing_fields(self):
        connection = s3(secret="", bucket=None)
        assert connection.missing_fields == ["bucket", "secret"]
        assert not connection.is_valid

    def test_memory_needs_nothing(self):
        assert NamedConnection("mem", ConnectionKind.MEMORY).is_valid

    def test_secrets_masked(self):
        masked = s3().masked_config()
        assert masked["key"] == MASK
        assert masked["secret"] == MASK
        assert masked["bucket"] == "images"
        assert "hunter2" not in repr(s3())

    def test_local_defaults_to_cache_dir(self, tmp_path):
        with patch("imgforge.cache.connections.get_imgforge_cache_dir", return_value=tmp_path):
            connection = NamedConnection.from_spec(ConnectionSpec("local"))
        assert connection.config["cache_directory"] == str(tmp_path)
        assert connection.is_valid


class TestConnectionManager:

    def test_first_valid_connection_is_default(self):
        manager = ConnectionManager([s3("broken", key=""), NamedConnection("mem", ConnectionKind.MEMORY)])
        assert manager.default.name == "mem"

    def test_get_unknown(self):
        manager = ConnectionManager([NamedConnection("mem", ConnectionKind.MEMORY)])
        with pytest.raises(ConnectionNotFoundError):
            manager.get("nope")

    def test_get_without_connections(self):
        with pytest.raises(ConnectionNotFoundError):
            ConnectionManager().get()

    def test_set_default(self):
        manager = ConnectionManager([NamedConnection("a", ConnectionKind.MEMORY),
                                     NamedConnection("b", ConnectionKind.MEMORY)])
        manager.set_default_connection("b")
        assert manager.get().name == "b"

    def test_invalid_connection_cannot_be_default(self):
        manager = ConnectionManager([NamedConnection("mem", ConnectionKind.MEMORY), s3("broken", key="")])
        with pytest.raises(ValidationError):
            manager.set_default_connection("broken")
        assert manager.default.name == "mem"

    def test_list_sorted(self):
        manager = ConnectionManager([NamedConnection("z", ConnectionKind.MEMORY),
                                     NamedConnection("a", ConnectionKind.MEMORY)])
        assert [c.name for c in manager.list_connections()] == ["a", "z"]

    def test_backend_built_once(self):
        manager = ConnectionManager([NamedConnection("mem", ConnectionKind.MEMORY)])
        backend = manager.backend_for("mem")
        assert isinstance(backend, MemoryCacheBackend)
        assert manager.backend_for() is backend

    def test_replacing_connection_rebuilds_backend(self, tmp_path):
        manager = ConnectionManager([NamedConnection("c", ConnectionKind.MEMORY)])
        first = manager.backend_for("c")
        manager.add(NamedConnection("c", ConnectionKind.LOCAL, {"cache_directory": str(tmp_path)}))
        second = manager.backend_for("c")
        assert second is not first
        assert isinstance(second, DiskCacheBackend)

    def test_invalid_connection_backend(self):
        manager = ConnectionManager([NamedConnection("mem", ConnectionKind.MEMORY), s3("broken", key="")])
        with pytest.raises(BackendInitError):
            manager.backend_for("broken")

    def test_backend_errors_wrapped(self):
        manager = ConnectionManager([NamedConnection("mem", ConnectionKind.MEMORY)])
        with patch("imgforge.cache.connections._create_cache_backend", side_effect=OSError("disk on fire")):
            with pytest.raises(BackendInitError, match="disk on fire"):
                manager.backend_for("mem")

    def test_from_config(self):
        config = TransformConfig.from_settings({
            "connections": [{"name": "a", "kind": "memory"}, {"name": "b", "kind": "memory"}],
            "default_connection": "b",
        })
        manager = ConnectionManager.from_config(config)
        assert len(manager) == 2
        assert manager.default.name == "b"

    def test_from_config_missing_default_falls_back(self):
        config = TransformConfig.from_settings({
            "connections": [{"name": "a", "kind": "memory"}],
            "default_connection": "missing",
        })
        assert ConnectionManager.from_config(config).default.name == "a"
