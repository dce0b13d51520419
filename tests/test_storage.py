"""
Tests for charversions/storage.py and charversions/paths.py

Covers:
    - MemoryStorage read/write/delete
    - FileStorage round trip, missing blobs, bad names
    - OS failures surfacing as StorageError
    - Default locations honour CHARVERSIONS_HOME
"""

import os
from unittest.mock import patch

import pytest

from charversions.errors import StorageError
from charversions.paths import get_settings_path, get_storage_dir
from charversions.storage import FileStorage, MemoryStorage, StorageBackend


class TestMemoryStorage:
    def test_read_missing_is_none(self):
        assert MemoryStorage().read("nothing.json") is None

    def test_write_read_delete(self):
        storage = MemoryStorage()
        storage.write("a.json", b"{}")
        assert storage.read("a.json") == b"{}"
        assert storage.names() == ["a.json"]
        storage.delete("a.json")
        assert storage.read("a.json") is None

    def test_delete_missing_is_fine(self):
        MemoryStorage().delete("never-written.json")

    def test_instances_are_independent(self):
        a, b = MemoryStorage(), MemoryStorage()
        a.write("x", b"1")
        assert b.read("x") is None

    def test_satisfies_protocol(self):
        assert isinstance(MemoryStorage(), StorageBackend)
        assert isinstance(FileStorage("."), StorageBackend)


class TestFileStorage:
    def test_round_trip(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.write("_clv_index.json", b'{"version": 1}')
        assert (tmp_path / "_clv_index.json").read_bytes() == b'{"version": 1}'
        assert storage.read("_clv_index.json") == b'{"version": 1}'

    def test_creates_root(self, tmp_path):
        storage = FileStorage(tmp_path / "nested" / "store")
        storage.write("a.json", b"1")
        assert storage.names() == ["a.json"]

    def test_missing_blob(self, tmp_path):
        assert FileStorage(tmp_path).read("missing.json") is None
        FileStorage(tmp_path).delete("missing.json")

    def test_no_temp_files_left(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.write("a.json", b"1")
        storage.write("a.json", b"2")
        assert sorted(os.listdir(tmp_path)) == ["a.json"]

    @pytest.mark.parametrize("name", ["", "../escape.json", "sub/dir.json", "..", "a\\b"])
    def test_rejects_bad_names(self, tmp_path, name):
        with pytest.raises(StorageError):
            FileStorage(tmp_path).write(name, b"x")

    def test_write_failure_is_storage_error(self, tmp_path):
        storage = FileStorage(tmp_path)
        with patch("charversions.storage.write_bytes_atomic", side_effect=OSError("disk full")):
            with pytest.raises(StorageError, match="disk full"):
                storage.write("a.json", b"1")

    def test_delete_failure_is_storage_error(self, tmp_path):
        storage = FileStorage(tmp_path)
        storage.write("a.json", b"1")
        with patch("charversions.storage.os.remove", side_effect=PermissionError("locked")):
            with pytest.raises(StorageError):
                storage.delete("a.json")


class TestPaths:
    def test_home_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHARVERSIONS_HOME", str(tmp_path))
        assert get_storage_dir() == os.path.join(str(tmp_path), "versions")
        assert os.path.isdir(get_storage_dir())
        assert get_settings_path() == os.path.join(str(tmp_path), "settings.json")

    def test_default_storage_root(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHARVERSIONS_HOME", str(tmp_path))
        storage = FileStorage()
        assert storage.root == (tmp_path / "versions").resolve()
