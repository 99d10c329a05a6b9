"""
tests/unit/test_storage.py

Unit tests for the JSON-file backed GM storage.
"""

import json
from pathlib import Path

from greasebox.bridge.storage import StorageStore


class TestLoad:

    def test_missing_file_is_empty_store(self, tmp_path: Path) -> None:
        store = StorageStore.load(tmp_path / "absent.json")
        assert len(store) == 0
        assert not (tmp_path / "absent.json").exists()

    def test_existing_file_is_loaded(self, tmp_path: Path) -> None:
        path = tmp_path / "gm.json"
        path.write_text(json.dumps({"count": 3, "nested": {"a": [1, 2]}}), encoding="utf-8")
        store = StorageStore.load(path)
        assert store.get("count") == 3
        assert store.get("nested") == {"a": [1, 2]}

    def test_corrupt_file_is_empty_store(self, tmp_path: Path) -> None:
        path = tmp_path / "gm.json"
        path.write_text("{not json", encoding="utf-8")
        assert len(StorageStore.load(path)) == 0

    def test_non_object_file_is_empty_store(self, tmp_path: Path) -> None:
        path = tmp_path / "gm.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        assert len(StorageStore.load(path)) == 0


class TestOperations:

    def test_get_returns_default_for_absent_key(self, storage: StorageStore) -> None:
        assert storage.get("missing") is None
        assert storage.get("missing", "fallback") == "fallback"

    def test_set_writes_through(self, storage: StorageStore) -> None:
        assert storage.set("greeting", "Hello, world!") is True
        on_disk = json.loads(storage.path.read_text(encoding="utf-8"))
        assert on_disk == {"greeting": "Hello, world!"}

    def test_values_survive_reload(self, storage: StorageStore) -> None:
        storage.set("a", 1)
        storage.set("b", [True, None])
        reloaded = StorageStore.load(storage.path)
        assert reloaded.snapshot() == {"a": 1, "b": [True, None]}

    def test_delete_existing_key(self, storage: StorageStore) -> None:
        storage.set("a", 1)
        assert storage.delete("a") is True
        assert "a" not in storage
        assert json.loads(storage.path.read_text(encoding="utf-8")) == {}

    def test_delete_absent_key(self, storage: StorageStore) -> None:
        assert storage.delete("nope") is False
        assert not storage.path.exists()

    def test_keys_in_insertion_order(self, storage: StorageStore) -> None:
        for key in ("z", "a", "m"):
            storage.set(key, key)
        assert storage.keys() == ["z", "a", "m"]

    def test_corrupt_file_is_overwritten_on_first_write(self, tmp_path: Path) -> None:
        path = tmp_path / "gm.json"
        path.write_text("garbage", encoding="utf-8")
        store = StorageStore.load(path)
        store.set("fresh", True)
        assert json.loads(path.read_text(encoding="utf-8")) == {"fresh": True}

    def test_write_failure_is_reported_not_raised(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory", encoding="utf-8")
        store = StorageStore(blocker / "gm.json")
        assert store.set("key", "value") is False
        assert store.get("key") == "value"

    def test_flush_creates_parent_directories(self, tmp_path: Path) -> None:
        store = StorageStore(tmp_path / "nested" / "dir" / "gm.json", {"x": 1})
        assert store.flush() is True
        assert (tmp_path / "nested" / "dir" / "gm.json").exists()
