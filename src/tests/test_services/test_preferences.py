"""
Tests for the key/value preference stores
"""

import json

from services import InMemoryStore, JsonFileStore


class TestInMemoryStore:
    def test_set_get_delete(self):
        store = InMemoryStore()
        assert not store.has_key("k")
        assert store.get_string("k", "default") == "default"

        store.set_string("k", "v")
        assert store.has_key("k")
        assert store.get_string("k") == "v"

        store.delete_key("k")
        store.delete_key("k")
        assert not store.has_key("k")
        assert store.save()

    def test_snapshot_is_a_copy(self):
        store = InMemoryStore({"a": "1"})
        snapshot = store.snapshot()
        snapshot["b"] = "2"
        assert not store.has_key("b")


class TestJsonFileStore:
    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "prefs" / "preferences.json"
        store = JsonFileStore(path)
        store.set_string("ledger", '{"players": []}')

        reopened = JsonFileStore(path)
        assert reopened.get_string("ledger") == '{"players": []}'
        assert not path.with_suffix(".tmp").exists()

    def test_missing_file_starts_empty(self, tmp_path):
        store = JsonFileStore(tmp_path / "absent.json")
        assert not store.has_key("anything")
        assert not store.load()

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "preferences.json"
        path.write_text("{broken")
        store = JsonFileStore(path)
        assert not store.has_key("anything")

    def test_manual_save_when_autosave_disabled(self, tmp_path):
        path = tmp_path / "preferences.json"
        store = JsonFileStore(path, autosave=False)
        store.set_string("k", "v")
        assert not path.exists()

        assert store.save()
        assert json.loads(path.read_text()) == {"k": "v"}

    def test_delete_writes_through(self, tmp_path):
        path = tmp_path / "preferences.json"
        store = JsonFileStore(path)
        store.set_string("k", "v")
        store.delete_key("k")
        assert json.loads(path.read_text()) == {}
