"""Tests for the persistent key-value backends."""

import json

from sitecache.storage.kv import FileKeyValueStore, MemoryKeyValueStore, scoped_key


class TestScopedKey:
    def test_joins_name_and_scope(self):
        assert scoped_key("vini_materials", "abc") == "vini_materials_abc"

    def test_stringifies_scope(self):
        assert scoped_key("vini_units", 1) == "vini_units_1"


class TestMemoryKeyValueStore:
    def test_values_are_copies(self):
        store = MemoryKeyValueStore()
        value = {"items": [1, 2]}
        store.set("k", value)
        value["items"].append(3)

        loaded = store.get("k")
        loaded["items"].append(4)

        assert store.get("k") == {"items": [1, 2]}

    def test_missing_key_returns_default(self):
        store = MemoryKeyValueStore()
        assert store.get("absent") is None
        assert store.get("absent", []) == []

    def test_unserializable_value_is_rejected(self):
        store = MemoryKeyValueStore({"k": "old"})

        assert store.set("k", {"bad": object()}) is False
        assert store.get("k") == "old"

    def test_keys_filters_by_prefix(self):
        store = MemoryKeyValueStore(
            {"vini_sites": [], "vini_materials_a": [], "vini_materials_b": [], "other": 1}
        )
        assert store.keys("vini_materials") == ["vini_materials_a", "vini_materials_b"]
        assert len(store.keys()) == 4

    def test_delete_reports_presence(self):
        store = MemoryKeyValueStore({"k": 1})
        assert store.delete("k") is True
        assert store.delete("k") is False


class TestFileKeyValueStore:
    def test_survives_reopen(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path))
        store.set("vini_active_site", "a0000000000000000000000a")
        store.set("vini_saved_units_a0000000000000000000000a", ["bags", "kg"])

        reopened = FileKeyValueStore(str(tmp_path))

        assert reopened.get("vini_active_site") == "a0000000000000000000000a"
        assert reopened.get("vini_saved_units_a0000000000000000000000a") == ["bags", "kg"]

    def test_state_file_is_plain_json(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path))
        store.set("k", {"a": 1})

        path = tmp_path / "state" / "local_storage.json"
        assert json.loads(path.read_text()) == {"k": {"a": 1}}

    def test_delete_is_persisted(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path))
        store.set("k", 1)
        store.delete("k")

        assert FileKeyValueStore(str(tmp_path)).get("k") is None

    def test_corrupt_state_starts_empty(self, tmp_path):
        path = tmp_path / "state" / "local_storage.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        store = FileKeyValueStore(str(tmp_path))

        assert store.keys() == []
        assert store.set("k", 1) is True
