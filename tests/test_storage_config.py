"""Tests for the key-value stores and settings loading."""

import json

import pytest

from photo_similarity.config import CleanupSettings, Settings, load_settings
from photo_similarity.storage.kv import InMemoryStore, JsonFileStore


class TestInMemoryStore:

    def test_batch_operations(self):
        store = InMemoryStore()
        store.put_batch({"a:1": 1, "a:2": 2, "b:1": 3})
        assert store.get_batch(["a:1", "missing"]) == {"a:1": 1}
        assert sorted(store.keys("a:")) == ["a:1", "a:2"]
        assert store.items("b:") == {"b:1": 3}
        assert store.delete_batch(["a:1", "missing"]) == 1
        assert store.get("a:1", "default") == "default"

    def test_clear(self):
        store = InMemoryStore()
        store.put_batch({"a": 1})
        store.clear()
        assert len(store) == 0


class TestJsonFileStore:

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "cache" / "store.json"
        JsonFileStore(path).put_batch({"fingerprint:1": {"hash": 2 ** 64 - 1, "status": "success"}})
        reopened = JsonFileStore(path)
        assert reopened.get("fingerprint:1") == {"hash": 2 ** 64 - 1, "status": "success"}

    def test_transaction_writes_once_at_end(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        with store.transaction():
            store.put_batch({"a": 1})
            store.put_batch({"b": 2})
            assert not path.exists()
        assert json.loads(path.read_text())["entries"] == {"a": 1, "b": 2}

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json")
        store = JsonFileStore(path)
        assert store.keys() == []

    def test_delete_and_size(self, tmp_path):
        store = JsonFileStore(tmp_path / "store.json")
        assert store.size_bytes() == 0
        store.put_batch({"a": 1, "b": 2})
        assert store.delete_batch(["a"]) == 1
        assert JsonFileStore(tmp_path / "store.json").keys() == ["b"]
        assert store.size_bytes() > 0


class TestLoadSettings:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "PHOTO_SIMILARITY_CACHE_DIR",
            "PHOTO_SIMILARITY_DECODE_CONCURRENCY",
            "PHOTO_SIMILARITY_GROUP_CACHE_TTL",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = load_settings()
        assert settings == Settings()
        assert settings.detection.max_group_size == 50
        assert settings.cleanup == CleanupSettings(30, 10, 300)
        assert settings.cooldown.image_cooldown_days == (7, 12, 24)

    def test_json_sections(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "detection": {"decode_concurrency": 2, "unknown": 1},
            "cleanup": {"max_batch_size": 20},
            "cooldown": {"group_cooldown_days": [1, 2]},
            "cache_dir": str(tmp_path / "cache"),
        }))
        settings = load_settings(path)
        assert settings.detection.decode_concurrency == 2
        assert settings.cleanup.max_batch_size == 20
        assert settings.cooldown.group_cooldown_days == (1, 2)
        assert settings.cache_dir == tmp_path / "cache"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PHOTO_SIMILARITY_CACHE_DIR", str(tmp_path))
        monkeypatch.setenv("PHOTO_SIMILARITY_DECODE_CONCURRENCY", "5")
        monkeypatch.setenv("PHOTO_SIMILARITY_GROUP_CACHE_TTL", "60")
        settings = load_settings()
        assert settings.cache_dir == tmp_path
        assert settings.detection.decode_concurrency == 5
        assert settings.cleanup.group_cache_ttl_seconds == 60.0
