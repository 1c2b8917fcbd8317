"""Unit tests for the cache stores."""

import json

import pytest

from pydrop.exceptions import CacheError
from pydrop.models import CacheSnapshot
from pydrop.sync.state import CACHE_FORMAT_VERSION, JsonCacheStore, MemoryCacheStore

SNAPSHOT = CacheSnapshot(content="c" * 32, headers="h" * 32, remote="r" * 32)


class TestMemoryCacheStore:
    """Tests for MemoryCacheStore."""

    def test_get_set_delete(self):
        """Test the basic operations."""
        store = MemoryCacheStore()
        assert store.get("a.txt") is None

        store.set("a.txt", SNAPSHOT)
        assert store.get("a.txt") == SNAPSHOT
        assert len(store) == 1

        store.delete("a.txt")
        store.delete("never-set.txt")
        assert store.get("a.txt") is None
        assert len(store) == 0

    def test_initial_snapshots_are_copied(self):
        """Test that the initial mapping is not shared."""
        initial = {"a.txt": SNAPSHOT}
        store = MemoryCacheStore(initial)
        store.delete("a.txt")

        assert "a.txt" in initial


class TestJsonCacheStore:
    """Tests for JsonCacheStore."""

    def test_missing_file_is_empty(self, temp_dir):
        """Test that a store without a file has no entries."""
        store = JsonCacheStore(temp_dir / "cache.json")

        assert store.get("a.txt") is None

    def test_save_and_reload(self, temp_dir):
        """Test that saved snapshots survive a new instance."""
        cache_file = temp_dir / "nested" / "cache.json"
        store = JsonCacheStore(cache_file, destination="s3.amazonaws.com/bucket")
        store.set("a.txt", SNAPSHOT)
        store.save()

        data = json.loads(cache_file.read_text(encoding="utf-8"))
        assert data["version"] == CACHE_FORMAT_VERSION
        assert data["destination"] == "s3.amazonaws.com/bucket"
        assert data["files"]["a.txt"] == SNAPSHOT.to_dict()
        assert not cache_file.with_suffix(".tmp").exists()

        reloaded = JsonCacheStore(cache_file)
        assert reloaded.get("a.txt") == SNAPSHOT

    def test_save_without_changes(self, temp_dir):
        """Test that an untouched store writes nothing."""
        cache_file = temp_dir / "cache.json"
        store = JsonCacheStore(cache_file)
        store.get("a.txt")
        store.save()

        assert not cache_file.exists()

    def test_delete_persists(self, temp_dir):
        """Test that deleting a key is saved."""
        cache_file = temp_dir / "cache.json"
        store = JsonCacheStore(cache_file)
        store.set("a.txt", SNAPSHOT)
        store.set("b.txt", SNAPSHOT)
        store.save()

        store = JsonCacheStore(cache_file)
        store.delete("a.txt")
        store.save()

        assert JsonCacheStore(cache_file).get("a.txt") is None
        assert JsonCacheStore(cache_file).get("b.txt") == SNAPSHOT

    def test_corrupted_file(self, temp_dir):
        """Test that an unreadable cache raises CacheError."""
        cache_file = temp_dir / "cache.json"
        cache_file.write_text("{not json", encoding="utf-8")

        with pytest.raises(CacheError):
            JsonCacheStore(cache_file).get("a.txt")

    def test_unsupported_version(self, temp_dir):
        """Test that a cache of another format version is ignored."""
        cache_file = temp_dir / "cache.json"
        cache_file.write_text(
            json.dumps({"version": 99, "files": {"a.txt": SNAPSHOT.to_dict()}}),
            encoding="utf-8",
        )

        assert JsonCacheStore(cache_file).get("a.txt") is None

    def test_save_error(self, temp_dir):
        """Test that a write failure raises CacheError."""
        blocker = temp_dir / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")
        store = JsonCacheStore(blocker / "cache.json")
        store.set("a.txt", SNAPSHOT)

        with pytest.raises(CacheError):
            store.save()

    def test_for_destination(self, temp_dir):
        """Test that each destination gets its own cache file."""
        first = JsonCacheStore.for_destination("host/bucket-a", cache_dir=temp_dir)
        second = JsonCacheStore.for_destination("host/bucket-b", cache_dir=temp_dir)
        again = JsonCacheStore.for_destination("host/bucket-a", cache_dir=temp_dir)

        assert first.cache_file.parent == temp_dir
        assert first.cache_file != second.cache_file
        assert first.cache_file == again.cache_file
        assert first.destination == "host/bucket-a"

    def test_clear(self, temp_dir):
        """Test removing the cache file."""
        cache_file = temp_dir / "cache.json"
        store = JsonCacheStore(cache_file)
        store.set("a.txt", SNAPSHOT)
        store.save()

        assert store.clear() is True
        assert not cache_file.exists()
        assert store.get("a.txt") is None
        assert store.clear() is False
