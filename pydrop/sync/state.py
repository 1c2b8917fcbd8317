"""Cache store remembering what was last synced for every key.

The cache lets the engine skip the remote probe of a file whose local
fingerprints did not change since its last successful sync. Snapshots are
keyed by ``dest.relative`` and persisted as one JSON file per destination,
in the user's config directory.
"""

import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..exceptions import CacheError
from ..models import CacheSnapshot

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1


class CacheStore(ABC):
    """Keyed read/write store of cache snapshots.

    Concurrent access to different keys must be safe. The engine never
    accesses the same key from two workers.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[CacheSnapshot]:
        """Return the snapshot recorded for a key, or None.

        Raises:
            CacheError: If the store cannot be read
        """

    @abstractmethod
    def set(self, key: str, snapshot: CacheSnapshot) -> None:
        """Record the snapshot of a key.

        Raises:
            CacheError: If the store cannot be written
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget a key (after its remote object was deleted)."""

    def save(self) -> None:
        """Persist pending changes. No-op for stores writing through."""


class MemoryCacheStore(CacheStore):
    """In-memory cache store, the engine default when no store is given."""

    def __init__(self, snapshots: Optional[dict[str, CacheSnapshot]] = None):
        self._snapshots: dict[str, CacheSnapshot] = dict(snapshots or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheSnapshot]:
        with self._lock:
            return self._snapshots.get(key)

    def set(self, key: str, snapshot: CacheSnapshot) -> None:
        with self._lock:
            self._snapshots[key] = snapshot

    def delete(self, key: str) -> None:
        with self._lock:
            self._snapshots.pop(key, None)

    def __len__(self) -> int:
        return len(self._snapshots)


class JsonCacheStore(CacheStore):
    """Cache store persisted to a JSON file.

    The whole file is loaded on first access and written back by ``save()``.

    Examples:
        >>> store = JsonCacheStore.for_destination("s3.amazonaws.com/bucket")
        >>> store.get("index.html") is None
        True
    """

    def __init__(self, cache_file: Path, destination: str = ""):
        """Initialize the store.

        Args:
            cache_file: Path of the JSON file
            destination: Base destination the snapshots belong to
        """
        self.cache_file = cache_file
        self.destination = destination
        self._snapshots: Optional[dict[str, CacheSnapshot]] = None
        self._dirty = False
        self._lock = threading.Lock()

    @staticmethod
    def default_cache_dir() -> Path:
        """Directory holding the cache files (~/.config/pydrop/cache)."""
        return Path.home() / ".config" / "pydrop" / "cache"

    @classmethod
    def for_destination(
        cls, destination: str, cache_dir: Optional[Path] = None
    ) -> "JsonCacheStore":
        """Create a store for a base destination.

        The file name is derived from a hash of the destination so that
        several sites can be deployed from the same machine.

        Args:
            destination: Base destination URL
            cache_dir: Directory for cache files (defaults to default_cache_dir())

        Returns:
            JsonCacheStore instance
        """
        cache_dir = cache_dir or cls.default_cache_dir()
        key = hashlib.sha256(destination.encode("utf-8")).hexdigest()[:16]
        return cls(cache_dir / f"{key}.json", destination=destination)

    def _load(self) -> dict[str, CacheSnapshot]:
        if self._snapshots is not None:
            return self._snapshots

        if not self.cache_file.exists():
            logger.debug(f"No cache found at {self.cache_file}")
            self._snapshots = {}
            return self._snapshots

        try:
            with open(self.cache_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CacheError(f"Failed to load cache {self.cache_file}: {e}") from e

        if data.get("version") != CACHE_FORMAT_VERSION:
            logger.warning(
                f"Ignoring cache {self.cache_file} with unsupported version "
                f"{data.get('version')!r}"
            )
            self._snapshots = {}
            return self._snapshots

        self._snapshots = {
            key: CacheSnapshot.from_dict(value)
            for key, value in data.get("files", {}).items()
        }
        logger.debug(
            f"Loaded {len(self._snapshots)} cache entries from {self.cache_file}"
        )
        return self._snapshots

    def get(self, key: str) -> Optional[CacheSnapshot]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, snapshot: CacheSnapshot) -> None:
        with self._lock:
            self._load()[key] = snapshot
            self._dirty = True

    def delete(self, key: str) -> None:
        with self._lock:
            if self._load().pop(key, None) is not None:
                self._dirty = True

    def save(self) -> None:
        """Write the cache file if anything changed.

        Raises:
            CacheError: If the file cannot be written
        """
        with self._lock:
            if not self._dirty or self._snapshots is None:
                return

            data = {
                "version": CACHE_FORMAT_VERSION,
                "destination": self.destination,
                "saved_at": datetime.now().isoformat(),
                "files": {
                    key: snap.to_dict() for key, snap in sorted(self._snapshots.items())
                },
            }

            try:
                self.cache_file.parent.mkdir(parents=True, exist_ok=True)
                tmp_file = self.cache_file.with_suffix(".tmp")
                with open(tmp_file, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                tmp_file.replace(self.cache_file)
            except OSError as e:
                raise CacheError(f"Failed to save cache {self.cache_file}: {e}") from e

            self._dirty = False
            logger.debug(
                f"Saved {len(self._snapshots)} cache entries to {self.cache_file}"
            )

    def clear(self) -> bool:
        """Remove the cache file.

        Returns:
            True if the file was removed, False if no cache existed
        """
        with self._lock:
            self._snapshots = None
            self._dirty = False
            if self.cache_file.exists():
                self.cache_file.unlink()
                logger.debug(f"Cleared cache at {self.cache_file}")
                return True
            return False
