"""Sync engine for pydrop - reconciliation of a local tree with a remote store."""

from .comparator import FileComparator, SyncDecision
from .engine import SyncEngine, SyncResult
from .progress import (
    ProgressTracker,
    RunEvent,
    RunProgressInfo,
    RunStats,
)
from .scanner import DirectoryScanner, FileBuilder, collect_local_files, load_content
from .state import CacheStore, JsonCacheStore, MemoryCacheStore

__all__ = [
    "SyncEngine",
    "SyncResult",
    "FileComparator",
    "SyncDecision",
    "ProgressTracker",
    "RunEvent",
    "RunProgressInfo",
    "RunStats",
    "DirectoryScanner",
    "FileBuilder",
    "collect_local_files",
    "load_content",
    "CacheStore",
    "JsonCacheStore",
    "MemoryCacheStore",
]
