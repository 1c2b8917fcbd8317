"""Run statistics and progress events.

The engine is the only writer of the counters. Every mutation goes through
``ProgressTracker`` under a lock and is followed by a ``RunProgressInfo``
event delivered to the callback injected at construction time.
"""

import copy
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..models import ActionStatus, File


class RunEvent(str, Enum):
    """Events emitted during a run."""

    RUN_START = "run_start"
    FILE_MATCHED = "file_matched"
    FILE_CLASSIFIED = "file_classified"
    FILE_UPLOADED = "file_uploaded"
    FILES_DELETED = "files_deleted"
    FILE_FAILED = "file_failed"
    UPLOAD_DONE = "upload_done"
    DELETE_DONE = "delete_done"
    RUN_COMPLETE = "run_complete"


@dataclass
class MatchStats:
    """Local files matched by the source enumeration."""

    count: int = 0
    size: int = 0
    total: int = 0


@dataclass
class TransferStats:
    """Completed uploads or deletions."""

    count: int = 0
    size: int = 0
    done: bool = False


@dataclass
class ActionStats:
    """Classification counters."""

    creation: int = 0
    update: int = 0
    deletion: int = 0
    unchange: int = 0


@dataclass
class RunStats:
    """Process-wide statistics of one run."""

    match: MatchStats = field(default_factory=MatchStats)
    upload: TransferStats = field(default_factory=TransferStats)
    delete: TransferStats = field(default_factory=TransferStats)
    stat: ActionStats = field(default_factory=ActionStats)
    failed: int = 0
    start_time: float = 0.0
    end_time: Optional[float] = None
    finalized: bool = False

    @property
    def elapsed(self) -> float:
        """Seconds since start, frozen once finalized."""
        end = self.end_time if self.end_time is not None else time.time()
        return max(0.0, end - self.start_time)

    def to_dict(self) -> dict:
        """Convert statistics to a dictionary (for JSON output)."""
        return {
            "match": vars(self.match).copy(),
            "upload": vars(self.upload).copy(),
            "delete": vars(self.delete).copy(),
            "stat": vars(self.stat).copy(),
            "failed": self.failed,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class RunProgressInfo:
    """Payload delivered with every event."""

    event: RunEvent
    stats: RunStats
    """Snapshot of the statistics after the mutation"""

    file: Optional[File] = None
    files: list[File] = field(default_factory=list)


ProgressCallback = Callable[[RunProgressInfo], None]

_STAT_FIELDS = {
    ActionStatus.CREATED: "creation",
    ActionStatus.UPDATED: "update",
    ActionStatus.DELETED: "deletion",
    ActionStatus.IDENTICAL: "unchange",
    ActionStatus.UNCHANGED: "unchange",
}


class ProgressTracker:
    """Owns the run statistics and emits progress events.

    Examples:
        >>> events = []
        >>> tracker = ProgressTracker(callback=events.append)
        >>> tracker.init(total=2)
        >>> tracker.stats.match.total
        2
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        """Initialize the tracker.

        Args:
            callback: Function invoked with a RunProgressInfo on every event
        """
        self.callback = callback
        self._lock = threading.Lock()
        self._stats = RunStats()

    @property
    def stats(self) -> RunStats:
        """Current statistics. Treat as read-only."""
        return self._stats

    def init(self, total: int = 0) -> None:
        """Zero the counters and record the start time.

        Args:
            total: Number of local files that will be matched
        """
        with self._lock:
            self._stats = RunStats(start_time=time.time())
            self._stats.match.total = total
        self._emit(RunEvent.RUN_START)

    def record_match(self, file: File) -> None:
        """Count a local file picked up by the enumeration."""
        with self._lock:
            self._check_open()
            self._stats.match.count += 1
            self._stats.match.size += file.size
        self._emit(RunEvent.FILE_MATCHED, file=file)

    def record_classification(self, file: File) -> None:
        """Count the final classification of a file."""
        if file.status is None:
            return
        with self._lock:
            self._check_open()
            name = _STAT_FIELDS[file.status]
            setattr(self._stats.stat, name, getattr(self._stats.stat, name) + 1)
        self._emit(RunEvent.FILE_CLASSIFIED, file=file)

    def record_upload(self, file: File) -> None:
        """Count a completed upload or self-copy."""
        with self._lock:
            self._check_open()
            self._stats.upload.count += 1
            self._stats.upload.size += file.content.size if file.content else 0
        self._emit(RunEvent.FILE_UPLOADED, file=file)

    def record_deletions(self, files: list[File]) -> None:
        """Count a flushed batch of deletions."""
        if not files:
            return
        with self._lock:
            self._check_open()
            self._stats.delete.count += len(files)
            self._stats.delete.size += sum(f.size for f in files)
        self._emit(RunEvent.FILES_DELETED, files=list(files))

    def record_failure(self, file: File) -> None:
        """Count a per-file failure."""
        with self._lock:
            self._check_open()
            self._stats.failed += 1
        self._emit(RunEvent.FILE_FAILED, file=file)

    def upload_done(self) -> None:
        """Mark the upload phase as complete."""
        with self._lock:
            self._stats.upload.done = True
        self._emit(RunEvent.UPLOAD_DONE)

    def delete_done(self) -> None:
        """Mark the deletion phase as complete."""
        with self._lock:
            self._stats.delete.done = True
        self._emit(RunEvent.DELETE_DONE)

    def finalize(self) -> RunStats:
        """Freeze the counters for reporting.

        Returns:
            The final statistics
        """
        with self._lock:
            if not self._stats.finalized:
                self._stats.end_time = time.time()
                self._stats.finalized = True
        self._emit(RunEvent.RUN_COMPLETE)
        return self._stats

    def _check_open(self) -> None:
        if self._stats.finalized:
            raise RuntimeError("Run statistics are finalized")

    def _emit(
        self,
        event: RunEvent,
        file: Optional[File] = None,
        files: Optional[list[File]] = None,
    ) -> None:
        if self.callback is None:
            return
        with self._lock:
            snapshot = copy.deepcopy(self._stats)
        self.callback(
            RunProgressInfo(event=event, stats=snapshot, file=file, files=files or [])
        )
