"""Core sync engine for executing upload and sync runs."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from ..exceptions import CacheError, RemoteError, SyncCancelledError
from ..models import ActionStatus, CacheSnapshot, File, SyncPolicy
from ..remote.base import STOP_ITERATION, RemoteClient
from ..utils import DEFAULT_WORKERS
from .comparator import FileComparator, SyncDecision
from .progress import ProgressCallback, ProgressTracker, RunStats
from .scanner import load_content
from .state import CacheStore, MemoryCacheStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one run."""

    files: list[File]
    """Local files followed by the remote-only files classified Deleted"""

    stats: RunStats
    """Final statistics"""

    cancelled: bool = False

    decisions: list[SyncDecision] = field(default_factory=list)

    def by_status(self, status: ActionStatus) -> list[File]:
        """Return the successfully processed files with a given status."""
        return [f for f in self.files if f.status == status and not f.failed]

    @property
    def failures(self) -> list[File]:
        """Files whose processing raised an error."""
        return [f for f in self.files if f.failed]


class SyncEngine:
    """Core sync engine that reconciles a local tree with a remote store.

    Per-file work (content fingerprinting, remote probe, upload, cache
    write) runs on a thread pool. In ``sync`` mode the remote listing is
    consumed on the calling thread while the pool is busy, and remote-only
    keys are buffered for deletion.

    Examples:
        >>> engine = SyncEngine(client, cache=store, workers=8)
        >>> result = engine.sync(collect_local_files(options, client))
        >>> print(f"{result.stats.stat.creation} created")
    """

    def __init__(
        self,
        client: RemoteClient,
        cache: Optional[CacheStore] = None,
        policy: Optional[SyncPolicy] = None,
        workers: int = DEFAULT_WORKERS,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Remote client of the destination
            cache: Cache store (in-memory when not given)
            policy: Force and read-only switches
            workers: Number of parallel workers for probes and uploads
            progress_callback: Function receiving every progress event
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self.client = client
        self.cache = cache if cache is not None else MemoryCacheStore()
        self.policy = policy or SyncPolicy()
        self.workers = workers
        self.tracker = ProgressTracker(callback=progress_callback)
        self.comparator = FileComparator(self.policy, rough=client.rough)
        self._cancel_event = threading.Event()
        self._decisions: list[SyncDecision] = []
        self._decisions_lock = threading.Lock()
        self._deleted: list[File] = []

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation of the current run.

        No new file is started and the remote listing stops at the next
        object. Work in flight completes, buffered deletions are flushed.
        """
        if not self.cancelled:
            logger.info("Cancellation requested")
        self._cancel_event.set()

    def upload(self, files: list[File]) -> SyncResult:
        """Upload new and changed local files, never deleting anything.

        Args:
            files: Local files (see ``collect_local_files``)

        Returns:
            SyncResult of the run

        Raises:
            SyncCancelledError: If the run was cancelled
        """
        return self._run(files, with_remote=False)

    def sync(self, files: list[File]) -> SyncResult:
        """Make the remote converge to the local files.

        Like ``upload``, and also deletes remote objects that have no local
        counterpart.

        Raises:
            RemoteError: If the listing or a delete flush fails
            SyncCancelledError: If the run was cancelled
        """
        return self._run(files, with_remote=True)

    # =========================
    # Run
    # =========================

    def _run(self, files: list[File], with_remote: bool) -> SyncResult:
        self._cancel_event.clear()
        self._decisions = []
        self._deleted = []

        self.tracker.init(total=len(files))
        for file in files:
            self.tracker.record_match(file)
        local_keys = {file.relative for file in files}

        logger.debug(
            f"Processing {len(files)} local files with {self.workers} workers "
            f"(remote listing: {with_remote})"
        )

        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = {executor.submit(self._process_file, f): f for f in files}

            if with_remote:
                self._list_remote(local_keys)

            for future in as_completed(futures):
                future.result()
        except KeyboardInterrupt:
            self.cancel()
        except BaseException:
            # Structural failure: stop starting new files, then propagate
            self._cancel_event.set()
            executor.shutdown(wait=True, cancel_futures=True)
            self._save_cache()
            self.tracker.finalize()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=self.cancelled)

        self.tracker.upload_done()

        try:
            if with_remote:
                self._flush_deletes()
        except BaseException:
            self._save_cache()
            self.tracker.finalize()
            raise
        self._save_cache()
        self.tracker.delete_done()

        stats = self.tracker.finalize()

        result = SyncResult(
            files=list(files) + self._deleted,
            stats=stats,
            cancelled=self.cancelled,
            decisions=list(self._decisions),
        )
        if result.cancelled:
            raise SyncCancelledError("Run cancelled", result=result)
        return result

    def _process_file(self, file: File) -> Optional[SyncDecision]:
        """Classify and execute one local file.

        Remote and filesystem errors are recorded on the file.
        """
        if self.cancelled:
            return None

        start = time.time()
        try:
            file.content = load_content(file)
            decision = self.comparator.compare_cache(file, self._read_cache(file))
            if decision is None:
                status, details = self.client.get_status(file)
                decision = self.comparator.compare_remote(file, status, details)
            self._execute(decision)
        except (RemoteError, OSError) as e:
            file.error = e
            logger.debug(f"Failed {file.relative}: {e}")
            self.tracker.record_failure(file)
            return None
        finally:
            # Payload is no longer needed once the file is done
            if file.content is not None:
                file.content.data = None

        with self._decisions_lock:
            self._decisions.append(decision)
        self.tracker.record_classification(file)
        logger.debug(
            f"{file.relative}: {decision.status.value} ({decision.reason}) "
            f"in {time.time() - start:.2f}s"
        )
        return decision

    def _execute(self, decision: SyncDecision) -> None:
        file = decision.file
        if decision.status == ActionStatus.UNCHANGED:
            return

        if decision.status in (ActionStatus.CREATED, ActionStatus.UPDATED):
            if self.policy.readonly.remote:
                logger.debug(f"Read-only remote, not uploading {file.relative}")
            else:
                self.client.upload(file)
                self.tracker.record_upload(file)

        self._write_cache(file.relative, file.snapshot())

    # =========================
    # Remote listing and deletion
    # =========================

    def _list_remote(self, local_keys: set[str]) -> None:
        def iteratee(remote_file: File) -> Optional[bool]:
            if self.cancelled:
                return STOP_ITERATION
            if remote_file.relative in local_keys:
                return None

            decision = self.comparator.compare_remote_only(remote_file)
            with self._decisions_lock:
                self._decisions.append(decision)
            self._deleted.append(remote_file)

            if self.policy.readonly.remote:
                self.tracker.record_classification(remote_file)
                return None

            flushed = self.client.push_delete(remote_file)
            if flushed:
                self._finish_deletes(flushed)
            return None

        try:
            self.client.list(iteratee)
        except KeyboardInterrupt:
            self.cancel()

    def _flush_deletes(self) -> None:
        if self.policy.readonly.remote:
            return
        flushed = self.client.flush_delete()
        if flushed:
            self._finish_deletes(flushed)

    def _finish_deletes(self, files: list[File]) -> None:
        """Account for a batch of files deleted remotely."""
        for file in files:
            if not self.policy.readonly.cache:
                try:
                    self.cache.delete(file.relative)
                except CacheError as e:
                    logger.warning(f"Cache delete failed for {file.relative}: {e}")
            self.tracker.record_classification(file)
        self.tracker.record_deletions(files)
        logger.debug(f"Deleted {len(files)} remote files")

    # =========================
    # Cache
    # =========================

    def _read_cache(self, file: File) -> Optional[CacheSnapshot]:
        if self.policy.force.cache:
            return None
        try:
            return self.cache.get(file.relative)
        except CacheError as e:
            logger.warning(f"Cache read failed for {file.relative}: {e}")
            return None

    def _write_cache(self, key: str, snapshot: CacheSnapshot) -> None:
        if self.policy.readonly.cache:
            return
        try:
            self.cache.set(key, snapshot)
        except CacheError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def _save_cache(self) -> None:
        if self.policy.readonly.cache:
            return
        try:
            self.cache.save()
        except CacheError as e:
            logger.warning(f"Failed to save cache: {e}")
