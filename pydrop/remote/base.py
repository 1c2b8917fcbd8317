"""Capability contract every remote backend satisfies."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ..models import File, RemoteStatus, StatusDetails
from ..utils import DEFAULT_DELETE_BATCH_SIZE

logger = logging.getLogger(__name__)

# Returned by a list() iteratee to stop the listing
STOP_ITERATION = False

ListIteratee = Callable[[File], Optional[bool]]


class DeleteBuffer:
    """Bounded FIFO buffer of deletion candidates.

    Pushing the ``limit``-th file flushes the buffer through ``flush_fn``
    and hands the flushed files back to the caller. A flush empties the
    whole buffer in batches of at most ``limit`` files. Each batch is
    removed only once ``flush_fn`` returned, so a failed flush keeps its
    files.

    Examples:
        >>> deleted = []
        >>> buffer = DeleteBuffer(limit=2, flush_fn=deleted.extend)
        >>> buffer.push("a") is None
        True
        >>> buffer.push("b")
        ['a', 'b']
        >>> len(buffer)
        0
    """

    def __init__(self, limit: int, flush_fn: Callable[[list[Any]], Any]):
        """Initialize the buffer.

        Args:
            limit: Number of files that triggers an automatic flush
            flush_fn: Function deleting a batch of files remotely
        """
        if limit < 1:
            raise ValueError(f"Delete batch size must be at least 1, got {limit}")
        self.limit = limit
        self._flush_fn = flush_fn
        self._items: list[Any] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: Any) -> Optional[list[Any]]:
        """Buffer a deletion candidate.

        Args:
            item: File to delete

        Returns:
            The flushed batch if the limit was reached, None otherwise
        """
        with self._lock:
            self._items.append(item)
            if len(self._items) < self.limit:
                return None
            return self._flush_locked()

    def flush(self) -> Optional[list[Any]]:
        """Delete every buffered file.

        Returns:
            The flushed batch, or None if the buffer was empty
        """
        with self._lock:
            return self._flush_locked()

    def _flush_locked(self) -> Optional[list[Any]]:
        if not self._items:
            return None
        flushed: list[Any] = []
        while self._items:
            batch = self._items[: self.limit]
            self._flush_fn(batch)
            del self._items[: len(batch)]
            flushed.extend(batch)
        return flushed


class RemoteClient(ABC):
    """Abstraction over one storage backend.

    Subclasses implement the probe/transfer/list primitives; deletion
    buffering is shared and relies on ``_delete_batch``.
    """

    rough: bool = False
    """True when the backend can only tell "same" or "different" for a
    file as a whole, without separate content/headers/remote facets."""

    def __init__(self, delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE):
        """Initialize the client.

        Args:
            delete_batch_size: Files per batched delete request
        """
        self._delete_buffer = DeleteBuffer(
            delete_batch_size, lambda files: self._delete_batch(files)
        )

    @classmethod
    def from_options(cls, options: dict[str, Any]) -> "RemoteClient":
        """Create a client from the ``remote`` section of the configuration.

        Backends with camelCase configuration keys override this.
        """
        return cls(**options)

    @abstractmethod
    def get_base_destination(self) -> str:
        """Return the root URL under which every destination is joined.

        Note: This method doesn't make any request to the remote host.
        """

    @abstractmethod
    def get_status(self, file: File) -> tuple[RemoteStatus, StatusDetails]:
        """Probe a file remotely without fetching its content.

        Args:
            file: Local file to compare

        Returns:
            Tuple of (overall status, per-facet details). A missing object
            yields (MISSING, all facets MISSING).

        Raises:
            RemoteError: On any backend failure other than "not found"
        """

    @abstractmethod
    def upload(self, file: File) -> None:
        """Write content, headers and remote attributes of a file.

        When ``file.status_details.content`` is SAME the body is not
        transferred again: the object is copied onto itself with the new
        metadata.

        Raises:
            RemoteError: If the upload fails
        """

    @abstractmethod
    def list(self, iteratee: ListIteratee) -> None:
        """Enumerate every remote object under the root.

        Pages are fetched transparently. ``iteratee`` receives one File per
        object; returning ``False`` stops the listing, no further page is
        requested.

        Raises:
            RemoteError: If a page cannot be fetched
        """

    @abstractmethod
    def _delete_batch(self, files: list[File]) -> None:
        """Delete a batch of files in one request (or as few as possible)."""

    @abstractmethod
    def normalize_file_remote_options(self, options: Optional[dict]) -> dict:
        """Validate per-file remote attributes and fill defaults.

        Note: This method doesn't make any request to the remote host.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """

    def push_delete(self, file: File) -> Optional[list[File]]:
        """Buffer a file for deletion.

        Args:
            file: File to delete remotely

        Returns:
            Files deleted by an automatic flush, or None
        """
        return self._delete_buffer.push(file)

    def flush_delete(self) -> Optional[list[File]]:
        """Delete every buffered file, one request per batch.

        Returns:
            Files that have been deleted, or None if nothing was buffered
        """
        return self._delete_buffer.flush()

    @property
    def pending_deletes(self) -> int:
        """Number of buffered deletion candidates."""
        return len(self._delete_buffer)

    def close(self) -> None:
        """Release connections held by the client."""

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
