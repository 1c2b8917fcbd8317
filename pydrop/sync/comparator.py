"""File classification logic for sync operations."""

from dataclasses import dataclass
from typing import Optional

from ..exceptions import InternalError
from ..models import (
    ActionStatus,
    CacheSnapshot,
    File,
    RemoteStatus,
    StatusDetails,
    SyncPolicy,
)

_FACET_REASONS = {
    "content": "content differs",
    "headers": "headers differ",
    "remote": "remote attributes differ",
}


@dataclass
class SyncDecision:
    """Represents the classification of one file."""

    status: ActionStatus
    """Terminal classification"""

    reason: str
    """Human-readable reason for this decision"""

    file: File
    """Classified file"""

    probed: bool = False
    """True if the remote was probed to reach this decision"""

    @property
    def relative_path(self) -> str:
        return self.file.relative

    @property
    def self_copy(self) -> bool:
        """True if the update only concerns metadata."""
        details = self.file.status_details
        return (
            self.status == ActionStatus.UPDATED
            and details is not None
            and details.content == RemoteStatus.SAME
        )


class FileComparator:
    """Decides the ActionStatus of files.

    Cache trust is consulted first. The remote is probed unless the cache
    snapshot matches the fresh fingerprints and no force flag is set.

    Examples:
        >>> comparator = FileComparator(SyncPolicy(), rough=False)
        >>> decision = comparator.compare_cache(file, snapshot)
        >>> if decision is None:
        ...     status, details = client.get_status(file)
        ...     decision = comparator.compare_remote(file, status, details)
    """

    def __init__(self, policy: SyncPolicy, rough: bool = False):
        """Initialize file comparator.

        Args:
            policy: Force and read-only switches of the run
            rough: True if the remote client only reports a combined status
        """
        self.policy = policy
        self.rough = rough

    @property
    def trusts_cache(self) -> bool:
        """False when a force flag requires a fresh remote check."""
        return not (self.policy.force.remote or self.policy.force.cache)

    def compare_cache(
        self, file: File, snapshot: Optional[CacheSnapshot]
    ) -> Optional[SyncDecision]:
        """Compare fresh fingerprints with the recorded cache snapshot.

        Sets ``cache``, ``local_details`` and ``local_status`` on the file.

        Args:
            file: Local file with content loaded
            snapshot: Recorded snapshot (None if absent or not trusted)

        Returns:
            An Unchanged decision if the remote probe can be skipped,
            None otherwise
        """
        if self.policy.force.cache:
            snapshot = None

        file.cache = snapshot
        file.local_details = file.snapshot().compare(snapshot)
        file.local_status = file.local_details.overall()

        if file.local_status == RemoteStatus.SAME and self.trusts_cache:
            file.status = ActionStatus.UNCHANGED
            return SyncDecision(
                status=ActionStatus.UNCHANGED,
                reason="cache fingerprints match",
                file=file,
            )
        return None

    def compare_remote(
        self, file: File, status: RemoteStatus, details: StatusDetails
    ) -> SyncDecision:
        """Classify a file from the result of a remote probe.

        For a rough client the combined status is authoritative for every
        facet, so an update never turns into a metadata-only copy. A rough
        SAME is overridden when the cache shows changed headers or remote
        attributes.

        Args:
            file: Local file
            status: Combined remote status
            details: Per-facet remote status

        Returns:
            Created, Identical or Updated decision
        """
        if self.rough:
            if status == RemoteStatus.SAME and self._metadata_drifted(file):
                # The probe only sees ETag and Content-Type
                status = RemoteStatus.DIFFERENT
            details = StatusDetails.uniform(status)
        file.remote_status = status
        file.status_details = details

        if status == RemoteStatus.MISSING:
            action, reason = ActionStatus.CREATED, "missing remotely"
        elif status == RemoteStatus.SAME:
            action, reason = ActionStatus.IDENTICAL, "identical remotely"
        elif status == RemoteStatus.DIFFERENT:
            action = ActionStatus.UPDATED
            differing = [
                text
                for facet, text in _FACET_REASONS.items()
                if getattr(details, facet) != RemoteStatus.SAME
            ]
            reason = ", ".join(differing) if not self.rough else "differs remotely"
        else:
            raise InternalError(f"Impossible remote status {status!r}")

        file.status = action
        return SyncDecision(status=action, reason=reason, file=file, probed=True)

    @staticmethod
    def _metadata_drifted(file: File) -> bool:
        """True if headers or remote attributes changed since the snapshot."""
        details = file.local_details
        if file.cache is None or details is None:
            return False
        return RemoteStatus.DIFFERENT in (details.headers, details.remote)

    def compare_remote_only(self, file: File) -> SyncDecision:
        """Classify an object found remotely but absent from the local source."""
        file.status = ActionStatus.DELETED
        return SyncDecision(
            status=ActionStatus.DELETED, reason="not in local source", file=file
        )
