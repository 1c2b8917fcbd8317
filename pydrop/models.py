"""Data models flowing through a pydrop run."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .utils import fingerprint, join_url


class ActionStatus(str, Enum):
    """Terminal classification of a file for one run."""

    CREATED = "created"
    """Exists locally, missing remotely: uploaded"""

    UPDATED = "updated"
    """Exists on both sides but differs: re-uploaded or self-copied"""

    DELETED = "deleted"
    """Exists remotely but not in the local source: removed"""

    IDENTICAL = "identical"
    """Probed remotely and found identical"""

    UNCHANGED = "unchanged"
    """Cache fingerprints matched, no remote probe was made"""


class RemoteStatus(str, Enum):
    """Outcome of comparing a file (or one of its facets) to another side."""

    MISSING = "missing"
    SAME = "same"
    DIFFERENT = "different"


# Headers managed by pydrop, in publishing order
HEADER_NAMES = (
    "content-type",
    "cache-control",
    "content-disposition",
    "content-encoding",
    "content-language",
    "expires",
    "location",
)


@dataclass(frozen=True)
class StatusDetails:
    """Per-facet comparison result."""

    content: RemoteStatus
    headers: RemoteStatus
    remote: RemoteStatus

    @classmethod
    def uniform(cls, status: RemoteStatus) -> "StatusDetails":
        """Create details where every facet has the same status."""
        return cls(content=status, headers=status, remote=status)

    @classmethod
    def missing(cls) -> "StatusDetails":
        """Create details for an object that does not exist."""
        return cls.uniform(RemoteStatus.MISSING)

    def overall(self) -> RemoteStatus:
        """Combine the facets into a single status.

        Returns:
            MISSING if any facet is missing, SAME if all facets are the same,
            DIFFERENT otherwise
        """
        facets = (self.content, self.headers, self.remote)
        if RemoteStatus.MISSING in facets:
            return RemoteStatus.MISSING
        if all(f == RemoteStatus.SAME for f in facets):
            return RemoteStatus.SAME
        return RemoteStatus.DIFFERENT

    def to_dict(self) -> dict:
        """Convert to a plain dictionary."""
        return {
            "content": self.content.value,
            "headers": self.headers.value,
            "remote": self.remote.value,
        }


@dataclass(frozen=True)
class CacheSnapshot:
    """Fingerprints of a key as they were at its last successful sync."""

    content: str
    """MD5 of the transferred content"""

    headers: str
    """Fingerprint of the published headers"""

    remote: str
    """Fingerprint of the backend storage attributes"""

    def to_dict(self) -> dict:
        """Convert snapshot to dictionary for JSON serialization."""
        return {"content": self.content, "headers": self.headers, "remote": self.remote}

    @classmethod
    def from_dict(cls, data: dict) -> "CacheSnapshot":
        """Create CacheSnapshot from dictionary."""
        return cls(
            content=data.get("content", ""),
            headers=data.get("headers", ""),
            remote=data.get("remote", ""),
        )

    def compare(self, other: Optional["CacheSnapshot"]) -> StatusDetails:
        """Compare this (fresh) snapshot with a previously recorded one.

        Args:
            other: Recorded snapshot, or None if the key was never synced

        Returns:
            Per-facet comparison
        """
        if other is None:
            return StatusDetails.missing()

        def facet(mine: str, theirs: str) -> RemoteStatus:
            return RemoteStatus.SAME if mine == theirs else RemoteStatus.DIFFERENT

        return StatusDetails(
            content=facet(self.content, other.content),
            headers=facet(self.headers, other.headers),
            remote=facet(self.remote, other.remote),
        )


@dataclass(frozen=True)
class TargetFlags:
    """A boolean per sync target."""

    remote: bool = False
    cache: bool = False

    def __bool__(self) -> bool:
        return self.remote or self.cache


@dataclass(frozen=True)
class SyncPolicy:
    """Force and read-only switches consumed by the engine.

    Read-only always wins: a target flagged read-only is never written,
    whatever the force flags say.
    """

    readonly: TargetFlags = field(default_factory=TargetFlags)
    force: TargetFlags = field(default_factory=TargetFlags)

    @property
    def dry_run(self) -> bool:
        """True when nothing at all is written."""
        return self.readonly.remote and self.readonly.cache


@dataclass
class SourceInfo:
    """Local descriptor of a file."""

    path: Path
    """Absolute path to the file"""

    size: int
    """File size in bytes"""

    gzip: bool = False
    """Compress the content before transfer"""

    def read_bytes(self) -> bytes:
        """Read the raw file content."""
        return self.path.read_bytes()


@dataclass(frozen=True)
class Destination:
    """Target identity of a file. Immutable once computed."""

    base: str
    """Remote root URL"""

    relative: str
    """Path under the root, using forward slashes"""

    absolute: str
    """Joined URL"""

    @classmethod
    def build(cls, base: str, relative: str) -> "Destination":
        """Create a destination, computing the absolute URL."""
        return cls(base=base, relative=relative, absolute=join_url(base, relative))


@dataclass
class Content:
    """Transfer payload of a file."""

    type: str
    """Either "raw" or the name of the compression ("gzip")"""

    size: int
    """Payload size in bytes"""

    md5: str
    """Hex MD5 digest of the payload"""

    data: Optional[bytes] = field(default=None, repr=False)
    """Payload bytes; None for records built from a remote listing"""


@dataclass
class File:
    """The unit of work of a run.

    Local files carry every facet. Files discovered through a remote listing
    only carry ``dest`` and whatever the backend reports in ``content`` and
    ``remote``.
    """

    dest: Destination
    src: Optional[SourceInfo] = None
    content: Optional[Content] = None
    headers: dict[str, str] = field(default_factory=dict)
    remote: dict[str, Any] = field(default_factory=dict)

    cache: Optional[CacheSnapshot] = None
    """Last snapshot recorded by the cache store, if trusted"""

    local_status: Optional[RemoteStatus] = None
    """Fresh fingerprints compared with ``cache``"""

    local_details: Optional[StatusDetails] = None

    remote_status: Optional[RemoteStatus] = None
    """Result of the remote probe, None when no probe was made"""

    status_details: Optional[StatusDetails] = None

    status: Optional[ActionStatus] = None
    """Final classification for this run"""

    error: Optional[Exception] = None
    """Per-file failure, if any"""

    @property
    def relative(self) -> str:
        """Cache and remote key of the file."""
        return self.dest.relative

    @property
    def size(self) -> int:
        """Size of the local source, or of the remote content."""
        if self.src is not None:
            return self.src.size
        if self.content is not None:
            return self.content.size
        return 0

    @property
    def failed(self) -> bool:
        """True if processing this file raised an error."""
        return self.error is not None

    def headers_fingerprint(self) -> str:
        """Fingerprint of the publish-time headers."""
        return fingerprint(self.headers)

    def remote_fingerprint(self) -> str:
        """Fingerprint of the backend storage attributes."""
        return fingerprint(self.remote)

    def snapshot(self) -> CacheSnapshot:
        """Build the snapshot to record once this file is synced.

        Raises:
            ValueError: If the file has no content (remote-only record)
        """
        if self.content is None:
            raise ValueError(f"File has no content: {self.relative}")
        return CacheSnapshot(
            content=self.content.md5,
            headers=self.headers_fingerprint(),
            remote=self.remote_fingerprint(),
        )

    def to_dict(self) -> dict:
        """Convert to a dictionary for verbose dumps and JSON output."""
        return {
            "dest": {
                "base": self.dest.base,
                "relative": self.dest.relative,
                "absolute": self.dest.absolute,
            },
            "src": {"path": str(self.src.path), "size": self.src.size}
            if self.src
            else None,
            "content": {
                "type": self.content.type,
                "size": self.content.size,
                "md5": self.content.md5,
            }
            if self.content
            else None,
            "headers": dict(self.headers),
            "remote": dict(self.remote),
            "cache": self.cache.to_dict() if self.cache else None,
            "local_status": self.local_status.value if self.local_status else None,
            "local_details": self.local_details.to_dict()
            if self.local_details
            else None,
            "remote_status": self.remote_status.value if self.remote_status else None,
            "status_details": self.status_details.to_dict()
            if self.status_details
            else None,
            "status": self.status.value if self.status else None,
            "error": str(self.error) if self.error else None,
        }
