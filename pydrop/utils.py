"""Utility functions for pydrop."""

import hashlib
import json
from typing import Any, Optional

# =============================================================================
# Constants
# =============================================================================

# Maximum number of keys accepted by one batched delete request
DEFAULT_DELETE_BATCH_SIZE: int = 1000

# Number of parallel workers for probes and uploads
DEFAULT_WORKERS: int = 4

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Request timeout
DEFAULT_TIMEOUT: float = 30.0  # seconds


# =============================================================================
# URL utilities
# =============================================================================


def join_url(*parts: Optional[str]) -> str:
    """Join URL or path fragments with single slashes.

    Empty and ``None`` fragments are skipped. A scheme prefix such as
    ``https://`` on the first fragment is preserved.

    Args:
        *parts: URL fragments

    Returns:
        Joined URL

    Examples:
        >>> join_url("s3.amazonaws.com", "bucket", "site/")
        's3.amazonaws.com/bucket/site'
        >>> join_url("https://dav.example.com/", "/files", "a.txt")
        'https://dav.example.com/files/a.txt'
    """
    fragments = [p for p in parts if p]
    if not fragments:
        return ""

    first = fragments[0]
    scheme = ""
    if "://" in first:
        scheme, first = first.split("://", 1)
        scheme += "://"

    cleaned = [first.strip("/")] + [p.strip("/") for p in fragments[1:]]
    return scheme + "/".join(p for p in cleaned if p)


# =============================================================================
# Hash calculation utilities
# =============================================================================


def md5_hex(data: bytes) -> str:
    """Calculate the hex MD5 digest of a byte string.

    Args:
        data: Bytes to hash

    Returns:
        32 character lowercase hex digest
    """
    return hashlib.md5(data).hexdigest()


def fingerprint(value: Any) -> str:
    """Calculate a stable MD5 fingerprint of a JSON-serializable value.

    Keys are sorted so that two mappings holding the same items always
    produce the same fingerprint regardless of insertion order.

    Args:
        value: JSON-serializable value (usually a dict)

    Returns:
        Hex MD5 digest of the canonical JSON encoding
    """
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return md5_hex(canonical.encode("utf-8"))


def etag_to_md5(etag: Optional[str]) -> Optional[str]:
    """Convert an HTTP/S3 ETag to a plain MD5 hex digest.

    Args:
        etag: ETag header value, possibly quoted or weak (``W/"..."``)

    Returns:
        Lowercase digest, or None when the ETag is empty
    """
    if not etag:
        return None
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"').lower()


# =============================================================================
# Formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


def format_duration(seconds: float) -> str:
    """Format an elapsed duration in human-readable format.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration (e.g., "850 ms", "12 seconds", "3 minutes, 4 seconds")
    """
    if seconds < 1:
        return f"{int(round(seconds * 1000))} ms"

    total = int(round(seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)

    parts = []
    if hours:
        parts.append(f"{hours} hour{plural(hours)}")
    if minutes:
        parts.append(f"{minutes} minute{plural(minutes)}")
    if secs or not parts:
        parts.append(f"{secs} second{plural(secs)}")
    return ", ".join(parts)


def plural(value: int) -> str:
    """Return the plural suffix for a count."""
    return "" if value == 1 else "s"


def progress_percent(count: int, total: int) -> int:
    """Return completion percentage, 100 when there is nothing to do."""
    if total <= 0:
        return 100
    return min(100, int(count * 100 / total))
