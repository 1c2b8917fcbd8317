"""pydrop - deploy a local directory tree to a remote object store."""

from .config import FileRule, Options, load_options
from .exceptions import (
    CacheError,
    ConfigurationError,
    InternalError,
    PydropError,
    RemoteAuthenticationError,
    RemoteError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemotePermissionError,
    RemoteRateLimitError,
    SyncCancelledError,
)
from .models import ActionStatus, File, RemoteStatus, SyncPolicy, TargetFlags

__all__ = [
    "ActionStatus",
    "File",
    "FileRule",
    "Options",
    "RemoteStatus",
    "SyncPolicy",
    "TargetFlags",
    "load_options",
    "CacheError",
    "ConfigurationError",
    "InternalError",
    "PydropError",
    "RemoteAuthenticationError",
    "RemoteError",
    "RemoteNetworkError",
    "RemoteNotFoundError",
    "RemotePermissionError",
    "RemoteRateLimitError",
    "SyncCancelledError",
]
