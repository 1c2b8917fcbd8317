"""Exceptions raised by pydrop."""

from typing import Any, Optional


class PydropError(Exception):
    """Base exception for all pydrop errors."""


class ConfigurationError(PydropError):
    """Invalid configuration, options or policy.

    Always fatal: raised before any remote or cache I/O takes place.
    """


class RemoteError(PydropError):
    """A remote backend call failed.

    Wraps the backend's native exception, available as ``cause``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class RemoteNetworkError(RemoteError):
    """Transport level failure (connection refused, timeout, ...)."""


class RemoteNotFoundError(RemoteError):
    """The remote object does not exist."""


class RemoteAuthenticationError(RemoteError):
    """Credentials were rejected by the backend."""


class RemotePermissionError(RemoteError):
    """The backend refused the operation."""


class RemoteRateLimitError(RemoteError):
    """The backend asked us to slow down."""


class CacheError(PydropError):
    """The cache store could not be read or written."""


class InternalError(PydropError):
    """An invariant was broken; indicates a programming defect."""


class SyncCancelledError(PydropError):
    """The run was cancelled before every file was processed.

    The partial result of the run is available as ``result``.
    """

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result
