"""Remote backends and plugin lookup."""

import importlib
import logging

from ..config import Options
from ..exceptions import ConfigurationError
from .base import STOP_ITERATION, DeleteBuffer, RemoteClient

logger = logging.getLogger(__name__)

BUILTIN_BACKENDS = {
    "s3": "pydrop.remote.s3:S3RemoteClient",
    "webdav": "pydrop.remote.webdav:WebDavRemoteClient",
}


def get_backend_class(name: str) -> type[RemoteClient]:
    """Resolve a plugin name to a RemoteClient subclass.

    Args:
        name: Built-in backend name (``s3``, ``webdav``) or a
            ``package.module:ClassName`` path

    Returns:
        RemoteClient subclass

    Raises:
        ConfigurationError: If the plugin cannot be found

    Examples:
        >>> get_backend_class("s3").__name__
        'S3RemoteClient'
    """
    target = BUILTIN_BACKENDS.get(name, name)
    if ":" not in target:
        raise ConfigurationError(
            f"Unknown plugin {name!r} (expected one of "
            f"{', '.join(BUILTIN_BACKENDS)} or module:Class)"
        )

    module_name, class_name = target.split(":", 1)
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import plugin {name!r}: {e}") from e

    cls = getattr(module, class_name, None)
    if not isinstance(cls, type) or not issubclass(cls, RemoteClient):
        raise ConfigurationError(f"Plugin {name!r} is not a RemoteClient")
    return cls


def create_remote_client(options: Options) -> RemoteClient:
    """Instantiate the backend selected by ``options.plugins``.

    Raises:
        ConfigurationError: If no single backend is selected or its options
            are invalid
    """
    if len(options.plugins) != 1:
        raise ConfigurationError(
            f"Exactly one backend plugin is required, got: {', '.join(options.plugins)}"
        )

    cls = get_backend_class(options.plugins[0])
    logger.debug(f"Using backend {cls.__name__}")
    try:
        return cls.from_options(dict(options.remote))
    except TypeError as e:
        raise ConfigurationError(f"Invalid remote options: {e}") from e


__all__ = [
    "BUILTIN_BACKENDS",
    "STOP_ITERATION",
    "DeleteBuffer",
    "RemoteClient",
    "create_remote_client",
    "get_backend_class",
]
