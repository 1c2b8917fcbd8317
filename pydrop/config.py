"""Configuration loading and option normalization.

Options come from up to five layers, folded in increasing priority:

1. built-in defaults
2. the JSON configuration file (``.pydrop.json`` by default)
3. the ``env[<key>]`` block of that file, selected with ``--env`` or ``PYDROP_ENV``
4. command line overrides (plugins, read-only, force, workers)
5. ``--dry-run``, which makes both targets read-only

Example ``.pydrop.json``::

    {
        "plugins": ["s3"],
        "baseDir": "build",
        "remote": {"bucket": "my-site", "basePath": "www"},
        "ignore": ["*.map"],
        "each": [
            {"match": "*.html", "headers": {"cache-control": "max-age=60"}, "gzip": true},
            {"match": "assets/**", "headers": {"cache-control": "max-age=31536000"}}
        ],
        "env": {
            "staging": {"remote": {"bucket": "my-site-staging"}}
        }
    }
"""

import copy
import fnmatch
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigurationError
from .models import HEADER_NAMES, SyncPolicy, TargetFlags
from .utils import DEFAULT_WORKERS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".pydrop.json"

ENV_VAR = "PYDROP_ENV"

TARGET_NAMES = ("remote", "cache", "both")

DEFAULT_OPTIONS: dict[str, Any] = {
    "plugins": [],
    "baseDir": ".",
    "remote": {},
    "each": [],
    "ignore": [],
    "excludeDotFiles": False,
    "cacheFile": None,
    "workers": DEFAULT_WORKERS,
    "readOnly": False,
    "force": False,
}

KNOWN_KEYS = set(DEFAULT_OPTIONS) | {"env"}


def deep_merge(target: dict, source: dict) -> dict:
    """Deep merge two dictionaries, ``source`` winning on conflicts."""
    result = target.copy()
    for key, value in source.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def parse_target_flags(value: Any, option: str) -> TargetFlags:
    """Normalize a force/read-only option value.

    Accepted values are a boolean (``True`` means both targets), one of
    ``remote``, ``cache`` or ``both`` (optionally comma separated), a list
    of those names, or a ``{"remote": bool, "cache": bool}`` mapping.

    Args:
        value: Raw option value
        option: Option name, used in error messages

    Returns:
        TargetFlags instance

    Raises:
        ConfigurationError: If the value is not recognized

    Examples:
        >>> parse_target_flags("both", "force")
        TargetFlags(remote=True, cache=True)
        >>> parse_target_flags("cache", "readOnly")
        TargetFlags(remote=False, cache=True)
    """
    if value is None or value is False:
        return TargetFlags()
    if value is True:
        return TargetFlags(remote=True, cache=True)

    if isinstance(value, dict):
        unknown = sorted(set(value) - {"remote", "cache"})
        if unknown:
            raise ConfigurationError(
                f"Invalid {option} target(s): {', '.join(unknown)} "
                f"(expected one of {', '.join(TARGET_NAMES)})"
            )
        return TargetFlags(
            remote=bool(value.get("remote")), cache=bool(value.get("cache"))
        )

    if isinstance(value, str):
        names = [v.strip() for v in value.split(",") if v.strip()]
    elif isinstance(value, (list, tuple)):
        names = list(value)
    else:
        raise ConfigurationError(f"Invalid {option} value: {value!r}")

    remote = cache = False
    for name in names:
        if name not in TARGET_NAMES:
            raise ConfigurationError(
                f"Invalid {option} target {name!r} "
                f"(expected one of {', '.join(TARGET_NAMES)})"
            )
        remote = remote or name in ("remote", "both")
        cache = cache or name in ("cache", "both")
    if not names:
        # A bare flag asserts both targets
        remote = cache = True
    return TargetFlags(remote=remote, cache=cache)


def match_pattern(pattern: str, relative: str) -> bool:
    """Match a glob against a relative path.

    Patterns without a slash also match the file name alone, like
    gitignore patterns do.
    """
    if fnmatch.fnmatchcase(relative, pattern):
        return True
    if "/" not in pattern:
        return fnmatch.fnmatchcase(relative.rsplit("/", 1)[-1], pattern)
    return False


@dataclass(frozen=True)
class FileRule:
    """Per-file settings applied to files matching a glob."""

    match: tuple[str, ...]
    """Glob patterns, relative to the base directory"""

    headers: dict[str, str] = field(default_factory=dict)
    """Headers published with matching files"""

    remote: dict[str, Any] = field(default_factory=dict)
    """Backend storage attributes (validated by the remote client)"""

    gzip: Optional[bool] = None
    """Compress content before transfer; None leaves earlier rules in effect"""

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "FileRule":
        """Create a rule from one entry of the ``each`` option.

        Raises:
            ConfigurationError: If the entry is malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"each[{index}] must be an object")

        unknown = sorted(set(data) - {"match", "headers", "remote", "gzip"})
        if unknown:
            raise ConfigurationError(
                f"Unknown key(s) in each[{index}]: {', '.join(unknown)}"
            )

        match = data.get("match")
        if isinstance(match, str):
            match = [match]
        if not match or not all(isinstance(m, str) for m in match):
            raise ConfigurationError(f"each[{index}] requires a 'match' glob")

        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise ConfigurationError(f"each[{index}].headers must be an object")
        normalized_headers = {}
        for name, value in headers.items():
            key = name.lower()
            if key not in HEADER_NAMES:
                raise ConfigurationError(
                    f"Unsupported header {name!r} in each[{index}] "
                    f"(expected one of {', '.join(HEADER_NAMES)})"
                )
            normalized_headers[key] = str(value)

        remote = data.get("remote") or {}
        if not isinstance(remote, dict):
            raise ConfigurationError(f"each[{index}].remote must be an object")

        gzip = data.get("gzip")
        if gzip is not None and not isinstance(gzip, bool):
            raise ConfigurationError(f"each[{index}].gzip must be a boolean")

        return cls(
            match=tuple(match), headers=normalized_headers, remote=remote, gzip=gzip
        )

    def matches(self, relative: str) -> bool:
        """Check if the rule applies to a relative path."""
        return any(match_pattern(pattern, relative) for pattern in self.match)


@dataclass(frozen=True)
class Options:
    """Normalized options of one run."""

    plugins: tuple[str, ...]
    policy: SyncPolicy
    base_dir: Path
    remote: dict[str, Any] = field(default_factory=dict)
    each: tuple[FileRule, ...] = ()
    ignore: tuple[str, ...] = ()
    exclude_dot_files: bool = False
    cache_file: Optional[Path] = None
    workers: int = DEFAULT_WORKERS
    env: Optional[str] = None

    def is_ignored(self, relative: str) -> bool:
        """Check if a relative path matches an ignore pattern."""
        return any(match_pattern(pattern, relative) for pattern in self.ignore)

    def rules_for(self, relative: str) -> list[FileRule]:
        """Return the rules applying to a path, in declaration order."""
        return [rule for rule in self.each if rule.matches(relative)]


def load_config_file(path: Path, required: bool = False) -> dict[str, Any]:
    """Load a JSON configuration file.

    Args:
        path: Path to the file
        required: Raise if the file does not exist

    Returns:
        Parsed configuration, empty if the file is missing and not required

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    if not path.exists():
        if required:
            raise ConfigurationError(f"Configuration file not found: {path}")
        logger.debug(f"No configuration file at {path}")
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    logger.debug(f"Loaded configuration from {path}")
    return data


def _parse_plugins(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"Invalid plugins value: {value!r}")
    plugins = tuple(str(p).strip() for p in value if str(p).strip())
    if not plugins:
        raise ConfigurationError(
            "No plugins configured. Set 'plugins' in the configuration file "
            "or use --plugins."
        )
    return plugins


def _parse_string_list(value: Any, option: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"'{option}' must be a list of strings")
    return tuple(value)


def normalize_options(
    merged: dict[str, Any], root: Path, env: Optional[str] = None
) -> Options:
    """Validate a merged option mapping and build Options.

    Args:
        merged: Result of folding every layer
        root: Directory relative paths are resolved against
        env: Selected environment key

    Returns:
        Options instance

    Raises:
        ConfigurationError: If any option is invalid
    """
    unknown = sorted(set(merged) - KNOWN_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown option(s): {', '.join(unknown)}")

    plugins = _parse_plugins(merged.get("plugins"))
    policy = SyncPolicy(
        readonly=parse_target_flags(merged.get("readOnly"), "read-only"),
        force=parse_target_flags(merged.get("force"), "force"),
    )

    remote = merged.get("remote") or {}
    if not isinstance(remote, dict):
        raise ConfigurationError("'remote' must be an object")

    each = merged.get("each") or []
    if not isinstance(each, list):
        raise ConfigurationError("'each' must be a list of rules")
    rules = tuple(FileRule.from_dict(rule, i) for i, rule in enumerate(each))

    workers = merged.get("workers", DEFAULT_WORKERS)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ConfigurationError(f"'workers' must be a positive integer: {workers!r}")

    cache_file = merged.get("cacheFile")

    return Options(
        plugins=plugins,
        policy=policy,
        base_dir=(root / str(merged.get("baseDir") or ".")).resolve(),
        remote=copy.deepcopy(remote),
        each=rules,
        ignore=_parse_string_list(merged.get("ignore"), "ignore"),
        exclude_dot_files=bool(merged.get("excludeDotFiles")),
        cache_file=(root / cache_file).resolve() if cache_file else None,
        workers=workers,
        env=env,
    )


def load_options(
    config_file: Optional[Path] = None,
    env: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None,
    dry_run: bool = False,
    cwd: Optional[Path] = None,
) -> Options:
    """Fold every option layer into one immutable Options value.

    Args:
        config_file: Explicit configuration file (must exist when given)
        env: Environment key (defaults to the PYDROP_ENV variable)
        overrides: Command line overrides; None values are ignored
        dry_run: Make both remote and cache read-only
        cwd: Working directory (defaults to the process working directory)

    Returns:
        Options instance

    Raises:
        ConfigurationError: If the configuration is invalid

    Examples:
        >>> options = load_options(overrides={"plugins": "s3", "force": "remote"})
        >>> options.policy.force
        TargetFlags(remote=True, cache=False)
    """
    cwd = cwd or Path.cwd()
    path = config_file if config_file is not None else cwd / DEFAULT_CONFIG_FILE
    file_layer = load_config_file(path, required=config_file is not None)
    root = path.parent.resolve() if file_layer else cwd

    env_blocks = file_layer.pop("env", None) or {}
    if not isinstance(env_blocks, dict):
        raise ConfigurationError("'env' must be an object keyed by environment name")

    layers: list[dict[str, Any]] = [copy.deepcopy(DEFAULT_OPTIONS), file_layer]

    env = env or os.environ.get(ENV_VAR) or None
    if env is not None:
        if env not in env_blocks:
            known = ", ".join(sorted(env_blocks)) or "none defined"
            raise ConfigurationError(f"Unknown environment {env!r} ({known})")
        if not isinstance(env_blocks[env], dict):
            raise ConfigurationError(f"env.{env} must be an object")
        layers.append(env_blocks[env])
        logger.debug(f"Using environment {env}")

    if overrides:
        layers.append({k: v for k, v in overrides.items() if v is not None})
    if dry_run:
        layers.append({"readOnly": "both"})

    merged: dict[str, Any] = {}
    for layer in layers:
        merged = deep_merge(merged, layer)

    return normalize_options(merged, root, env=env)
