"""Local source enumeration and File construction."""

import gzip
import logging
import mimetypes
from pathlib import Path
from typing import Callable, Optional

from ..config import DEFAULT_CONFIG_FILE, Options, match_pattern
from ..exceptions import ConfigurationError
from ..models import HEADER_NAMES, Content, Destination, File, SourceInfo
from ..remote.base import RemoteClient
from ..utils import md5_hex

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class DirectoryScanner:
    """Scans the base directory and lists the files to deploy.

    Examples:
        >>> scanner = DirectoryScanner(ignore_patterns=["*.map"])
        >>> files = scanner.scan_local(Path("build"))
    """

    def __init__(
        self,
        ignore_patterns: Optional[list[str]] = None,
        exclude_dot_files: bool = False,
        ignore_fn: Optional[Callable[[str], bool]] = None,
    ):
        """Initialize directory scanner.

        Args:
            ignore_patterns: Glob patterns to ignore (e.g., ["*.log", "temp/*"])
            exclude_dot_files: Whether to exclude files/folders starting with dot
            ignore_fn: Predicate on relative paths, overrides ignore_patterns
        """
        self.ignore_patterns = ignore_patterns or []
        self.exclude_dot_files = exclude_dot_files
        self._ignore_fn = ignore_fn

    def should_ignore(self, relative_path: str, name: str) -> bool:
        """Check if a path should be ignored.

        Args:
            relative_path: Path relative to the scanned directory
            name: Last path component

        Returns:
            True if path should be ignored
        """
        if name == DEFAULT_CONFIG_FILE:
            return True
        if self.exclude_dot_files and name.startswith("."):
            return True
        if self._ignore_fn is not None:
            ignored = self._ignore_fn(relative_path)
        else:
            ignored = any(
                match_pattern(pattern, relative_path)
                for pattern in self.ignore_patterns
            )
        if ignored:
            logger.debug(f"Ignoring: {relative_path}")
        return ignored

    def scan_local(self, directory: Path) -> list[tuple[str, SourceInfo]]:
        """Recursively scan a local directory.

        Args:
            directory: Directory to scan

        Returns:
            (relative path, SourceInfo) tuples sorted by relative path

        Raises:
            ConfigurationError: If the directory does not exist
        """
        if not directory.is_dir():
            raise ConfigurationError(f"Base directory not found: {directory}")

        files: list[tuple[str, SourceInfo]] = []
        self._scan(directory, directory, files)
        files.sort(key=lambda item: item[0])
        return files

    def _scan(
        self, directory: Path, base_path: Path, files: list[tuple[str, SourceInfo]]
    ) -> None:
        try:
            entries = sorted(directory.iterdir())
        except PermissionError:
            logger.warning(f"Skipping unreadable directory: {directory}")
            return

        for item in entries:
            # Use as_posix() to ensure forward slashes on all platforms
            relative = item.relative_to(base_path).as_posix()
            if self.should_ignore(relative, item.name):
                continue
            if item.is_dir():
                self._scan(item, base_path, files)
            elif item.is_file():
                try:
                    size = item.stat().st_size
                except OSError as e:
                    logger.warning(f"Skipping {relative}: {e}")
                    continue
                files.append((relative, SourceInfo(path=item, size=size)))


class FileBuilder:
    """Turns local sources into Files, applying the ``each`` rules.

    Building a File makes no I/O besides ``stat``: content is read later,
    by the worker processing the file, through ``load_content``.
    """

    def __init__(self, options: Options, client: RemoteClient):
        self.options = options
        self.client = client
        self.base_destination = client.get_base_destination()

    def build(self, relative: str, src: SourceInfo) -> File:
        """Create the File for a local source.

        Args:
            relative: Path relative to the base directory
            src: Local descriptor

        Returns:
            File with dest, src, headers and remote set

        Raises:
            ConfigurationError: If the remote options of a rule are invalid
        """
        headers: dict[str, str] = {}
        remote_options: dict = {}
        use_gzip = False
        for rule in self.options.rules_for(relative):
            headers.update(rule.headers)
            remote_options.update(rule.remote)
            if rule.gzip is not None:
                use_gzip = rule.gzip

        if "content-type" not in headers:
            guessed, _ = mimetypes.guess_type(relative)
            headers["content-type"] = guessed or DEFAULT_CONTENT_TYPE
        if use_gzip:
            headers["content-encoding"] = "gzip"

        try:
            remote = self.client.normalize_file_remote_options(remote_options)
        except ConfigurationError as e:
            raise ConfigurationError(f"{relative}: {e}") from e

        return File(
            dest=Destination.build(self.base_destination, relative),
            src=SourceInfo(path=src.path, size=src.size, gzip=use_gzip),
            headers={name: headers[name] for name in HEADER_NAMES if name in headers},
            remote=remote,
        )


def load_content(file: File) -> Content:
    """Read (and compress if configured) the content of a local file.

    Gzip output is produced with a zero mtime so that the same input always
    yields the same fingerprint.

    Raises:
        OSError: If the file cannot be read
    """
    if file.src is None:
        raise ValueError(f"File has no local source: {file.relative}")

    data = file.src.read_bytes()
    content_type = "raw"
    if file.src.gzip:
        data = gzip.compress(data, mtime=0)
        content_type = "gzip"
    return Content(type=content_type, size=len(data), md5=md5_hex(data), data=data)


def collect_local_files(options: Options, client: RemoteClient) -> list[File]:
    """Enumerate the base directory and build every local File.

    Raises:
        ConfigurationError: If the base directory or a rule is invalid
    """
    scanner = DirectoryScanner(
        exclude_dot_files=options.exclude_dot_files, ignore_fn=options.is_ignored
    )
    builder = FileBuilder(options, client)
    files = [
        builder.build(relative, src)
        for relative, src in scanner.scan_local(options.base_dir)
    ]
    logger.debug(f"Found {len(files)} local files in {options.base_dir}")
    return files
