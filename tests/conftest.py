"""Shared fixtures: an in-memory remote backend and local tree helpers."""

from __future__ import annotations

import mimetypes
import tempfile
import threading
from pathlib import Path
from typing import Optional

import pytest

from pydrop.config import FileRule, Options
from pydrop.exceptions import ConfigurationError, RemoteError
from pydrop.models import (
    Content,
    Destination,
    File,
    RemoteStatus,
    StatusDetails,
    SyncPolicy,
)
from pydrop.remote.base import RemoteClient
from pydrop.sync.scanner import collect_local_files
from pydrop.utils import md5_hex

BASE = "fake://bucket/site"


class FakeRemoteClient(RemoteClient):
    """Remote client keeping objects in a dict and recording every call."""

    def __init__(
        self,
        rough: bool = False,
        page_size: int = 1000,
        delete_batch_size: int = 1000,
    ):
        super().__init__(delete_batch_size=delete_batch_size)
        self.rough = rough
        self.page_size = page_size
        self.objects: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_status: set[str] = set()
        self.fail_upload: set[str] = set()
        self.fail_list = False
        self.deleted_batches: list[list[str]] = []
        self._lock = threading.Lock()

    def put_object(
        self,
        relative: str,
        data: bytes,
        headers: Optional[dict] = None,
        remote: Optional[dict] = None,
    ) -> None:
        """Store an object as if it had been deployed earlier."""
        self.objects[relative] = {
            "md5": md5_hex(data),
            "size": len(data),
            "headers": dict(headers or {}),
            "remote": dict(remote or {}),
        }

    def put_deployed(self, relative: str, data: bytes) -> None:
        """Store an object as pydrop would have deployed it with no rules."""
        content_type = mimetypes.guess_type(relative)[0] or "application/octet-stream"
        self.put_object(
            relative,
            data,
            headers={"content-type": content_type},
            remote={"acl": "private"},
        )

    @property
    def write_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("put", "copy", "delete")]

    def get_base_destination(self) -> str:
        return BASE

    def get_status(self, file: File) -> tuple[RemoteStatus, StatusDetails]:
        self.calls.append(("status", file.relative))
        if file.relative in self.fail_status:
            raise RemoteError(f"probe failed for {file.relative}")

        obj = self.objects.get(file.relative)
        if obj is None:
            return RemoteStatus.MISSING, StatusDetails.missing()

        def status(same: bool) -> RemoteStatus:
            return RemoteStatus.SAME if same else RemoteStatus.DIFFERENT

        details = StatusDetails(
            content=status(file.content is not None and obj["md5"] == file.content.md5),
            headers=status(obj["headers"] == file.headers),
            remote=status(obj["remote"] == file.remote),
        )
        overall = details.overall()
        if self.rough:
            return overall, StatusDetails.uniform(overall)
        return overall, details

    def upload(self, file: File) -> None:
        if file.relative in self.fail_upload:
            self.calls.append(("upload-failed", file.relative))
            raise RemoteError(f"upload failed for {file.relative}")

        details = file.status_details
        if details is not None and details.content == RemoteStatus.SAME:
            self.calls.append(("copy", file.relative))
            obj = self.objects[file.relative]
            obj["headers"] = dict(file.headers)
            obj["remote"] = dict(file.remote)
            return

        self.calls.append(("put", file.relative))
        with self._lock:
            self.objects[file.relative] = {
                "md5": file.content.md5,
                "size": file.content.size,
                "headers": dict(file.headers),
                "remote": dict(file.remote),
            }

    def list(self, iteratee) -> None:
        if self.fail_list:
            raise RemoteError("listing failed")
        with self._lock:
            snapshot = dict(self.objects)
        keys = sorted(snapshot)
        for start in range(0, max(len(keys), 1), self.page_size):
            self.calls.append(("list-page", start // self.page_size))
            for key in keys[start : start + self.page_size]:
                obj = snapshot[key]
                remote_file = File(
                    dest=Destination.build(BASE, key),
                    content=Content(type="raw", size=obj["size"], md5=obj["md5"]),
                )
                if iteratee(remote_file) is False:
                    return

    def _delete_batch(self, files: list[File]) -> None:
        keys = [f.relative for f in files]
        self.calls.append(("delete", tuple(keys)))
        self.deleted_batches.append(keys)
        with self._lock:
            for key in keys:
                self.objects.pop(key, None)

    def normalize_file_remote_options(self, options: Optional[dict]) -> dict:
        normalized = {"acl": "private"}
        for key, value in (options or {}).items():
            if key != "acl" or value not in ("private", "public-read"):
                raise ConfigurationError(f"Invalid fake option {key}={value!r}")
            normalized[key] = value
        return normalized


def write_tree(base: Path, tree: dict[str, bytes]) -> None:
    """Create files under base from a {relative: content} mapping."""
    for relative, data in tree.items():
        path = base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


def make_options(base_dir: Path, each=(), ignore=(), **kwargs) -> Options:
    """Build Options for the fake backend."""
    return Options(
        plugins=("fake",),
        policy=kwargs.pop("policy", SyncPolicy()),
        base_dir=base_dir,
        each=tuple(FileRule.from_dict(rule, i) for i, rule in enumerate(each)),
        ignore=tuple(ignore),
        **kwargs,
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_client():
    """Create an in-memory remote client."""
    return FakeRemoteClient()


@pytest.fixture
def local_files(temp_dir):
    """Return a function building local Files from a tree mapping."""

    def _build(tree: dict[str, bytes], client: RemoteClient, **kwargs) -> list[File]:
        write_tree(temp_dir, tree)
        return collect_local_files(make_options(temp_dir, **kwargs), client)

    return _build
