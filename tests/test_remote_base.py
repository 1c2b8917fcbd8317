"""Tests for the delete buffer and the backend plugin lookup."""

from typing import Optional, get_type_hints
from unittest.mock import Mock

import pytest
from conftest import FakeRemoteClient

from pydrop.config import Options
from pydrop.exceptions import ConfigurationError, RemoteError
from pydrop.models import File, SyncPolicy
from pydrop.remote import create_remote_client, get_backend_class
from pydrop.remote.base import DeleteBuffer, RemoteClient
from pydrop.remote.s3 import S3RemoteClient
from pydrop.remote.webdav import WebDavRemoteClient


class TestDeleteBuffer:
    """Tests for DeleteBuffer."""

    def test_invalid_limit(self):
        """Test that a limit below one is rejected."""
        with pytest.raises(ValueError):
            DeleteBuffer(0, Mock())

    def test_push_below_limit(self):
        """Test that nothing is flushed before the limit is reached."""
        flush_fn = Mock()
        buffer = DeleteBuffer(3, flush_fn)

        assert buffer.push("a") is None
        assert buffer.push("b") is None
        assert len(buffer) == 2
        flush_fn.assert_not_called()

    def test_auto_flush_at_limit(self):
        """Test that 1001 pushes with limit 1000 flush exactly once."""
        flush_fn = Mock()
        buffer = DeleteBuffer(1000, flush_fn)

        flushed = [buffer.push(i) for i in range(1001)]

        assert flush_fn.call_count == 1
        assert flush_fn.call_args[0][0] == list(range(1000))
        assert [batch for batch in flushed if batch is not None] == [list(range(1000))]
        assert len(buffer) == 1

        assert buffer.flush() == [1000]
        assert flush_fn.call_count == 2
        assert flush_fn.call_args[0][0] == [1000]
        assert len(buffer) == 0

    def test_flush_empty(self):
        """Test that flushing an empty buffer makes no call."""
        flush_fn = Mock()
        buffer = DeleteBuffer(10, flush_fn)

        assert buffer.flush() is None
        flush_fn.assert_not_called()

    def test_failed_flush_keeps_items(self):
        """Test that the buffer is only cleared after a successful flush."""
        flush_fn = Mock(side_effect=RemoteError("boom"))
        buffer = DeleteBuffer(2, flush_fn)
        buffer.push("a")

        with pytest.raises(RemoteError):
            buffer.push("b")
        assert len(buffer) == 2

        flush_fn.side_effect = None
        assert buffer.flush() == ["a", "b"]
        assert len(buffer) == 0

    def test_flush_after_failure_drains_in_batches(self):
        """Test that a backlog above the limit is flushed completely."""
        flush_fn = Mock(side_effect=[RemoteError("boom"), None, None])
        buffer = DeleteBuffer(2, flush_fn)
        buffer.push("a")
        with pytest.raises(RemoteError):
            buffer.push("b")

        assert buffer.push("c") == ["a", "b", "c"]
        assert [c[0][0] for c in flush_fn.call_args_list[1:]] == [["a", "b"], ["c"]]
        assert len(buffer) == 0

    def test_flush_sends_everything(self):
        """Test that flush never leaves candidates behind."""
        error = RemoteError("boom")
        flush_fn = Mock(side_effect=[error, error, None, None])
        buffer = DeleteBuffer(2, flush_fn)
        buffer.push("a")
        for item in ("b", "c"):
            with pytest.raises(RemoteError):
                buffer.push(item)
        assert len(buffer) == 3

        assert buffer.flush() == ["a", "b", "c"]
        assert [c[0][0] for c in flush_fn.call_args_list[2:]] == [["a", "b"], ["c"]]
        assert len(buffer) == 0

    def test_preserves_order(self):
        """Test that batches keep the push order."""
        batches = []
        buffer = DeleteBuffer(2, batches.append)
        for item in "abcde":
            buffer.push(item)
        buffer.flush()

        assert batches == [["a", "b"], ["c", "d"], ["e"]]


class TestRemoteClient:
    """Tests for the shared RemoteClient behavior."""

    def test_is_abstract(self):
        """Test that RemoteClient cannot be instantiated."""
        with pytest.raises(TypeError):
            RemoteClient()

    def test_push_and_flush_delete(self, fake_client):
        """Test that deletions go through _delete_batch."""
        remote_files = []
        fake_client.put_deployed("a.txt", b"a")
        fake_client.put_deployed("b.txt", b"b")
        fake_client.list(remote_files.append)

        for file in remote_files:
            assert fake_client.push_delete(file) is None
        assert fake_client.pending_deletes == 2

        flushed = fake_client.flush_delete()

        assert [f.relative for f in flushed] == ["a.txt", "b.txt"]
        assert fake_client.deleted_batches == [["a.txt", "b.txt"]]
        assert fake_client.objects == {}
        assert fake_client.pending_deletes == 0

    def test_push_delete_returns_flushed_batch(self):
        """Test that reaching the batch size flushes immediately."""
        client = FakeRemoteClient(delete_batch_size=1)
        client.put_deployed("a.txt", b"a")
        remote_files = []
        client.list(remote_files.append)

        flushed = client.push_delete(remote_files[0])

        assert [f.relative for f in flushed] == ["a.txt"]
        assert client.deleted_batches == [["a.txt"]]

    def test_batch_annotations_use_builtin_list(self):
        """Test that the list() method does not shadow list in annotations."""
        hints = get_type_hints(RemoteClient._delete_batch)
        assert hints["files"] == list[File]
        assert get_type_hints(FakeRemoteClient._delete_batch)["files"] == list[File]
        assert get_type_hints(RemoteClient.flush_delete)["return"] == Optional[
            list[File]
        ]

    def test_context_manager_closes(self, fake_client):
        """Test that leaving the context closes the client."""
        fake_client.close = Mock()
        with fake_client as client:
            assert client is fake_client
        fake_client.close.assert_called_once()


class TestBackendLookup:
    """Tests for plugin resolution."""

    def test_builtin_backends(self):
        """Test resolving the built-in backend names."""
        assert get_backend_class("s3") is S3RemoteClient
        assert get_backend_class("webdav") is WebDavRemoteClient

    def test_module_path(self):
        """Test resolving a module:Class plugin."""
        assert get_backend_class("conftest:FakeRemoteClient") is FakeRemoteClient

    def test_unknown_name(self):
        """Test that an unknown plugin name is rejected."""
        with pytest.raises(ConfigurationError, match="Unknown plugin"):
            get_backend_class("ftp")

    def test_unimportable_module(self):
        """Test that a missing plugin module is a configuration error."""
        with pytest.raises(ConfigurationError, match="Cannot import"):
            get_backend_class("no_such_module_xyz:Client")

    def test_not_a_remote_client(self):
        """Test that a plugin must subclass RemoteClient."""
        with pytest.raises(ConfigurationError, match="not a RemoteClient"):
            get_backend_class("pydrop.models:File")

    def test_create_remote_client(self, temp_dir):
        """Test creating a client from options."""
        options = Options(
            plugins=("webdav",),
            policy=SyncPolicy(),
            base_dir=temp_dir,
            remote={"url": "https://dav.example.com/site", "maxRetries": 1},
        )

        client = create_remote_client(options)

        assert isinstance(client, WebDavRemoteClient)
        assert client.max_retries == 1

    def test_create_requires_single_plugin(self, temp_dir):
        """Test that several plugins are rejected."""
        options = Options(
            plugins=("s3", "webdav"), policy=SyncPolicy(), base_dir=temp_dir
        )

        with pytest.raises(ConfigurationError, match="Exactly one"):
            create_remote_client(options)

    def test_create_with_bad_arguments(self, temp_dir):
        """Test that constructor argument errors become configuration errors."""
        options = Options(
            plugins=("conftest:FakeRemoteClient",),
            policy=SyncPolicy(),
            base_dir=temp_dir,
            remote={"colour": "blue"},
        )

        with pytest.raises(ConfigurationError, match="Invalid remote options"):
            create_remote_client(options)
