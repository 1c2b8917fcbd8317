"""Tests for the WebDAV backend, using an httpx mock transport."""

import httpx
import pytest

from pydrop.exceptions import (
    ConfigurationError,
    RemoteAuthenticationError,
    RemoteError,
    RemoteNetworkError,
)
from pydrop.models import Content, Destination, File, RemoteStatus, StatusDetails
from pydrop.remote.webdav import WebDavRemoteClient
from pydrop.utils import md5_hex

URL = "https://dav.example.com/site"


def make_file(relative: str = "index.html", data: bytes = b"hello") -> File:
    return File(
        dest=Destination.build(URL, relative),
        content=Content(type="raw", size=len(data), md5=md5_hex(data), data=data),
        headers={"content-type": "text/html", "cache-control": "max-age=60"},
    )


def multistatus(*entries: tuple) -> bytes:
    """Build a PROPFIND response from (href, is_collection, size, etag) tuples."""
    responses = []
    for href, is_collection, size, etag in entries:
        resourcetype = "<d:collection/>" if is_collection else ""
        responses.append(
            f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>"
            f"<d:resourcetype>{resourcetype}</d:resourcetype>"
            f"<d:getcontentlength>{size}</d:getcontentlength>"
            f"<d:getetag>\"{etag}\"</d:getetag>"
            f"</d:prop></d:propstat></d:response>"
        )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<d:multistatus xmlns:d="DAV:">{"".join(responses)}</d:multistatus>'
    ).encode("utf-8")


class Server:
    """Records requests and answers with canned responses."""

    def __init__(self, handler=None):
        self.requests: list[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(200))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]


def make_client(server: Server, **kwargs) -> WebDavRemoteClient:
    kwargs.setdefault("retry_delay", 0)
    return WebDavRemoteClient(URL, transport=httpx.MockTransport(server), **kwargs)


class TestWebDavInit:
    """Tests for WebDavRemoteClient construction."""

    def test_requires_url(self):
        """Test that the url is mandatory."""
        with pytest.raises(ConfigurationError, match="url"):
            WebDavRemoteClient("")

    def test_rough_backend(self):
        """Test that WebDAV only reports a combined status."""
        assert WebDavRemoteClient.rough is True

    def test_from_options(self):
        """Test mapping camelCase options."""
        client = WebDavRemoteClient.from_options(
            {"url": URL + "/", "username": "deploy", "maxRetries": 5}
        )

        assert client.url == URL
        assert client.username == "deploy"
        assert client.max_retries == 5
        assert client.get_base_destination() == URL

    def test_from_options_unknown_key(self):
        """Test that unknown options are rejected."""
        with pytest.raises(ConfigurationError, match="bucket"):
            WebDavRemoteClient.from_options({"url": URL, "bucket": "b"})

    def test_no_file_remote_options(self):
        """Test that WebDAV accepts no per-file remote options."""
        client = WebDavRemoteClient(URL)

        assert client.normalize_file_remote_options(None) == {}
        with pytest.raises(ConfigurationError, match="acl"):
            client.normalize_file_remote_options({"acl": "private"})


class TestWebDavStatus:
    """Tests for get_status."""

    def test_missing(self):
        """Test that a 404 on HEAD means missing."""
        server = Server(lambda request: httpx.Response(404))
        client = make_client(server)

        status, details = client.get_status(make_file())

        assert status == RemoteStatus.MISSING
        assert details == StatusDetails.missing()
        assert server.calls == [("HEAD", "/site/index.html")]

    def test_same(self):
        """Test that a matching ETag and content type mean same."""
        file = make_file()
        server = Server(
            lambda request: httpx.Response(
                200,
                headers={
                    "ETag": f'"{file.content.md5}"',
                    "Content-Type": "text/html; charset=utf-8",
                },
            )
        )

        status, details = make_client(server).get_status(file)

        assert status == RemoteStatus.SAME
        assert details == StatusDetails.uniform(RemoteStatus.SAME)

    def test_different(self):
        """Test that every facet carries the combined status."""
        server = Server(
            lambda request: httpx.Response(
                200, headers={"ETag": '"0000"', "Content-Type": "text/html"}
            )
        )

        status, details = make_client(server).get_status(make_file())

        assert status == RemoteStatus.DIFFERENT
        assert details == StatusDetails.uniform(RemoteStatus.DIFFERENT)

    def test_content_type_change(self):
        """Test that a different media type is a difference."""
        file = make_file()
        server = Server(
            lambda request: httpx.Response(
                200,
                headers={"ETag": f'"{file.content.md5}"', "Content-Type": "text/plain"},
            )
        )

        status, _ = make_client(server).get_status(file)

        assert status == RemoteStatus.DIFFERENT

    def test_unauthorized(self):
        """Test that a 401 is an authentication error."""
        server = Server(lambda request: httpx.Response(401))

        with pytest.raises(RemoteAuthenticationError):
            make_client(server).get_status(make_file())


class TestWebDavRetry:
    """Tests for the retry loop."""

    def test_retries_server_errors(self):
        """Test that 5xx responses are retried."""
        responses = iter([httpx.Response(503), httpx.Response(404)])
        server = Server(lambda request: next(responses))

        status, _ = make_client(server, max_retries=2).get_status(make_file())

        assert status == RemoteStatus.MISSING
        assert len(server.requests) == 2

    def test_gives_up_after_max_retries(self):
        """Test that the last error is raised once retries are exhausted."""
        server = Server(lambda request: httpx.Response(500))

        with pytest.raises(RemoteError, match="500"):
            make_client(server, max_retries=2).get_status(make_file())
        assert len(server.requests) == 3

    def test_network_error(self):
        """Test that transport errors become network errors."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        server = Server(handler)

        with pytest.raises(RemoteNetworkError):
            make_client(server, max_retries=1).get_status(make_file())
        assert len(server.requests) == 2


class TestWebDavUpload:
    """Tests for upload."""

    def test_put_creates_collections(self):
        """Test that parent collections are created before the PUT."""

        def handler(request):
            if request.method == "MKCOL" and request.url.path == "/site/a/":
                return httpx.Response(405)
            return httpx.Response(201)

        server = Server(handler)
        client = make_client(server)

        client.upload(make_file("a/b/page.html"))
        client.upload(make_file("a/b/other.html"))

        assert server.calls == [
            ("MKCOL", "/site/a/"),
            ("MKCOL", "/site/a/b/"),
            ("PUT", "/site/a/b/page.html"),
            ("PUT", "/site/a/b/other.html"),
        ]
        put = server.requests[2]
        assert put.content == b"hello"
        assert put.headers["Content-Type"] == "text/html"
        assert put.headers["Cache-Control"] == "max-age=60"

    def test_rough_update_transfers_body(self):
        """Test that an update always sends the full content."""
        server = Server(lambda request: httpx.Response(204))
        file = make_file()
        file.status_details = StatusDetails.uniform(RemoteStatus.DIFFERENT)

        make_client(server).upload(file)

        assert server.calls == [("PUT", "/site/index.html")]
        assert server.requests[0].content == b"hello"

    def test_quotes_paths(self):
        """Test that special characters are percent-encoded."""
        server = Server(lambda request: httpx.Response(201))

        make_client(server).upload(make_file("my page.html"))

        assert server.requests[0].url.raw_path == b"/site/my%20page.html"


class TestWebDavList:
    """Tests for the PROPFIND based listing."""

    @staticmethod
    def tree_handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/site/":
            body = multistatus(
                ("/site/", True, 0, ""),
                ("/site/a.txt", False, 1, md5_hex(b"a")),
                ("/site/dir/", True, 0, ""),
            )
        elif request.url.path == "/site/dir/":
            body = multistatus(
                ("/site/dir/", True, 0, ""),
                ("/site/dir/b.txt", False, 2, md5_hex(b"bb")),
            )
        else:
            return httpx.Response(404)
        return httpx.Response(207, content=body)

    def test_list_walks_collections(self):
        """Test that listing descends into sub-collections."""
        server = Server(self.tree_handler)
        seen = []

        make_client(server).list(seen.append)

        assert [f.relative for f in seen] == ["a.txt", "dir/b.txt"]
        assert seen[1].content.size == 2
        assert seen[1].content.md5 == md5_hex(b"bb")
        assert all(r.method == "PROPFIND" for r in server.requests)
        assert server.requests[0].headers["Depth"] == "1"

    def test_iteratee_stops_listing(self):
        """Test that returning False stops the walk."""
        server = Server(self.tree_handler)

        make_client(server).list(lambda file: False)

        assert len(server.requests) == 1

    def test_missing_root(self):
        """Test that a missing root collection lists nothing."""
        server = Server(lambda request: httpx.Response(404))
        seen = []

        make_client(server).list(seen.append)

        assert seen == []

    def test_invalid_xml(self):
        """Test that an unparsable response is a remote error."""
        server = Server(lambda request: httpx.Response(207, content=b"<oops"))

        with pytest.raises(RemoteError, match="PROPFIND"):
            make_client(server).list(lambda file: None)


class TestWebDavDelete:
    """Tests for deletion."""

    def test_delete_each_file(self):
        """Test that a flush deletes every buffered file."""

        def handler(request):
            if request.url.path == "/site/gone.txt":
                return httpx.Response(404)
            return httpx.Response(204)

        server = Server(handler)
        client = make_client(server)
        client.push_delete(make_file("a.txt"))
        client.push_delete(make_file("gone.txt"))

        flushed = client.flush_delete()

        assert [f.relative for f in flushed] == ["a.txt", "gone.txt"]
        assert server.calls == [
            ("DELETE", "/site/a.txt"),
            ("DELETE", "/site/gone.txt"),
        ]
        assert client.pending_deletes == 0
