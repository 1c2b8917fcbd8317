"""WebDAV backend."""

from __future__ import annotations

import logging
import random
import threading
import time
import xml.etree.ElementTree as ET
from typing import Any, Optional
from urllib.parse import quote, unquote, urlparse

import httpx

from ..exceptions import (
    ConfigurationError,
    RemoteAuthenticationError,
    RemoteError,
    RemoteNetworkError,
    RemoteNotFoundError,
    RemotePermissionError,
    RemoteRateLimitError,
)
from ..models import Content, Destination, File, RemoteStatus, StatusDetails
from ..utils import (
    DEFAULT_DELETE_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    etag_to_md5,
    join_url,
)
from .base import ListIteratee, RemoteClient

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getcontentlength/><d:getetag/>"
    "</d:prop></d:propfind>"
)

# pydrop header name -> HTTP request header
HTTP_HEADERS = {
    "content-type": "Content-Type",
    "cache-control": "Cache-Control",
    "content-disposition": "Content-Disposition",
    "content-encoding": "Content-Encoding",
    "content-language": "Content-Language",
    "expires": "Expires",
}


def _media_type(value: Optional[str]) -> str:
    return (value or "").split(";")[0].strip().lower()


class WebDavRemoteClient(RemoteClient):
    """Remote client for a WebDAV collection.

    WebDAV servers only expose an ETag and a content type, so the status is
    a single combined value and updates always transfer the full body.
    """

    rough = True

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the WebDAV client.

        Args:
            url: Root collection URL
            username: Optional user for basic authentication
            password: Optional password for basic authentication
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            delete_batch_size: Files buffered before deletions are flushed
            transport: Custom httpx transport
        """
        if not url:
            raise ConfigurationError("WebDAV backend requires a url")
        super().__init__(delete_batch_size=delete_batch_size)

        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._known_collections: set[str] = {""}
        self._collections_lock = threading.Lock()

    @classmethod
    def from_options(cls, options: dict[str, Any]) -> "WebDavRemoteClient":
        """Create a client from the ``remote`` section of the configuration.

        Raises:
            ConfigurationError: If an option is unknown
        """
        mapping = {
            "url": "url",
            "username": "username",
            "password": "password",
            "maxRetries": "max_retries",
            "retryDelay": "retry_delay",
            "timeout": "timeout",
            "deleteBatchSize": "delete_batch_size",
        }
        unknown = sorted(set(options) - set(mapping))
        if unknown:
            raise ConfigurationError(f"Unknown WebDAV option(s): {', '.join(unknown)}")
        return cls(**{mapping[key]: value for key, value in options.items()})

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            auth = (
                httpx.BasicAuth(self.username, self.password or "")
                if self.username
                else None
            )
            self._client = httpx.Client(
                auth=auth,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    # =========================
    # Request loop
    # =========================

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[RemoteError, bool]:
        """Map an HTTP error and determine if retry should occur.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code
        request = e.request
        target = f"{request.method} {request.url}"

        if status_code == 401:
            raise RemoteAuthenticationError(
                f"Unauthorized: {target} - check username and password", e
            ) from e
        elif status_code == 403:
            raise RemotePermissionError(f"Access forbidden: {target}", e) from e
        elif status_code == 404:
            raise RemoteNotFoundError(f"Not found: {target}", e) from e
        elif status_code == 429:
            error: RemoteError = RemoteRateLimitError(
                f"Rate limit exceeded: {target}", e
            )
            return (error, attempt < self.max_retries)
        else:
            error = RemoteError(f"{target} failed with status {status_code}", e)
            should_retry = 500 <= status_code < 600 and attempt < self.max_retries
            return (error, should_retry)

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Make a request with retry logic.

        Args:
            method: HTTP or WebDAV method
            url: Absolute URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            The successful response

        Raises:
            RemoteError: If the request fails after all retries
        """
        last_exception: Optional[RemoteError] = None
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error

                if not should_retry:
                    raise error from e
                retry_after = e.response.headers.get("Retry-After")
                if isinstance(error, RemoteRateLimitError) and (
                    retry_after and retry_after.isdigit()
                ):
                    delay = float(retry_after)
                else:
                    delay = self._calculate_retry_delay(attempt)
                logger.debug(
                    f"{method} {url} failed ({e.response.status_code}), "
                    f"retrying in {delay:.1f}s"
                )
                time.sleep(delay)
            except httpx.RequestError as e:
                error = RemoteNetworkError(f"Network error: {e}", e)
                last_exception = error
                if attempt >= self.max_retries:
                    raise error from e
                delay = self._calculate_retry_delay(attempt)
                logger.debug(f"{method} {url} failed ({e}), retrying in {delay:.1f}s")
                time.sleep(delay)

        if last_exception:
            raise last_exception
        raise RemoteError(f"{method} {url} failed after all retry attempts")

    def _url(self, relative: str) -> str:
        return join_url(self.url, quote(relative, safe="/"))

    # =========================
    # Capabilities
    # =========================

    def get_base_destination(self) -> str:
        return self.url

    def get_status(self, file: File) -> tuple[RemoteStatus, StatusDetails]:
        try:
            response = self._request("HEAD", self._url(file.relative))
        except RemoteNotFoundError:
            return RemoteStatus.MISSING, StatusDetails.missing()

        same = etag_to_md5(response.headers.get("ETag")) == (
            file.content.md5 if file.content else None
        )
        expected_type = file.headers.get("content-type")
        if same and expected_type:
            same = _media_type(response.headers.get("Content-Type")) == _media_type(
                expected_type
            )

        status = RemoteStatus.SAME if same else RemoteStatus.DIFFERENT
        return status, StatusDetails.uniform(status)

    def _ensure_collections(self, relative: str) -> None:
        """Create the parent collections of a path, top-down."""
        parts = relative.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            collection = "/".join(parts[:depth])
            with self._collections_lock:
                if collection in self._known_collections:
                    continue
            try:
                self._request("MKCOL", self._url(collection) + "/")
            except RemoteError as e:
                # 405: the collection already exists
                response = getattr(e.cause, "response", None)
                if response is None or response.status_code != 405:
                    raise
            with self._collections_lock:
                self._known_collections.add(collection)

    def upload(self, file: File) -> None:
        if file.content is None or file.content.data is None:
            raise RemoteError(f"No content to upload for {file.relative}")

        self._ensure_collections(file.relative)
        headers = {
            HTTP_HEADERS[name]: value
            for name, value in file.headers.items()
            if name in HTTP_HEADERS
        }
        logger.debug(f"PUT {file.relative} ({file.content.size} bytes)")
        self._request(
            "PUT", self._url(file.relative), content=file.content.data, headers=headers
        )

    def _propfind(self, collection: str) -> list[tuple[str, bool, int, str]]:
        """List the direct members of a collection.

        Returns:
            List of (relative path, is_collection, size, md5) tuples
        """
        url = self._url(collection) + "/" if collection else self.url + "/"
        response = self._request(
            "PROPFIND",
            url,
            content=PROPFIND_BODY,
            headers={"Depth": "1", "Content-Type": "application/xml"},
        )
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise RemoteError(f"Invalid PROPFIND response for {url}: {e}", e) from e

        base_path = unquote(urlparse(self.url).path).rstrip("/")
        members = []
        for node in root.iter(f"{DAV_NS}response"):
            href = node.findtext(f"{DAV_NS}href") or ""
            path = unquote(urlparse(href).path).rstrip("/")
            if not path.startswith(base_path):
                continue
            relative = path[len(base_path) :].strip("/")
            if relative == collection:
                continue

            is_collection = node.find(f".//{DAV_NS}resourcetype/{DAV_NS}collection")
            length = node.findtext(f".//{DAV_NS}getcontentlength") or "0"
            etag = node.findtext(f".//{DAV_NS}getetag")
            members.append(
                (
                    relative,
                    is_collection is not None,
                    int(length) if length.isdigit() else 0,
                    etag_to_md5(etag) or "",
                )
            )
        return members

    def list(self, iteratee: ListIteratee) -> None:
        pending = [""]
        while pending:
            collection = pending.pop(0)
            try:
                members = self._propfind(collection)
            except RemoteNotFoundError:
                if collection:
                    raise
                logger.debug(f"Root collection {self.url} does not exist yet")
                return

            for relative, is_collection, size, md5 in members:
                if is_collection:
                    with self._collections_lock:
                        self._known_collections.add(relative)
                    pending.append(relative)
                    continue
                file = File(
                    dest=Destination.build(self.url, relative),
                    content=Content(type="raw", size=size, md5=md5),
                )
                # Iteratee may exit iteration early by explicitly returning False
                if iteratee(file) is False:
                    return

    def _delete_batch(self, files: list[File]) -> None:
        for file in files:
            try:
                self._request("DELETE", self._url(file.relative))
            except RemoteNotFoundError:
                logger.debug(f"{file.relative} was already deleted")

    def normalize_file_remote_options(self, options: Optional[dict]) -> dict:
        if options:
            raise ConfigurationError(
                f"WebDAV backend accepts no file remote options, got: "
                f"{', '.join(sorted(options))}"
            )
        return {}
