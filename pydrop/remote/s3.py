"""Amazon S3 (and S3-compatible) backend."""

from __future__ import annotations

import base64
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from ..exceptions import (
    ConfigurationError,
    RemoteAuthenticationError,
    RemoteError,
    RemoteNetworkError,
    RemotePermissionError,
)
from ..models import Content, Destination, File, RemoteStatus, StatusDetails
from ..utils import (
    DEFAULT_DELETE_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    etag_to_md5,
    join_url,
)
from .base import ListIteratee, RemoteClient

logger = logging.getLogger(__name__)

# S3 refuses batched deletes of more than 1000 keys
MAX_DELETE_BATCH_SIZE = 1000

# Object metadata key holding the fingerprint of the remote attributes
REMOTE_FINGERPRINT_KEY = "pydrop-remote"

CANNED_ACLS = (
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "aws-exec-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
)

STORAGE_CLASSES = (
    "STANDARD",
    "REDUCED_REDUNDANCY",
    "STANDARD_IA",
    "ONEZONE_IA",
    "INTELLIGENT_TIERING",
    "GLACIER",
    "DEEP_ARCHIVE",
    "GLACIER_IR",
)

DEFAULT_FILE_REMOTE_OPTIONS = {"acl": "private", "storage_class": "STANDARD"}

# pydrop header name -> S3 request parameter
HEADER_PARAMS = {
    "content-type": "ContentType",
    "cache-control": "CacheControl",
    "content-disposition": "ContentDisposition",
    "content-encoding": "ContentEncoding",
    "content-language": "ContentLanguage",
    "expires": "Expires",
    "location": "WebsiteRedirectLocation",
}

NOT_FOUND_CODES = ("404", "NotFound", "NoSuchKey")


def _wrap_error(error: Exception, action: str) -> RemoteError:
    """Convert a botocore exception to a RemoteError."""
    if isinstance(error, EndpointConnectionError):
        return RemoteNetworkError(f"Network error during {action}: {error}", error)
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        message = f"S3 {action} failed ({code}): {error}"
        if code in ("InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken"):
            return RemoteAuthenticationError(message, error)
        if code in ("AccessDenied", "403", "Forbidden"):
            return RemotePermissionError(message, error)
        return RemoteError(message, error)
    return RemoteError(f"S3 {action} failed: {error}", error)


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES


def _same_expires(expected: str, head: dict[str, Any]) -> bool:
    """Compare an Expires header with the value returned by head_object."""
    actual = head.get("ExpiresString")
    if actual is None and head.get("Expires") is not None:
        try:
            return parsedate_to_datetime(expected) == head["Expires"]
        except (TypeError, ValueError):
            return False
    if actual is None:
        return False
    try:
        return parsedate_to_datetime(expected) == parsedate_to_datetime(actual)
    except (TypeError, ValueError):
        return expected == actual


class S3RemoteClient(RemoteClient):
    """Remote client storing files as S3 objects.

    Each facet is reported separately, so an object whose content did not
    change is updated with a self-copy instead of a new upload.

    Examples:
        >>> client = S3RemoteClient(bucket="my-site", base_path="www")
        >>> client.get_base_destination()
        's3.amazonaws.com/my-site/www'
    """

    rough = False

    def __init__(
        self,
        bucket: str,
        base_path: str = "",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        profile: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        proxy: Optional[str] = None,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
        page_size: int = 1000,
        client: Any = None,
    ):
        """Initialize the S3 client.

        Args:
            bucket: Bucket name
            base_path: Key prefix under which the site is deployed
            region: AWS region
            endpoint_url: Custom endpoint for S3-compatible services
            access_key_id: Access key (uses the default credential chain if None)
            secret_access_key: Secret key
            profile: Named AWS profile
            max_retries: Maximum retry attempts per call
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            proxy: HTTP(S) proxy URL
            delete_batch_size: Keys per delete_objects request (max 1000)
            page_size: Keys per list_objects_v2 page
            client: Pre-built boto3 S3 client (skips session creation)
        """
        if not bucket:
            raise ConfigurationError("S3 backend requires a bucket")
        if not 1 <= delete_batch_size <= MAX_DELETE_BATCH_SIZE:
            raise ConfigurationError(
                f"S3 delete batch size must be between 1 and {MAX_DELETE_BATCH_SIZE}"
            )
        super().__init__(delete_batch_size=delete_batch_size)

        self.bucket = bucket
        self.base_path = base_path.strip("/")
        self.page_size = page_size

        if client is None:
            config = BotoConfig(
                retries={"max_attempts": max_retries, "mode": "standard"},
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                proxies={"http": proxy, "https": proxy} if proxy else None,
            )
            try:
                session = boto3.session.Session(
                    aws_access_key_id=access_key_id,
                    aws_secret_access_key=secret_access_key,
                    region_name=region,
                    profile_name=profile,
                )
                client = session.client("s3", endpoint_url=endpoint_url, config=config)
            except (BotoCoreError, ValueError) as e:
                raise ConfigurationError(f"Cannot create S3 client: {e}") from e
        self._s3 = client

    def close(self) -> None:
        close = getattr(self._s3, "close", None)
        if callable(close):
            close()

    @classmethod
    def from_options(cls, options: dict[str, Any]) -> "S3RemoteClient":
        """Create a client from the ``remote`` section of the configuration.

        Args:
            options: Backend options (camelCase keys, as in the config file)

        Returns:
            S3RemoteClient instance

        Raises:
            ConfigurationError: If an option is unknown or missing
        """
        mapping = {
            "bucket": "bucket",
            "basePath": "base_path",
            "region": "region",
            "endpointUrl": "endpoint_url",
            "accessKeyId": "access_key_id",
            "secretAccessKey": "secret_access_key",
            "profile": "profile",
            "maxRetries": "max_retries",
            "connectTimeout": "connect_timeout",
            "readTimeout": "read_timeout",
            "proxy": "proxy",
            "deleteBatchSize": "delete_batch_size",
            "pageSize": "page_size",
        }
        unknown = sorted(set(options) - set(mapping))
        if unknown:
            raise ConfigurationError(f"Unknown S3 option(s): {', '.join(unknown)}")
        return cls(**{mapping[key]: value for key, value in options.items()})

    # =========================
    # Parameters
    # =========================

    def _key(self, file: File) -> str:
        return join_url(self.base_path, file.dest.relative)

    def _metadata_params(self, file: File) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for name, value in file.headers.items():
            param = HEADER_PARAMS.get(name)
            if param:
                params[param] = value
        if file.remote.get("acl"):
            params["ACL"] = file.remote["acl"]
        if file.remote.get("storage_class"):
            params["StorageClass"] = file.remote["storage_class"]
        params["Metadata"] = {REMOTE_FINGERPRINT_KEY: file.remote_fingerprint()}
        return params

    def get_put_object_params(self, file: File) -> dict[str, Any]:
        """Build put_object parameters for a full upload."""
        if file.content is None or file.content.data is None:
            raise RemoteError(f"No content to upload for {file.relative}")
        digest = bytes.fromhex(file.content.md5)
        params = {
            "Bucket": self.bucket,
            "Key": self._key(file),
            "Body": file.content.data,
            "ContentMD5": base64.b64encode(digest).decode("ascii"),
        }
        params.update(self._metadata_params(file))
        return params

    def get_self_copy_object_params(self, file: File) -> dict[str, Any]:
        """Build copy_object parameters for a metadata-only update."""
        key = self._key(file)
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "CopySource": {"Bucket": self.bucket, "Key": key},
            "MetadataDirective": "REPLACE",
        }
        params.update(self._metadata_params(file))
        return params

    # =========================
    # Capabilities
    # =========================

    def get_base_destination(self) -> str:
        endpoint = getattr(self._s3.meta, "endpoint_url", None) or ""
        host = urlparse(endpoint).hostname or "s3.amazonaws.com"
        return join_url(host, self.bucket, self.base_path)

    def get_status(self, file: File) -> tuple[RemoteStatus, StatusDetails]:
        try:
            head = self._s3.head_object(Bucket=self.bucket, Key=self._key(file))
        except ClientError as e:
            if _is_not_found(e):
                return RemoteStatus.MISSING, StatusDetails.missing()
            raise _wrap_error(e, "head_object") from e
        except BotoCoreError as e:
            raise _wrap_error(e, "head_object") from e

        details = self._compare(file, head)
        return details.overall(), details

    def _compare(self, file: File, head: dict[str, Any]) -> StatusDetails:
        def status(same: bool) -> RemoteStatus:
            return RemoteStatus.SAME if same else RemoteStatus.DIFFERENT

        remote_md5 = etag_to_md5(head.get("ETag"))
        content_same = file.content is not None and remote_md5 == file.content.md5

        headers_same = True
        for name, param in HEADER_PARAMS.items():
            expected = file.headers.get(name)
            if name == "expires":
                if expected is None:
                    headers_same = head.get("ExpiresString", head.get("Expires")) is None
                else:
                    headers_same = _same_expires(expected, head)
            elif name == "content-type" and expected is None:
                # S3 always answers with a content type
                continue
            else:
                headers_same = head.get(param) == expected
            if not headers_same:
                logger.debug(
                    f"Header {name} differs for {file.relative}: "
                    f"{head.get(param)!r} != {expected!r}"
                )
                break

        storage_class = file.remote.get("storage_class", "STANDARD")
        metadata = head.get("Metadata") or {}
        remote_same = (
            head.get("StorageClass", "STANDARD") == storage_class
            and metadata.get(REMOTE_FINGERPRINT_KEY) == file.remote_fingerprint()
        )

        return StatusDetails(
            content=status(content_same),
            headers=status(headers_same),
            remote=status(remote_same),
        )

    def upload(self, file: File) -> None:
        details = file.status_details
        try:
            if details is not None and details.content == RemoteStatus.SAME:
                # Content has not changed, a fast "self copy" is enough
                logger.debug(f"Self-copying {self._key(file)}")
                self._s3.copy_object(**self.get_self_copy_object_params(file))
                return

            logger.debug(f"Putting {self._key(file)}")
            self._s3.put_object(**self.get_put_object_params(file))
        except (ClientError, BotoCoreError) as e:
            raise _wrap_error(e, "upload") from e

    def _list_item_to_file(self, item: dict[str, Any]) -> Optional[File]:
        key = item["Key"]
        prefix = f"{self.base_path}/" if self.base_path else ""
        relative = key[len(prefix) :] if prefix and key.startswith(prefix) else key
        if not relative or relative.endswith("/"):
            return None
        return File(
            dest=Destination.build(self.get_base_destination(), relative),
            content=Content(
                type="raw",
                size=item.get("Size", 0),
                md5=etag_to_md5(item.get("ETag")) or "",
            ),
            remote={"storage_class": item.get("StorageClass", "STANDARD")},
        )

    def list(self, iteratee: ListIteratee) -> None:
        params: dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": self.page_size}
        if self.base_path:
            params["Prefix"] = f"{self.base_path}/"

        cursor: Optional[str] = None
        page = 0
        while True:
            if cursor:
                params["ContinuationToken"] = cursor
            try:
                data = self._s3.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as e:
                raise _wrap_error(e, "list_objects_v2") from e
            page += 1
            logger.debug(f"Listed page {page} ({data.get('KeyCount', 0)} keys)")

            for item in data.get("Contents", []):
                file = self._list_item_to_file(item)
                if file is None:
                    continue
                # Iteratee may exit iteration early by explicitly returning False
                if iteratee(file) is False:
                    return

            cursor = data.get("NextContinuationToken") if data.get("IsTruncated") else None
            if not cursor:
                return

    def _delete_batch(self, files: list[File]) -> None:
        params = {
            "Bucket": self.bucket,
            "Delete": {
                "Objects": [{"Key": self._key(f)} for f in files],
                "Quiet": True,
            },
        }
        try:
            result = self._s3.delete_objects(**params)
        except (ClientError, BotoCoreError) as e:
            raise _wrap_error(e, "delete_objects") from e

        errors = result.get("Errors") or []
        if errors:
            first = errors[0]
            raise RemoteError(
                f"S3 refused to delete {len(errors)} object(s), first: "
                f"{first.get('Key')} ({first.get('Code')}: {first.get('Message')})"
            )
        logger.debug(f"Deleted {len(files)} object(s)")

    def normalize_file_remote_options(self, options: Optional[dict]) -> dict:
        normalized = dict(DEFAULT_FILE_REMOTE_OPTIONS)
        for key, value in (options or {}).items():
            if key == "acl":
                if value not in CANNED_ACLS:
                    raise ConfigurationError(
                        f"Invalid S3 ACL {value!r}, expected one of "
                        f"{', '.join(CANNED_ACLS)}"
                    )
                normalized["acl"] = value
            elif key in ("storageClass", "storage_class"):
                if value not in STORAGE_CLASSES:
                    raise ConfigurationError(
                        f"Invalid S3 storage class {value!r}, expected one of "
                        f"{', '.join(STORAGE_CLASSES)}"
                    )
                normalized["storage_class"] = value
            else:
                raise ConfigurationError(f"Unknown S3 file option: {key}")
        return normalized
