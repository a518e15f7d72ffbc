"""
S3 Storage Facade
=================

The storage an attachment framework talks to. One instance is one bucket
namespace (bucket + optional key prefix) with immutable defaults; a typical
application holds two, `cache` and `store`.

Operations:
-----------
| Operation         | Collaborator calls                          |
|-------------------|---------------------------------------------|
| upload (bytes/IO) | put_object, or multipart_upload above 15 MiB|
| upload (stored)   | copy_object, or multipart_copy above 150 MiB|
| download          | get_object                                  |
| open_stream       | get_object (chunked reads)                  |
| exists / head     | head_object                                 |
| delete            | delete_object                               |
| delete_prefixed   | list_objects + delete_objects               |
| clear             | list_objects (+ head_object) + delete_objects|
| url               | none, or presigned_url                      |
| presign           | presigned_put / presigned_post              |

Collaborator failures surface as StorageError (NotFoundError for missing
objects) raised from the original exception; nothing is retried here.

Author: attachstore maintainers
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from attachstore.core import constants as C
from attachstore.core.errors import ConfigError
from attachstore.core.types import unwrap_or_raise
from attachstore.observability.logging import StructuredLogger
from attachstore.storage.bulk import (
    BulkDeleteReport,
    BulkOperationEngine,
    CancellationToken,
    Predicate,
)
from attachstore.storage.config import StorageConfig
from attachstore.storage.keys import KeyResolver
from attachstore.storage.options import EncryptionTarget, content_disposition, merge_options
from attachstore.storage.protocols import Body, ObjectBody, ObjectStoreClient, ObjectSummary
from attachstore.storage.s3_client import AioS3Client
from attachstore.storage.transfer import OperationKind, TransferPlanner
from attachstore.storage.urls import UrlGenerator

# Options that describe the object itself; a copy carrying any of them
# replaces the source's metadata instead of inheriting it.
_HEADER_OPTIONS = frozenset({
    "content_type",
    "content_disposition",
    "content_encoding",
    "content_language",
    "cache_control",
    "expires",
    "metadata",
})

_PRESIGN_METHODS = ("put", "post")


# =============================================================================
# VALUE TYPES
# =============================================================================
@dataclass(frozen=True, slots=True)
class StoredObject:
    """
    Reference to an object already held by a storage.

    Uploading a StoredObject copies it server-side instead of streaming it
    through the process.

    Attributes:
        storage: Storage holding the object.
        key: Logical key within that storage.
        size: Size in bytes, if known (saves a HEAD before copying).
    """
    storage: "S3Storage"
    key: str
    size: Optional[int] = None


@dataclass(frozen=True, slots=True)
class PresignResult:
    """
    Everything a client needs to upload directly to the bucket.

    `fields` is filled for POST (form fields to submit with the file),
    `headers` for PUT (headers to send with the body).
    """
    url: str
    method: str
    fields: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)


class ObjectStream:
    """
    Streaming view of an object body.

    Example:
        async with await storage.open_stream("video.mp4") as stream:
            async for chunk in stream:
                sink.write(chunk)
    """

    __slots__ = ("_body", "_chunk_size", "_closed")

    def __init__(self, body: ObjectBody, chunk_size: int = C.DEFAULT_CHUNK_SIZE) -> None:
        self._body = body
        self._chunk_size = chunk_size
        self._closed = False

    async def read(self, amt: Optional[int] = None) -> bytes:
        return await self._body.read(amt)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._body.read(self._chunk_size)
            if not chunk:
                return
            yield chunk

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._body.close()
            self._closed = True

    async def __aenter__(self) -> ObjectStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.close()


def _body_size(source: Any) -> Optional[int]:
    """Payload size without consuming it; None when it cannot be known."""
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if isinstance(source, memoryview):
        return source.nbytes

    size = getattr(source, "size", None)
    if isinstance(size, int) and not isinstance(size, bool):
        return size

    try:
        if not source.seekable():
            return None
        position = source.tell()
        end = source.seek(0, 2)
        source.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return end - position


# =============================================================================
# STORAGE
# =============================================================================
class S3Storage:
    """
    Attachment storage over one S3 bucket namespace.

    Example:
        >>> config = StorageConfig(bucket="photos", prefix="store", public=True)
        >>> async with S3Storage(config) as storage:
        ...     await storage.upload(data, "avatars/1.jpg",
        ...                          metadata={"mime_type": "image/jpeg"})
        ...     url = await storage.url("avatars/1.jpg")
    """

    __slots__ = (
        "_config",
        "_client",
        "_owns_client",
        "_resolver",
        "_planner",
        "_urls",
        "_bulk",
        "_logger",
    )

    def __init__(self, config: StorageConfig) -> None:
        self._config = config
        self._owns_client = config.client is None
        self._client: ObjectStoreClient = (
            config.client if config.client is not None
            else AioS3Client(config.effective_client_config())
        )
        self._resolver = KeyResolver(config.prefix)
        self._planner = TransferPlanner(config.thresholds)
        self._logger = StructuredLogger(__name__).with_extra(bucket=config.bucket)
        self._urls = UrlGenerator(
            config.bucket,
            self._resolver,
            self._client,
            public=config.public,
            signer=config.signer,
            host=config.host,
            encryption=config.encryption,
        )
        self._bulk = BulkOperationEngine(
            self._client,
            config.bucket,
            self._resolver,
            batch_size=config.max_batch_delete,
            page_size=config.list_page_size,
            encryption=config.encryption,
            logger=StructuredLogger("attachstore.storage.bulk"),
        )

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> S3Storage:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the client if this storage built it."""
        if self._owns_client:
            close = getattr(self._client, "close", None)
            if close is not None:
                await close()

    # -------------------------------------------------------------------------
    # PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def bucket(self) -> str:
        return self._config.bucket

    @property
    def prefix(self) -> Optional[str]:
        return self._config.prefix

    @property
    def client(self) -> ObjectStoreClient:
        return self._client

    def object_key(self, key: str) -> str:
        """Full object key for a logical key."""
        return self._resolver.resolve(key)

    def stored(self, key: str, size: Optional[int] = None) -> StoredObject:
        return StoredObject(storage=self, key=key, size=size)

    # -------------------------------------------------------------------------
    # UPLOAD
    # -------------------------------------------------------------------------

    def _upload_defaults(self, metadata: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Option layers below encryption and per-call options."""
        options: Dict[str, Any] = {}
        if metadata:
            if metadata.get("mime_type"):
                options["content_type"] = metadata["mime_type"]
            if metadata.get("filename"):
                options["content_disposition"] = content_disposition(metadata["filename"])
        if self._config.public:
            options["acl"] = "public-read"
        options.update(self._config.upload_options)
        return options

    async def upload(
        self,
        source: Union[Body, StoredObject],
        key: str,
        *,
        metadata: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> None:
        """
        Store `source` under `key`.

        Args:
            source: bytes, a readable binary file object, or a StoredObject
                (copied server-side).
            key: Logical key.
            metadata: Attachment metadata; `mime_type` and `filename` become
                Content-Type and Content-Disposition.
            **options: Per-call upload options (`acl`, `cache_control`,
                `sse_*`, `thread_count`, ...). These win over every default.

        Raises:
            InvalidKeyError: Empty or non-string key.
            StorageError: The object store rejected or failed the request.
        """
        full_key = self._resolver.resolve(key)
        defaults = self._upload_defaults(metadata)

        if isinstance(source, StoredObject):
            await self._copy(source, full_key, defaults, options)
            return

        if not isinstance(source, (bytes, bytearray, memoryview)) and not hasattr(source, "read"):
            raise ConfigError.invalid_value(
                "source", type(source).__name__, "must be bytes, a binary file object or a StoredObject"
            )

        params = merge_options(defaults, options, self._config.encryption, EncryptionTarget.UPLOAD)
        size = _body_size(source)
        plan = self._planner.plan(OperationKind.UPLOAD, size, params.pop("thread_count", None))

        self._logger.debug("Uploading object", key=full_key, size=size, mode=plan.mode.value)
        if plan.is_multipart:
            result = await self._client.multipart_upload(
                self.bucket, full_key, source, params, plan.thread_count, plan.part_size
            )
        else:
            result = await self._client.put_object(self.bucket, full_key, source, params)
        unwrap_or_raise(result, operation="upload", key=full_key, bucket=self.bucket)

    async def _copy(
        self,
        source: StoredObject,
        full_key: str,
        defaults: Mapping[str, Any],
        options: Mapping[str, Any],
    ) -> None:
        src_key = source.storage.object_key(source.key)
        size = source.size
        if size is None:
            size = (await source.storage.head(source.key)).size

        params = merge_options(defaults, options, self._config.encryption, EncryptionTarget.COPY)
        plan = self._planner.plan(OperationKind.COPY, size, params.pop("thread_count", None))
        if _HEADER_OPTIONS.intersection(params):
            params.setdefault("metadata_directive", "REPLACE")

        self._logger.debug(
            "Copying object",
            key=full_key,
            source=src_key,
            source_bucket=source.storage.bucket,
            size=size,
            mode=plan.mode.value,
        )
        if plan.is_multipart:
            result = await self._client.multipart_copy(
                self.bucket,
                src_key,
                full_key,
                params,
                size,
                plan.thread_count,
                plan.part_size,
                source_bucket=source.storage.bucket,
            )
        else:
            result = await self._client.copy_object(
                self.bucket, src_key, full_key, params, source_bucket=source.storage.bucket
            )
        unwrap_or_raise(result, operation="copy", key=full_key, bucket=self.bucket)

    # -------------------------------------------------------------------------
    # DOWNLOAD
    # -------------------------------------------------------------------------

    async def _open(self, key: str, options: Mapping[str, Any]) -> ObjectBody:
        full_key = self._resolver.resolve(key)
        params = merge_options(None, options, self._config.encryption, EncryptionTarget.DOWNLOAD)
        result = await self._client.get_object(self.bucket, full_key, params)
        return unwrap_or_raise(result, operation="download", key=full_key, bucket=self.bucket)

    async def download(self, key: str, **options: Any) -> bytes:
        """
        Read the whole object into memory.

        Raises:
            NotFoundError: No object under `key`.
        """
        body = await self._open(key, options)
        try:
            return await body.read()
        finally:
            body.close()

    async def open_stream(
        self,
        key: str,
        chunk_size: int = C.DEFAULT_CHUNK_SIZE,
        **options: Any,
    ) -> ObjectStream:
        """Open the object for chunked reading. Close the stream when done."""
        return ObjectStream(await self._open(key, options), chunk_size)

    # -------------------------------------------------------------------------
    # METADATA
    # -------------------------------------------------------------------------

    async def exists(self, key: str) -> bool:
        return await self._bulk.exists(key)

    async def head(self, key: str) -> ObjectSummary:
        full_key = self._resolver.resolve(key)
        params = merge_options(None, None, self._config.encryption, EncryptionTarget.DOWNLOAD)
        result = await self._client.head_object(self.bucket, full_key, params)
        return unwrap_or_raise(result, operation="head_object", key=full_key, bucket=self.bucket)

    # -------------------------------------------------------------------------
    # DELETES
    # -------------------------------------------------------------------------

    async def delete(self, key: str) -> None:
        """Delete one object. Deleting a missing object is not an error."""
        full_key = self._resolver.resolve(key)
        self._logger.debug("Deleting object", key=full_key)
        result = await self._client.delete_object(self.bucket, full_key)
        unwrap_or_raise(result, operation="delete", key=full_key, bucket=self.bucket)

    async def delete_prefixed(
        self,
        prefix: str,
        cancel: Optional[CancellationToken] = None,
    ) -> BulkDeleteReport:
        """
        Delete everything under `prefix`, e.g. all derivatives of a record.

        Raises:
            BulkDeletePartialFailure: Some keys could not be deleted.
        """
        return await self._bulk.delete_prefixed(prefix, cancel=cancel)

    async def clear(
        self,
        predicate: Optional[Predicate] = None,
        *,
        with_metadata: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> BulkDeleteReport:
        """
        Delete objects of this storage selected by `predicate`.

        Example:
            cutoff = datetime.now(timezone.utc) - timedelta(days=1)
            await cache.clear(lambda obj: obj.last_modified < cutoff)
        """
        return await self._bulk.clear(predicate, with_metadata=with_metadata, cancel=cancel)

    # -------------------------------------------------------------------------
    # URLS
    # -------------------------------------------------------------------------

    async def url(self, key: str, **options: Any) -> str:
        """
        URL for downloading the object.

        Options: `host` (CDN), `public`, `force_signed`, `expires_in`, and
        anything else the presigned GET accepts (`response_content_disposition`).
        Configured encryption contributes only its SSE-C parameters to a
        presigned GET; encryption options passed here are forwarded as given.
        """
        return await self._urls.url(key, **options)

    async def presign(self, key: str, method: str = "post", **options: Any) -> PresignResult:
        """
        Parameters for a direct upload from a client.

        Storage-level upload defaults, the public ACL and encryption apply;
        per-call options given to `upload()` elsewhere do not.

        Raises:
            ConfigError: `method` is neither "put" nor "post".
        """
        method_name = str(method).lower()
        if method_name not in _PRESIGN_METHODS:
            raise ConfigError.unsupported_method(method)

        full_key = self._resolver.resolve(key)
        defaults = self._upload_defaults()

        if method_name == "put":
            params = merge_options(defaults, options, self._config.encryption, EncryptionTarget.PRESIGN_PUT)
            params.pop("thread_count", None)
            result = await self._client.presigned_put(self.bucket, full_key, params)
            url, headers = unwrap_or_raise(result, operation="presign", key=full_key, bucket=self.bucket)
            return PresignResult(url=url, method="put", headers=headers)

        params = merge_options(defaults, options, self._config.encryption, EncryptionTarget.PRESIGN_POST)
        params.pop("thread_count", None)
        result = await self._client.presigned_post(self.bucket, full_key, params)
        url, fields = unwrap_or_raise(result, operation="presign", key=full_key, bucket=self.bucket)
        return PresignResult(url=url, method="post", fields=fields)

    def __repr__(self) -> str:
        return f"S3Storage(bucket={self.bucket!r}, prefix={self.prefix!r})"


__all__ = [
    "S3Storage",
    "StoredObject",
    "PresignResult",
    "ObjectStream",
]
