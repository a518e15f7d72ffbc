"""
In-Memory Object-Store Client: Development and Testing Implementation

S3-compatible `ObjectStoreClient` held entirely in process memory. Swaps in
for `AioS3Client` anywhere a storage is configured with `client=`.

Design Principles:
    - Same Result contract as the aioboto3 client (Err(NotFoundError) for
      missing objects, per-key errors from batch deletes)
    - Thread-safe operations via an asyncio lock
    - Sorted-key listing with index continuation tokens, so pagination
      can be exercised down to a page size of 1
    - Failure injection (`fail_deletes`, `fail_operation`) and a call log
      for assertions in tests

Author: attachstore maintainers
License: MIT
"""

from __future__ import annotations

import asyncio
import bisect
import hashlib
import io
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from urllib.parse import urlencode

from attachstore.core import constants as C
from attachstore.core.errors import ConfigError, KeyFailure, NotFoundError, StorageError
from attachstore.core.types import Err, Ok, Result
from attachstore.storage.protocols import (
    Body,
    DeleteResult,
    ListPage,
    ObjectBody,
    ObjectSummary,
    Options,
)
from attachstore.storage.s3_client import camelize, post_form, put_headers
from attachstore.storage.urls import encode_key


DEFAULT_ENDPOINT = "https://objects.memory.invalid"


# =============================================================================
# STORED OBJECTS
# =============================================================================
@dataclass
class _StoredBlob:
    data: bytes
    summary: ObjectSummary


@dataclass(frozen=True, slots=True)
class RecordedCall:
    """One client call, as seen by the in-memory client."""
    operation: str
    bucket: str
    key: Optional[str]
    options: Mapping[str, Any] = field(default_factory=dict)
    thread_count: Optional[int] = None
    part_size: Optional[int] = None


class MemoryObjectBody:
    """ObjectBody over a bytes buffer."""

    __slots__ = ("_buffer",)

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    async def read(self, amt: Optional[int] = None) -> bytes:
        if amt is None or amt < 0:
            return self._buffer.read()
        return self._buffer.read(amt)

    def close(self) -> None:
        self._buffer.close()


def _read_body(body: Body) -> bytes:
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    return body.read()


# =============================================================================
# IN-MEMORY OBJECT STORE CLIENT
# =============================================================================
class InMemoryObjectStoreClient:
    """
    In-memory S3-compatible object-store client.

    Example:
        client = InMemoryObjectStoreClient()
        storage = S3Storage(StorageConfig(bucket="photos", client=client))

        await storage.upload(b"...", "a.jpg")
        assert client.get_bytes("photos", "a.jpg") == b"..."

        # Make two keys fail in the next batch delete
        client.fail_deletes.update({"cache/b", "cache/d"})
    """

    __slots__ = ("_buckets", "_lock", "_endpoint", "_failures", "fail_deletes", "calls")

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT) -> None:
        self._buckets: Dict[str, Dict[str, _StoredBlob]] = {}
        self._lock = asyncio.Lock()
        self._endpoint = endpoint.rstrip("/")
        self._failures: Dict[str, StorageError] = {}
        self.fail_deletes: Set[str] = set()
        self.calls: List[RecordedCall] = []

    # -------------------------------------------------------------------------
    # TEST HOOKS
    # -------------------------------------------------------------------------

    def fail_operation(self, operation: str, error: Optional[StorageError] = None) -> None:
        """Make every call of `operation` fail until `clear_failures()`."""
        self._failures[operation] = error or StorageError.operation_failed(
            operation, cause=ConnectionError("injected failure")
        )

    def clear_failures(self) -> None:
        self._failures.clear()
        self.fail_deletes.clear()

    def get_bytes(self, bucket: str, key: str) -> Optional[bytes]:
        blob = self._buckets.get(bucket, {}).get(key)
        return blob.data if blob else None

    def keys(self, bucket: str) -> List[str]:
        return sorted(self._buckets.get(bucket, {}))

    def calls_for(self, operation: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.operation == operation]

    def set_last_modified(self, bucket: str, key: str, when: datetime) -> None:
        """Backdate an object, e.g. to exercise age-based cleanup."""
        blob = self._buckets[bucket][key]
        blob.summary = replace(blob.summary, last_modified=when)

    def _begin(
        self,
        operation: str,
        bucket: str,
        key: Optional[str],
        options: Optional[Options] = None,
        **extra: Any,
    ) -> Optional[StorageError]:
        self.calls.append(RecordedCall(operation, bucket, key, dict(options or {}), **extra))
        error = self._failures.get(operation)
        if error is not None:
            return error.with_context(key=key, bucket=bucket)
        return None

    def _store(self, bucket: str, key: str, data: bytes, options: Options, etag: str) -> None:
        summary = ObjectSummary(
            key=key,
            size=len(data),
            last_modified=datetime.now(timezone.utc),
            etag=etag,
            content_type=options.get("content_type", "binary/octet-stream"),
            metadata=dict(options.get("metadata") or {}),
        )
        self._buckets.setdefault(bucket, {})[key] = _StoredBlob(data=data, summary=summary)

    # -------------------------------------------------------------------------
    # UPLOADS
    # -------------------------------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        key: str,
        body: Body,
        options: Options,
    ) -> Result[None, StorageError]:
        failure = self._begin("put_object", bucket, key, options)
        if failure:
            return Err(failure)

        data = _read_body(body)
        async with self._lock:
            self._store(bucket, key, data, options, hashlib.md5(data).hexdigest())
        return Ok(None)

    async def multipart_upload(
        self,
        bucket: str,
        key: str,
        body: Body,
        options: Options,
        thread_count: int,
        part_size: int,
    ) -> Result[None, StorageError]:
        failure = self._begin(
            "multipart_upload", bucket, key, options,
            thread_count=thread_count, part_size=part_size,
        )
        if failure:
            return Err(failure)

        data = _read_body(body)
        async with self._lock:
            self._store(bucket, key, data, options, _multipart_etag(data, part_size))
        return Ok(None)

    # -------------------------------------------------------------------------
    # COPIES
    # -------------------------------------------------------------------------

    async def copy_object(
        self,
        bucket: str,
        src_key: str,
        dst_key: str,
        options: Options,
        source_bucket: Optional[str] = None,
    ) -> Result[None, StorageError]:
        failure = self._begin("copy_object", bucket, dst_key, options)
        if failure:
            return Err(failure)
        return await self._copy(bucket, src_key, dst_key, options, source_bucket, "copy_object")

    async def multipart_copy(
        self,
        bucket: str,
        src_key: str,
        dst_key: str,
        options: Options,
        size: int,
        thread_count: int,
        part_size: int,
        source_bucket: Optional[str] = None,
    ) -> Result[None, StorageError]:
        failure = self._begin(
            "multipart_copy", bucket, dst_key, options,
            thread_count=thread_count, part_size=part_size,
        )
        if failure:
            return Err(failure)
        return await self._copy(bucket, src_key, dst_key, options, source_bucket, "multipart_copy")

    async def _copy(
        self,
        bucket: str,
        src_key: str,
        dst_key: str,
        options: Options,
        source_bucket: Optional[str],
        operation: str,
    ) -> Result[None, StorageError]:
        src_bucket = source_bucket or bucket
        async with self._lock:
            source = self._buckets.get(src_bucket, {}).get(src_key)
            if source is None:
                return Err(NotFoundError.for_key(src_key, operation=operation, bucket=src_bucket))

            if options.get("metadata_directive") == "REPLACE":
                self._store(bucket, dst_key, source.data, options, source.summary.etag or "")
            else:
                summary = replace(source.summary, key=dst_key, last_modified=datetime.now(timezone.utc))
                self._buckets.setdefault(bucket, {})[dst_key] = _StoredBlob(source.data, summary)
        return Ok(None)

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    async def get_object(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[ObjectBody, StorageError]:
        failure = self._begin("get_object", bucket, key, options)
        if failure:
            return Err(failure)

        async with self._lock:
            blob = self._buckets.get(bucket, {}).get(key)
            if blob is None:
                return Err(NotFoundError.for_key(key, operation="get_object", bucket=bucket))
            data = blob.data

        byte_range = options.get("range")
        if byte_range:
            data = _slice_range(data, byte_range)
        return Ok(MemoryObjectBody(data))

    async def head_object(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[ObjectSummary, StorageError]:
        failure = self._begin("head_object", bucket, key, options)
        if failure:
            return Err(failure)

        async with self._lock:
            blob = self._buckets.get(bucket, {}).get(key)
            if blob is None:
                return Err(NotFoundError.for_key(key, operation="head_object", bucket=bucket))
            return Ok(blob.summary)

    # -------------------------------------------------------------------------
    # DELETES
    # -------------------------------------------------------------------------

    async def delete_object(self, bucket: str, key: str) -> Result[None, StorageError]:
        failure = self._begin("delete_object", bucket, key)
        if failure:
            return Err(failure)

        async with self._lock:
            self._buckets.get(bucket, {}).pop(key, None)
        return Ok(None)

    async def delete_objects(
        self,
        bucket: str,
        keys: Sequence[str],
    ) -> Result[DeleteResult, StorageError]:
        """Keys in `fail_deletes` come back as AccessDenied errors and stay stored."""
        failure = self._begin("delete_objects", bucket, None, {"keys": list(keys)})
        if failure:
            return Err(failure)
        if len(keys) > C.MAX_BATCH_DELETE:
            return Err(StorageError.operation_failed("delete_objects", bucket=bucket).with_context(
                detail=f"at most {C.MAX_BATCH_DELETE} keys per call, got {len(keys)}"
            ))

        deleted: List[str] = []
        errors: List[KeyFailure] = []
        async with self._lock:
            objects = self._buckets.get(bucket, {})
            for key in keys:
                if key in self.fail_deletes:
                    errors.append(KeyFailure(key=key, code="AccessDenied", message="Access Denied"))
                    continue
                objects.pop(key, None)
                deleted.append(key)
        return Ok(DeleteResult(deleted=tuple(deleted), errors=tuple(errors)))

    # -------------------------------------------------------------------------
    # LISTING
    # -------------------------------------------------------------------------

    async def list_objects(
        self,
        bucket: str,
        prefix: Optional[str],
        continuation_token: Optional[str] = None,
        page_size: int = C.MAX_LIST_PAGE_SIZE,
    ) -> Result[ListPage, StorageError]:
        failure = self._begin("list_objects", bucket, prefix, {"continuation_token": continuation_token})
        if failure:
            return Err(failure)

        async with self._lock:
            objects = self._buckets.get(bucket, {})
            keys = sorted(k for k in objects if k.startswith(prefix or ""))

            # Token is the last key of the previous page (S3 StartAfter)
            start_idx = bisect.bisect_right(keys, continuation_token) if continuation_token else 0
            page_keys = keys[start_idx:start_idx + page_size]
            page = tuple(objects[k].summary for k in page_keys)
            next_token = page_keys[-1] if start_idx + page_size < len(keys) else None
        return Ok(ListPage(objects=page, next_token=next_token))

    # -------------------------------------------------------------------------
    # URLS
    # -------------------------------------------------------------------------

    async def presigned_url(
        self,
        bucket: str,
        key: str,
        method: str,
        options: Options,
    ) -> Result[str, StorageError]:
        if str(method).lower() not in ("get", "put"):
            return Err(ConfigError.unsupported_method(method))  # type: ignore[arg-type]
        failure = self._begin("presigned_url", bucket, key, options)
        if failure:
            return Err(failure)

        params = dict(options)
        query = {
            "X-Amz-Method": str(method).upper(),
            "X-Amz-Expires": params.pop("expires_in", None) or C.DEFAULT_PRESIGN_EXPIRY,
        }
        query.update({camelize(k): v for k, v in params.items() if v is not None and k != "metadata"})
        return Ok(f"{self.public_url(bucket, key)}?{urlencode(sorted(query.items()))}")

    async def presigned_put(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[Tuple[str, Dict[str, str]], StorageError]:
        result = await self.presigned_url(bucket, key, "put", options)
        if result.is_err():
            return result
        return Ok((result.unwrap(), put_headers(options)))

    async def presigned_post(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[Tuple[str, Dict[str, str]], StorageError]:
        failure = self._begin("presigned_post", bucket, key, options)
        if failure:
            return Err(failure)

        fields, _conditions = post_form(options)
        return Ok((f"{self._endpoint}/{bucket}", {"key": key, **fields}))

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._endpoint}/{bucket}/{encode_key(key)}"


def _multipart_etag(data: bytes, part_size: int) -> str:
    """S3-style multipart ETag: md5 of the part md5s, dash, part count."""
    digests = [
        hashlib.md5(data[offset:offset + part_size]).digest()
        for offset in range(0, max(len(data), 1), part_size)
    ]
    return f"{hashlib.md5(b''.join(digests)).hexdigest()}-{len(digests)}"


def _slice_range(data: bytes, byte_range: str) -> bytes:
    """Apply an HTTP `bytes=first-last` range (inclusive, open-ended allowed)."""
    first, _, last = byte_range.removeprefix("bytes=").partition("-")
    if not first:
        return data[-int(last):]
    end = int(last) + 1 if last else len(data)
    return data[int(first):end]


__all__ = [
    "InMemoryObjectStoreClient",
    "MemoryObjectBody",
    "RecordedCall",
]
