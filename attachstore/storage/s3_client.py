"""
aioboto3 Object-Store Client
============================

`ObjectStoreClient` implementation for AWS S3 and S3-compatible services
(MinIO, Cloudflare R2) on top of aioboto3.

Design Principles:
------------------
1. **Result Monad**: collaborator failures come back as Err(StorageError)
   with the botocore exception kept as `cause`
2. **No Retries**: botocore's `retries` config is the only retry policy
3. **Manual Multipart**: create / upload_part / complete, with part
   requests bounded by a semaphore and the upload aborted on failure
4. **Lazy Client**: the aiobotocore client is created on first use, once,
   under an asyncio.Lock

Parameter Translation:
----------------------
Options arrive as snake_case and are camelized to botocore names, keeping
AWS acronyms upper-case:

| Option                 | botocore parameter   |
|------------------------|----------------------|
| acl                    | ACL                  |
| content_type           | ContentType          |
| sse_kms_key_id         | SSEKMSKeyId          |
| sse_customer_key_md5   | SSECustomerKeyMD5    |

Names that already contain upper-case letters pass through unchanged.

Author: attachstore maintainers
License: MIT
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING, Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple,
)
from urllib.parse import urlsplit

from botocore.exceptions import ClientError

from attachstore.core import constants as C
from attachstore.core.errors import ConfigError, KeyFailure, NotFoundError, StorageError
from attachstore.core.types import Err, Ok, Result
from attachstore.observability.logging import StructuredLogger
from attachstore.storage.config import ClientConfig
from attachstore.storage.protocols import (
    Body,
    DeleteResult,
    ListPage,
    ObjectBody,
    ObjectSummary,
    Options,
)
from attachstore.storage.urls import encode_key

if TYPE_CHECKING:
    from types_aiobotocore_s3 import S3Client


# =============================================================================
# PARAMETER TRANSLATION
# =============================================================================

_ACRONYMS: Dict[str, str] = {
    "acl": "ACL",
    "sse": "SSE",
    "kms": "KMS",
    "md5": "MD5",
    "crc32": "CRC32",
    "crc32c": "CRC32C",
    "sha1": "SHA1",
    "sha256": "SHA256",
}

# S3 error codes that mean "no such object"
_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})

# Parameters an UploadPart request accepts
_PART_PARAMS = frozenset({
    "SSECustomerAlgorithm",
    "SSECustomerKey",
    "SSECustomerKeyMD5",
    "RequestPayer",
    "ExpectedBucketOwner",
})

# Parameters an UploadPartCopy request accepts on top of _PART_PARAMS
_PART_COPY_PARAMS = _PART_PARAMS | frozenset({
    "CopySourceSSECustomerAlgorithm",
    "CopySourceSSECustomerKey",
    "CopySourceSSECustomerKeyMD5",
    "CopySourceIfMatch",
    "CopySourceIfModifiedSince",
    "CopySourceIfNoneMatch",
    "CopySourceIfUnmodifiedSince",
    "ExpectedSourceBucketOwner",
})

# Copy-only parameters CreateMultipartUpload rejects
_COPY_ONLY_PARAMS = _PART_COPY_PARAMS - _PART_PARAMS | frozenset({
    "MetadataDirective",
    "TaggingDirective",
})

# Source headers carried over when a multipart copy keeps source metadata
_INHERITED_HEAD_FIELDS = (
    "ContentType",
    "ContentDisposition",
    "ContentEncoding",
    "ContentLanguage",
    "CacheControl",
    "Metadata",
)

# Options with a fixed HTTP header spelling
_HEADER_NAMES: Dict[str, str] = {
    "content_type": "Content-Type",
    "content_disposition": "Content-Disposition",
    "content_encoding": "Content-Encoding",
    "content_language": "Content-Language",
    "content_md5": "Content-MD5",
    "cache_control": "Cache-Control",
    "expires": "Expires",
    "acl": "x-amz-acl",
    "server_side_encryption": "x-amz-server-side-encryption",
    "sse_kms_key_id": "x-amz-server-side-encryption-aws-kms-key-id",
    "sse_kms_encryption_context": "x-amz-server-side-encryption-context",
    "sse_customer_algorithm": "x-amz-server-side-encryption-customer-algorithm",
    "sse_customer_key": "x-amz-server-side-encryption-customer-key",
    "sse_customer_key_md5": "x-amz-server-side-encryption-customer-key-MD5",
    "bucket_key_enabled": "x-amz-server-side-encryption-bucket-key-enabled",
}

# POST form field names; encryption keys use the server_side_encryption_* spelling
_FORM_FIELD_NAMES: Dict[str, str] = {
    "acl": "acl",
    "content_type": "Content-Type",
    "content_disposition": "Content-Disposition",
    "content_encoding": "Content-Encoding",
    "cache_control": "Cache-Control",
    "expires": "Expires",
    "success_action_status": "success_action_status",
    "success_action_redirect": "success_action_redirect",
    "tagging": "tagging",
    "server_side_encryption": "x-amz-server-side-encryption",
    "server_side_encryption_aws_kms_key_id": "x-amz-server-side-encryption-aws-kms-key-id",
    "server_side_encryption_context": "x-amz-server-side-encryption-context",
    "server_side_encryption_customer_algorithm": "x-amz-server-side-encryption-customer-algorithm",
    "server_side_encryption_customer_key": "x-amz-server-side-encryption-customer-key",
    "server_side_encryption_customer_key_md5": "x-amz-server-side-encryption-customer-key-MD5",
}


def camelize(name: str) -> str:
    """
    Translate a snake_case option name to its botocore parameter name.

    >>> camelize("sse_customer_key_md5")
    'SSECustomerKeyMD5'
    >>> camelize("ContentType")
    'ContentType'
    """
    if any(ch.isupper() for ch in name):
        return name
    return "".join(_ACRONYMS.get(part, part.capitalize()) for part in name.split("_"))


def to_boto_params(options: Mapping[str, Any]) -> Dict[str, Any]:
    """Camelize every option name, dropping options set to None."""
    return {camelize(key): value for key, value in options.items() if value is not None}


def put_headers(options: Mapping[str, Any]) -> Dict[str, str]:
    """
    Headers an uploader must send with a presigned PUT.

    >>> put_headers({"content_type": "image/png", "metadata": {"a": "1"}})
    {'Content-Type': 'image/png', 'x-amz-meta-a': '1'}
    """
    headers: Dict[str, str] = {}
    for key, value in options.items():
        if value is None or key == "expires_in":
            continue
        if key == "metadata":
            headers.update({f"x-amz-meta-{name}": str(v) for name, v in value.items()})
        elif key in _HEADER_NAMES:
            headers[_HEADER_NAMES[key]] = _header_value(value)
        else:
            headers["x-amz-" + key.replace("_", "-")] = _header_value(value)
    return headers


def post_form(options: Mapping[str, Any]) -> Tuple[Dict[str, str], List[Any]]:
    """
    Form fields and policy conditions for a presigned POST.

    Every prefilled field gets an exact-match condition. Besides field
    options this understands:

    - `content_length_range`: (min, max) bytes
    - `content_type_starts_with`: prefix the uploaded Content-Type must have
    - `conditions`: extra raw policy conditions, appended verbatim
    """
    fields: Dict[str, str] = {}
    conditions: List[Any] = []

    for key, value in options.items():
        if value is None or key == "expires_in":
            continue
        if key == "content_length_range":
            low, high = value
            conditions.append(["content-length-range", int(low), int(high)])
        elif key == "content_type_starts_with":
            conditions.append(["starts-with", "$Content-Type", value])
        elif key == "conditions":
            conditions.extend(value)
        elif key == "metadata":
            for name, v in value.items():
                fields[f"x-amz-meta-{name}"] = str(v)
        else:
            name = _FORM_FIELD_NAMES.get(key, "x-amz-" + key.replace("_", "-"))
            fields[name] = _header_value(value)

    conditions.extend({name: value} for name, value in fields.items())
    return fields, conditions


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _strip_etag(etag: Optional[str]) -> Optional[str]:
    return etag.strip('"') if etag else None


async def _iter_chunks(body: Body, part_size: int) -> AsyncIterator[bytes]:
    """Yield `part_size` slices of an in-memory body or a readable stream.

    File reads run in a worker thread.
    """
    if isinstance(body, (bytes, bytearray, memoryview)):
        view = memoryview(body)
        for offset in range(0, len(view), part_size):
            yield bytes(view[offset:offset + part_size])
        return
    while True:
        chunk = await asyncio.to_thread(body.read, part_size)
        if not chunk:
            return
        yield chunk


async def _read_all(body: Body) -> bytes:
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    return await asyncio.to_thread(body.read)


# =============================================================================
# METRICS
# =============================================================================

@dataclass(slots=True)
class ClientMetrics:
    """
    Per-client operation counters.

    Latencies are accumulated in nanoseconds.
    """
    put_count: int = 0
    multipart_count: int = 0
    copy_count: int = 0
    get_count: int = 0
    head_count: int = 0
    delete_count: int = 0
    list_count: int = 0
    presign_count: int = 0

    bytes_uploaded: int = 0
    put_latency_sum_ns: int = 0

    error_count: int = 0

    def record_upload(self, size_bytes: int, latency_ns: int) -> None:
        self.bytes_uploaded += size_bytes
        self.put_latency_sum_ns += latency_ns


# =============================================================================
# AIOBOTO3 CLIENT
# =============================================================================

class AioS3Client:
    """
    aioboto3-backed ObjectStoreClient.

    Either builds its own aiobotocore client from a ClientConfig (and closes
    it in `close()`), or wraps one handed in by the caller (left open).

    Example:
        >>> client = AioS3Client(ClientConfig(region="eu-central-1"))
        >>> result = await client.head_object("photos", "a.jpg", {})
        >>> await client.close()
    """

    __slots__ = (
        "_config",
        "_client",
        "_client_cm",
        "_lock",
        "_metrics",
        "_logger",
    )

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        client: Optional["S3Client"] = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._client: Optional["S3Client"] = client
        self._client_cm: Any = None
        self._lock = asyncio.Lock()
        self._metrics = ClientMetrics()
        self._logger = StructuredLogger(__name__)

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result["S3Client", StorageError]:
        """
        Return the aiobotocore client, creating it on first call.

        Returns:
            Ok(client), or Err(StorageError) if it could not be created.
        """
        if self._client is not None:
            return Ok(self._client)

        async with self._lock:
            if self._client is not None:
                return Ok(self._client)
            try:
                import aioboto3
            except ImportError as e:
                return Err(StorageError.unavailable("aioboto3 package not installed: pip install aioboto3", e))

            try:
                session = aioboto3.Session()
                self._client_cm = session.client("s3", **self._config.get_boto_config())
                self._client = await self._client_cm.__aenter__()
            except Exception as e:
                self._metrics.error_count += 1
                self._client_cm = None
                return Err(StorageError.unavailable(f"S3 client creation failed: {e}", e))

            self._logger.debug(
                "S3 client created",
                region=self._config.region,
                endpoint=self._config.endpoint_url,
            )
            return Ok(self._client)

    async def close(self) -> None:
        """
        Close a client this instance created. Safe to call multiple times.
        """
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
            self._client = None

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    def _failure(
        self,
        operation: str,
        bucket: str,
        key: Optional[str],
        error: BaseException,
    ) -> StorageError:
        self._metrics.error_count += 1
        if isinstance(error, ClientError):
            code = str(error.response.get("Error", {}).get("Code", ""))
            status = str(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
            if code in _NOT_FOUND_CODES or status == "404":
                return NotFoundError.for_key(key or "", operation=operation, bucket=bucket, cause=error)
        return StorageError.operation_failed(operation, key, cause=error, bucket=bucket)

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
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        start_ns = time.perf_counter_ns()
        try:
            data = await _read_all(body)
            await s3.put_object(Bucket=bucket, Key=key, Body=data, **to_boto_params(options))
        except Exception as e:
            return Err(self._failure("put_object", bucket, key, e))

        self._metrics.put_count += 1
        self._metrics.record_upload(len(data), time.perf_counter_ns() - start_ns)
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
        """
        Chunked upload; at most `thread_count` parts are read and in flight.
        """
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        params = to_boto_params(options)
        part_params = {k: v for k, v in params.items() if k in _PART_PARAMS}
        start_ns = time.perf_counter_ns()

        try:
            created = await s3.create_multipart_upload(Bucket=bucket, Key=key, **params)
        except Exception as e:
            return Err(self._failure("create_multipart_upload", bucket, key, e))
        upload_id = created["UploadId"]

        semaphore = asyncio.Semaphore(thread_count)
        size = 0

        async def upload_part(number: int, chunk: bytes) -> Dict[str, Any]:
            try:
                response = await s3.upload_part(
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=number,
                    Body=chunk,
                    **part_params,
                )
                return {"PartNumber": number, "ETag": response["ETag"]}
            finally:
                semaphore.release()

        tasks: List["asyncio.Task[Dict[str, Any]]"] = []
        chunks = _iter_chunks(body, part_size)
        try:
            number = 0
            async for chunk in chunks:
                await semaphore.acquire()
                if any(t.done() and not t.cancelled() and t.exception() for t in tasks):
                    semaphore.release()
                    break
                number += 1
                size += len(chunk)
                tasks.append(asyncio.create_task(upload_part(number, chunk)))
            await chunks.aclose()

            if not tasks:
                await semaphore.acquire()
                tasks.append(asyncio.create_task(upload_part(1, b"")))

            parts = sorted(await asyncio.gather(*tasks), key=lambda p: p["PartNumber"])
            await s3.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
                **part_params,
            )
        except Exception as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self._abort(s3, bucket, key, upload_id)
            return Err(self._failure("multipart_upload", bucket, key, e))

        self._metrics.multipart_count += 1
        self._metrics.record_upload(size, time.perf_counter_ns() - start_ns)
        self._logger.debug("Multipart upload complete", bucket=bucket, key=key, parts=len(tasks), size=size)
        return Ok(None)

    async def _abort(self, s3: "S3Client", bucket: str, key: str, upload_id: str) -> None:
        try:
            await s3.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
        except Exception as e:
            self._logger.warning(
                "Multipart abort failed",
                bucket=bucket,
                key=key,
                upload_id=upload_id,
                error=str(e),
            )

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
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        copy_source = {"Bucket": source_bucket or bucket, "Key": src_key}
        try:
            await s3.copy_object(Bucket=bucket, Key=dst_key, CopySource=copy_source, **to_boto_params(options))
        except Exception as e:
            return Err(self._failure("copy_object", bucket, src_key, e))

        self._metrics.copy_count += 1
        return Ok(None)

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
        """
        Server-side copy in byte ranges of `part_size`.

        Unless `metadata_directive` is REPLACE, content headers and user
        metadata are read from the source first, since a multipart upload
        does not inherit them.
        """
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        params = to_boto_params(options)
        copy_source = {"Bucket": source_bucket or bucket, "Key": src_key}
        part_params = {k: v for k, v in params.items() if k in _PART_COPY_PARAMS}
        create_params = {k: v for k, v in params.items() if k not in _COPY_ONLY_PARAMS}

        if params.get("MetadataDirective") != "REPLACE":
            head_params = {
                k[len("CopySource"):]: v for k, v in params.items()
                if k.startswith("CopySourceSSECustomer")
            }
            try:
                head = await s3.head_object(Bucket=copy_source["Bucket"], Key=src_key, **head_params)
            except Exception as e:
                return Err(self._failure("head_object", copy_source["Bucket"], src_key, e))
            for name in _INHERITED_HEAD_FIELDS:
                if name in head and name not in create_params:
                    create_params[name] = head[name]

        try:
            created = await s3.create_multipart_upload(Bucket=bucket, Key=dst_key, **create_params)
        except Exception as e:
            return Err(self._failure("create_multipart_upload", bucket, dst_key, e))
        upload_id = created["UploadId"]

        semaphore = asyncio.Semaphore(thread_count)

        async def copy_part(number: int, first: int, last: int) -> Dict[str, Any]:
            async with semaphore:
                response = await s3.upload_part_copy(
                    Bucket=bucket,
                    Key=dst_key,
                    UploadId=upload_id,
                    PartNumber=number,
                    CopySource=copy_source,
                    CopySourceRange=f"bytes={first}-{last}",
                    **part_params,
                )
                return {"PartNumber": number, "ETag": response["CopyPartResult"]["ETag"]}

        ranges = [
            (number, offset, min(offset + part_size, size) - 1)
            for number, offset in enumerate(range(0, size, part_size), start=1)
        ]
        tasks = [asyncio.create_task(copy_part(*r)) for r in ranges]
        try:
            parts = await asyncio.gather(*tasks)
            await s3.complete_multipart_upload(
                Bucket=bucket,
                Key=dst_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": sorted(parts, key=lambda p: p["PartNumber"])},
            )
        except Exception as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self._abort(s3, bucket, dst_key, upload_id)
            return Err(self._failure("multipart_copy", bucket, src_key, e))

        self._metrics.copy_count += 1
        self._logger.debug(
            "Multipart copy complete",
            bucket=bucket,
            source=src_key,
            key=dst_key,
            parts=len(ranges),
        )
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
        """Open the object; the caller reads and closes the returned body."""
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        try:
            response = await s3.get_object(Bucket=bucket, Key=key, **to_boto_params(options))
        except Exception as e:
            return Err(self._failure("get_object", bucket, key, e))

        self._metrics.get_count += 1
        return Ok(response["Body"])

    async def head_object(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[ObjectSummary, StorageError]:
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        try:
            response = await s3.head_object(Bucket=bucket, Key=key, **to_boto_params(options))
        except Exception as e:
            return Err(self._failure("head_object", bucket, key, e))

        self._metrics.head_count += 1
        return Ok(ObjectSummary(
            key=key,
            size=response.get("ContentLength", 0),
            last_modified=response.get("LastModified"),
            etag=_strip_etag(response.get("ETag")),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata", {})),
            version_id=response.get("VersionId"),
        ))

    # -------------------------------------------------------------------------
    # DELETES
    # -------------------------------------------------------------------------

    async def delete_object(self, bucket: str, key: str) -> Result[None, StorageError]:
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        try:
            await s3.delete_object(Bucket=bucket, Key=key)
        except Exception as e:
            return Err(self._failure("delete_object", bucket, key, e))

        self._metrics.delete_count += 1
        return Ok(None)

    async def delete_objects(
        self,
        bucket: str,
        keys: Sequence[str],
    ) -> Result[DeleteResult, StorageError]:
        """
        One DeleteObjects call. Quiet mode is off so that successful keys
        are confirmed individually.
        """
        if len(keys) > C.MAX_BATCH_DELETE:
            return Err(StorageError.operation_failed("delete_objects", bucket=bucket).with_context(
                detail=f"at most {C.MAX_BATCH_DELETE} keys per call, got {len(keys)}"
            ))
        if not keys:
            return Ok(DeleteResult())

        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        try:
            response = await s3.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": False},
            )
        except Exception as e:
            return Err(self._failure("delete_objects", bucket, None, e))

        self._metrics.delete_count += 1
        return Ok(DeleteResult(
            deleted=tuple(item["Key"] for item in response.get("Deleted", [])),
            errors=tuple(
                KeyFailure(
                    key=item["Key"],
                    code=item.get("Code", "Unknown"),
                    message=item.get("Message", ""),
                )
                for item in response.get("Errors", [])
            ),
        ))

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
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        list_kwargs: Dict[str, Any] = {"Bucket": bucket, "MaxKeys": page_size}
        if prefix:
            list_kwargs["Prefix"] = prefix
        if continuation_token:
            list_kwargs["ContinuationToken"] = continuation_token

        try:
            response = await s3.list_objects_v2(**list_kwargs)
        except Exception as e:
            return Err(self._failure("list_objects", bucket, prefix, e))

        self._metrics.list_count += 1
        objects = tuple(
            ObjectSummary(
                key=obj["Key"],
                size=obj.get("Size", 0),
                last_modified=obj.get("LastModified"),
                etag=_strip_etag(obj.get("ETag")),
            )
            for obj in response.get("Contents", [])
        )
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return Ok(ListPage(objects=objects, next_token=next_token))

    # -------------------------------------------------------------------------
    # PRESIGNED REQUESTS
    # -------------------------------------------------------------------------

    async def presigned_url(
        self,
        bucket: str,
        key: str,
        method: str,
        options: Options,
    ) -> Result[str, StorageError]:
        client_method = {"get": "get_object", "put": "put_object"}.get(str(method).lower())
        if client_method is None:
            return Err(ConfigError.unsupported_method(method))  # type: ignore[arg-type]

        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        params = dict(options)
        expires_in = params.pop("expires_in", None) or C.DEFAULT_PRESIGN_EXPIRY
        try:
            url = await s3.generate_presigned_url(
                ClientMethod=client_method,
                Params={"Bucket": bucket, "Key": key, **to_boto_params(params)},
                ExpiresIn=expires_in,
            )
        except Exception as e:
            return Err(self._failure("presigned_url", bucket, key, e))

        self._metrics.presign_count += 1
        return Ok(url)

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
        connected = await self.connect()
        if connected.is_err():
            return connected
        s3 = connected.unwrap()

        expires_in = options.get("expires_in") or C.DEFAULT_PRESIGN_EXPIRY
        fields, conditions = post_form(options)
        try:
            response = await s3.generate_presigned_post(
                Bucket=bucket,
                Key=key,
                Fields=fields,
                Conditions=conditions,
                ExpiresIn=expires_in,
            )
        except Exception as e:
            return Err(self._failure("presigned_post", bucket, key, e))

        self._metrics.presign_count += 1
        return Ok((response["url"], dict(response["fields"])))

    # -------------------------------------------------------------------------
    # PUBLIC URLS
    # -------------------------------------------------------------------------

    def public_url(self, bucket: str, key: str) -> str:
        """
        Unsigned object URL, built locally.

        Virtual-hosted style unless path style is forced or the bucket name
        is not usable as a host label.
        """
        path = encode_key(key)
        cfg = self._config

        if cfg.use_accelerate_endpoint:
            return f"https://{bucket}.s3-accelerate.amazonaws.com/{path}"

        if cfg.endpoint_url:
            parts = urlsplit(cfg.endpoint_url)
            base_path = parts.path.rstrip("/")
            if cfg.force_path_style or not _dns_compatible(bucket):
                return f"{parts.scheme}://{parts.netloc}{base_path}/{bucket}/{path}"
            return f"{parts.scheme}://{bucket}.{parts.netloc}{base_path}/{path}"

        scheme = "https" if cfg.use_ssl else "http"
        region = cfg.region or "us-east-1"
        host = "s3.amazonaws.com" if region == "us-east-1" else f"s3.{region}.amazonaws.com"
        if cfg.force_path_style or not _dns_compatible(bucket):
            return f"{scheme}://{host}/{bucket}/{path}"
        return f"{scheme}://{bucket}.{host}/{path}"


def _dns_compatible(bucket: str) -> bool:
    if not 3 <= len(bucket) <= 63 or "." in bucket:
        return False
    if bucket[0] == "-" or bucket[-1] == "-":
        return False
    return all(ch.islower() or ch.isdigit() or ch == "-" for ch in bucket)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "AioS3Client",
    "ClientMetrics",
    "camelize",
    "to_boto_params",
    "put_headers",
    "post_form",
]
