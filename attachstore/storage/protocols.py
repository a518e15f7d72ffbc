"""
Object-Store Client Protocol: the Capability Interface of the Adapter

Provides structural subtyping protocols (PEP 544) for the network side of
the adapter. The storage facade only ever talks to an `ObjectStoreClient`;
whether that is the aioboto3 client, a client-side-encrypting wrapper or
the in-memory client is invisible to it.

Design Principles:
    - Result monad at this seam: clients return Err(StorageError) instead
      of raising, and Err(NotFoundError) for missing objects
    - Async-first: every network call is a coroutine
    - Options are snake_case mappings (`acl`, `content_type`, `sse_*`);
      each client translates them to its own wire names
    - Value types are frozen dataclasses

Author: attachstore maintainers
License: MIT
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    BinaryIO,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from attachstore.core.errors import KeyFailure, StorageError
from attachstore.core.types import Result


# A request body: raw bytes or a readable binary file object
Body = Union[bytes, bytearray, memoryview, BinaryIO]

Options = Mapping[str, Any]


# =============================================================================
# VALUE TYPES
# =============================================================================
@dataclass(frozen=True, slots=True)
class ObjectSummary:
    """
    Metadata of one stored object.

    Listings fill key, size, last_modified and etag; head calls add
    content_type and user metadata.

    Attributes:
        key: Full object key (prefix included).
        size: Object size in bytes.
        last_modified: Last modification timestamp (UTC).
        etag: Entity tag without surrounding quotes.
        content_type: MIME type, when known.
        metadata: User-defined metadata (`x-amz-meta-*`).
        version_id: Version ID for versioned buckets.
    """
    key: str
    size: int
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    version_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ListPage:
    """One page of a listing. `next_token` is None on the last page."""
    objects: Sequence[ObjectSummary]
    next_token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Outcome of one batch delete call."""
    deleted: Sequence[str] = ()
    errors: Sequence[KeyFailure] = ()


# =============================================================================
# STREAMING BODY
# =============================================================================
@runtime_checkable
class ObjectBody(Protocol):
    """Readable response body of a get call."""

    async def read(self, amt: Optional[int] = None) -> bytes:
        """Read up to `amt` bytes, or everything left when `amt` is None."""
        ...

    def close(self) -> None:
        ...


# =============================================================================
# OBJECT STORE CLIENT
# =============================================================================
@runtime_checkable
class ObjectStoreClient(Protocol):
    """
    Capability interface the storage facade requires from a client.

    Every method returns a Result; none of them raise for collaborator
    failures. Missing objects are reported as Err(NotFoundError).
    """

    @abstractmethod
    async def put_object(
        self,
        bucket: str,
        key: str,
        body: Body,
        options: Options,
    ) -> Result[None, StorageError]:
        """Single-request upload."""
        ...

    @abstractmethod
    async def multipart_upload(
        self,
        bucket: str,
        key: str,
        body: Body,
        options: Options,
        thread_count: int,
        part_size: int,
    ) -> Result[None, StorageError]:
        """Chunked upload with at most `thread_count` parts in flight."""
        ...

    @abstractmethod
    async def copy_object(
        self,
        bucket: str,
        src_key: str,
        dst_key: str,
        options: Options,
        source_bucket: Optional[str] = None,
    ) -> Result[None, StorageError]:
        """Server-side single-request copy."""
        ...

    @abstractmethod
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
        """Server-side copy in byte-range parts."""
        ...

    @abstractmethod
    async def get_object(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[ObjectBody, StorageError]:
        ...

    @abstractmethod
    async def head_object(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[ObjectSummary, StorageError]:
        ...

    @abstractmethod
    async def delete_object(self, bucket: str, key: str) -> Result[None, StorageError]:
        """Delete one key. Deleting a missing key succeeds."""
        ...

    @abstractmethod
    async def delete_objects(
        self,
        bucket: str,
        keys: Sequence[str],
    ) -> Result[DeleteResult, StorageError]:
        """Delete up to 1000 keys in one call, reporting per-key errors."""
        ...

    @abstractmethod
    async def list_objects(
        self,
        bucket: str,
        prefix: Optional[str],
        continuation_token: Optional[str] = None,
        page_size: int = 1000,
    ) -> Result[ListPage, StorageError]:
        ...

    @abstractmethod
    async def presigned_url(
        self,
        bucket: str,
        key: str,
        method: str,
        options: Options,
    ) -> Result[str, StorageError]:
        """Signed, expiring URL for `method` ("get" or "put")."""
        ...

    @abstractmethod
    async def presigned_put(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[tuple[str, dict[str, str]], StorageError]:
        """Signed PUT URL plus the headers the uploader must send."""
        ...

    @abstractmethod
    async def presigned_post(
        self,
        bucket: str,
        key: str,
        options: Options,
    ) -> Result[tuple[str, dict[str, str]], StorageError]:
        """Form POST URL plus the form fields to submit with the file."""
        ...

    @abstractmethod
    def public_url(self, bucket: str, key: str) -> str:
        """Unsigned object URL. Local construction, no network call."""
        ...


__all__ = [
    "Body",
    "Options",
    "ObjectSummary",
    "ListPage",
    "DeleteResult",
    "ObjectBody",
    "ObjectStoreClient",
]
