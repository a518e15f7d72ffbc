"""
Bulk Operations over Prefixed Listings
======================================

Prefix deletion and predicate-based cleanup (e.g. evicting cache entries
older than a day) over listings of unbounded size.

Pagination Model:
-----------------
Listing is strictly sequential: each page's continuation token gates the
next request. Matching keys accumulate into batches of at most
`batch_size` (S3 allows 1000 keys per DeleteObjects call) and a batch is
issued as soon as it is full, so memory stays bounded by one page plus one
batch.

Failure Model:
--------------
- A listing failure aborts the run with StorageError (there is no token to
  continue from).
- Per-key delete errors, and whole-batch transport errors, are recorded and
  the run continues. After the scan one BulkDeletePartialFailure names
  every key that failed. Failed batches are never retried here.

Cancellation:
-------------
A CancellationToken is checked before each page fetch and before each
batch is issued. A batch already issued runs to completion
(`asyncio.shield`) because a half-observed DeleteObjects call cannot be
safely retried.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, List, Mapping, Optional, Union

from attachstore.core import constants as C
from attachstore.core.errors import (
    AttachStoreError,
    BulkDeletePartialFailure,
    InvalidKeyError,
    KeyFailure,
    NotFoundError,
)
from attachstore.core.types import unwrap_or_raise
from attachstore.observability.logging import StructuredLogger
from attachstore.storage.keys import KeyResolver
from attachstore.storage.options import EncryptionTarget, merge_options
from attachstore.storage.protocols import ObjectStoreClient, ObjectSummary

Predicate = Callable[[ObjectSummary], Union[bool, Awaitable[bool]]]


class CancellationToken:
    """
    Cooperative cancellation for long-running bulk operations.

    Example:
        token = CancellationToken()
        task = asyncio.create_task(storage.clear(is_stale, cancel=token))
        ...
        token.cancel()   # stops before the next page or batch
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BulkDeleteReport:
    """
    Outcome of one bulk delete run.

    Attributes:
        prefix: Listing prefix (full key space) that was scanned.
        deleted: Keys the store confirmed deleted.
        failures: Keys that could not be deleted, with the store's error.
        scanned: Objects seen in the listing.
        batches: Batch delete calls issued.
        cancelled: True if the run stopped at a cancellation point.
    """
    prefix: Optional[str]
    deleted: List[str] = field(default_factory=list)
    failures: List[KeyFailure] = field(default_factory=list)
    scanned: int = 0
    batches: int = 0
    cancelled: bool = False

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


class BulkOperationEngine:
    """
    Existence checks and prefix-scoped deletes for one bucket namespace.
    """

    __slots__ = ("_client", "_bucket", "_resolver", "_batch_size", "_page_size", "_encryption", "_logger")

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        resolver: KeyResolver,
        batch_size: int = C.MAX_BATCH_DELETE,
        page_size: int = C.MAX_LIST_PAGE_SIZE,
        encryption: Optional[Mapping[str, Any]] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._resolver = resolver
        self._batch_size = min(batch_size, C.MAX_BATCH_DELETE)
        self._page_size = page_size
        self._encryption = dict(encryption or {})
        self._logger = logger or StructuredLogger(__name__)

    # -------------------------------------------------------------------------
    # EXISTENCE
    # -------------------------------------------------------------------------

    async def exists(self, key: str) -> bool:
        """
        HEAD the object. Missing objects are False; any other failure raises.
        """
        full_key = self._resolver.resolve(key)
        options = merge_options(None, None, self._encryption, EncryptionTarget.DOWNLOAD)
        result = await self._client.head_object(self._bucket, full_key, options)
        if result.is_ok():
            return True
        if isinstance(result.error, NotFoundError):
            return False
        return unwrap_or_raise(result, operation="head_object", key=full_key, bucket=self._bucket)

    # -------------------------------------------------------------------------
    # BULK DELETES
    # -------------------------------------------------------------------------

    async def delete_prefixed(
        self,
        prefix: str,
        cancel: Optional[CancellationToken] = None,
    ) -> BulkDeleteReport:
        """
        Delete every object under `prefix` (relative to the storage prefix).

        An empty prefix is rejected; use `clear()` to empty the namespace.

        Raises:
            InvalidKeyError: If `prefix` is empty or only slashes.
            BulkDeletePartialFailure: If any key failed to delete.
            StorageError: If a listing call failed.
        """
        if not prefix or (isinstance(prefix, str) and not prefix.strip("/")):
            raise InvalidKeyError.empty()
        list_prefix = self._resolver.resolve_prefix(prefix)
        return await self._delete_matching(list_prefix, None, False, cancel)

    async def clear(
        self,
        predicate: Optional[Predicate] = None,
        *,
        with_metadata: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> BulkDeleteReport:
        """
        Delete objects of the storage namespace selected by `predicate`.

        The predicate receives the listing's ObjectSummary (full key, size,
        last_modified, etag). With `with_metadata=True` it receives the
        HEAD result instead, which adds content type and user metadata.
        Without a predicate everything in the namespace is deleted.

        Example:
            cutoff = datetime.now(timezone.utc) - timedelta(days=7)
            await engine.clear(lambda obj: obj.last_modified < cutoff)
        """
        list_prefix = self._resolver.resolve_prefix(None)
        return await self._delete_matching(list_prefix, predicate, with_metadata, cancel)

    async def _delete_matching(
        self,
        list_prefix: Optional[str],
        predicate: Optional[Predicate],
        with_metadata: bool,
        cancel: Optional[CancellationToken],
    ) -> BulkDeleteReport:
        report = BulkDeleteReport(prefix=list_prefix)
        pending: List[str] = []

        scan = self._scan(list_prefix, cancel, report)
        try:
            async for summary in scan:
                if not await self._selected(summary, predicate, with_metadata, report):
                    continue
                pending.append(summary.key)
                if len(pending) >= self._batch_size:
                    if self._stop_requested(cancel, report):
                        break
                    await self._delete_batch(pending, report)
                    pending = []
            else:
                if pending and not self._stop_requested(cancel, report):
                    await self._delete_batch(pending, report)
        finally:
            await scan.aclose()

        self._logger.info(
            "Bulk delete finished",
            bucket=self._bucket,
            prefix=list_prefix,
            scanned=report.scanned,
            deleted=report.deleted_count,
            failed=len(report.failures),
            batches=report.batches,
            cancelled=report.cancelled,
        )

        if report.failures:
            raise BulkDeletePartialFailure.from_failures(
                report.failures, report.deleted, prefix=list_prefix
            )
        return report

    async def _scan(
        self,
        list_prefix: Optional[str],
        cancel: Optional[CancellationToken],
        report: BulkDeleteReport,
    ) -> AsyncIterator[ObjectSummary]:
        """Yield every listed object, following continuation tokens."""
        token: Optional[str] = None
        while True:
            if self._stop_requested(cancel, report):
                return
            result = await self._client.list_objects(self._bucket, list_prefix, token, self._page_size)
            page = unwrap_or_raise(result, operation="list_objects", key=list_prefix, bucket=self._bucket)
            for summary in page.objects:
                report.scanned += 1
                yield summary
            token = page.next_token
            if not token:
                return

    async def _selected(
        self,
        summary: ObjectSummary,
        predicate: Optional[Predicate],
        with_metadata: bool,
        report: BulkDeleteReport,
    ) -> bool:
        if predicate is None:
            return True

        candidate = summary
        if with_metadata:
            options = merge_options(None, None, self._encryption, EncryptionTarget.DOWNLOAD)
            result = await self._client.head_object(self._bucket, summary.key, options)
            if result.is_err():
                if isinstance(result.error, NotFoundError):
                    # Deleted since it was listed
                    return False
                report.failures.append(_failure_for(summary.key, result.error))
                return False
            candidate = result.unwrap()

        decision = predicate(candidate)
        if inspect.isawaitable(decision):
            decision = await decision
        return bool(decision)

    async def _delete_batch(self, keys: List[str], report: BulkDeleteReport) -> None:
        batch = list(keys)
        result = await asyncio.shield(self._client.delete_objects(self._bucket, batch))
        report.batches += 1

        if result.is_err():
            self._logger.warning(
                "Batch delete call failed",
                bucket=self._bucket,
                batch_size=len(batch),
                error=str(result.error),
            )
            report.failures.extend(_failure_for(key, result.error) for key in batch)
            return

        outcome = result.unwrap()
        report.deleted.extend(outcome.deleted)
        if outcome.errors:
            self._logger.warning(
                "Batch delete partially failed",
                bucket=self._bucket,
                batch_size=len(batch),
                failed=len(outcome.errors),
            )
            report.failures.extend(outcome.errors)

    @staticmethod
    def _stop_requested(cancel: Optional[CancellationToken], report: BulkDeleteReport) -> bool:
        if cancel is not None and cancel.cancelled:
            report.cancelled = True
            return True
        return False


def _failure_for(key: str, error: Any) -> KeyFailure:
    code = error.code.name if isinstance(error, AttachStoreError) else type(error).__name__
    return KeyFailure(key=key, code=code, message=str(error))


__all__ = [
    "CancellationToken",
    "BulkDeleteReport",
    "BulkOperationEngine",
    "Predicate",
]
