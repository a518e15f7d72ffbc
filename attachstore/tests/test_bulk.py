"""
Bulk operation tests: prefix deletes, predicate cleanup, partial failures,
cancellation.

Run: python -m pytest attachstore/tests/test_bulk.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from attachstore.core.errors import BulkDeletePartialFailure, ErrorCode, InvalidKeyError, StorageError
from attachstore.storage.backends import InMemoryObjectStoreClient
from attachstore.storage.bulk import BulkOperationEngine, CancellationToken
from attachstore.storage.keys import KeyResolver
from attachstore.tests.conftest import BUCKET, seed


def make_engine(client, prefix=None, batch_size=1000, page_size=1000) -> BulkOperationEngine:
    return BulkOperationEngine(client, BUCKET, KeyResolver(prefix), batch_size=batch_size, page_size=page_size)


# =============================================================================
# DELETE PREFIXED
# =============================================================================

@pytest.mark.parametrize("page_size", [1, 2, 3, 1000])
async def test_delete_prefixed_deletes_exactly_prefix(memory_client, page_size):
    await seed(memory_client, ["p/a", "p/b", "q/c"])
    engine = make_engine(memory_client, page_size=page_size)

    report = await engine.delete_prefixed("p/")

    assert sorted(report.deleted) == ["p/a", "p/b"]
    assert memory_client.keys(BUCKET) == ["q/c"]


async def test_delete_prefixed_does_not_match_sibling_names(memory_client):
    await seed(memory_client, ["p/a", "pa/b", "p"])
    report = await make_engine(memory_client).delete_prefixed("p")
    assert report.deleted == ["p/a"]
    assert memory_client.keys(BUCKET) == ["p", "pa/b"]


async def test_delete_prefixed_stays_inside_storage_prefix(memory_client):
    await seed(memory_client, ["cache/p/a", "store/p/a"])
    await make_engine(memory_client, prefix="cache").delete_prefixed("p")
    assert memory_client.keys(BUCKET) == ["store/p/a"]


async def test_batches_never_exceed_batch_size(memory_client):
    keys = [f"p/{i:03d}" for i in range(25)]
    await seed(memory_client, keys)

    report = await make_engine(memory_client, batch_size=10, page_size=7).delete_prefixed("p")

    batches = memory_client.calls_for("delete_objects")
    assert [len(call.options["keys"]) for call in batches] == [10, 10, 5]
    assert report.batches == 3
    assert report.deleted_count == 25
    assert report.scanned == 25


async def test_pages_after_a_delete_start_at_the_next_unlisted_key(memory_client):
    await seed(memory_client, [f"p/{i}" for i in range(6)] + ["q/c"])

    report = await make_engine(memory_client, batch_size=2, page_size=2).delete_prefixed("p/")

    assert report.deleted == [f"p/{i}" for i in range(6)]
    assert memory_client.keys(BUCKET) == ["q/c"]


@pytest.mark.parametrize("prefix", ["", "/", None])
async def test_empty_prefix_is_rejected(memory_client, prefix):
    await seed(memory_client, ["store/records/1/a", "store/records/2/a"])

    for engine in (make_engine(memory_client, prefix="store"), make_engine(memory_client)):
        with pytest.raises(InvalidKeyError):
            await engine.delete_prefixed(prefix)

    assert memory_client.calls_for("list_objects") == []
    assert memory_client.keys(BUCKET) == ["store/records/1/a", "store/records/2/a"]


async def test_empty_listing_issues_no_batch(memory_client):
    report = await make_engine(memory_client).delete_prefixed("nothing")
    assert report.deleted == []
    assert memory_client.calls_for("delete_objects") == []


# =============================================================================
# PARTIAL FAILURES
# =============================================================================

async def test_partial_failure_names_exactly_failed_keys(memory_client):
    keys = ["p/1", "p/2", "p/3", "p/4", "p/5"]
    await seed(memory_client, keys)
    memory_client.fail_deletes.update({"p/2", "p/4"})

    with pytest.raises(BulkDeletePartialFailure) as exc_info:
        await make_engine(memory_client).delete_prefixed("p")

    error = exc_info.value
    assert error.code is ErrorCode.BULK_PARTIAL_FAILURE
    assert sorted(error.failed_keys) == ["p/2", "p/4"]
    assert sorted(error.deleted) == ["p/1", "p/3", "p/5"]
    assert all(failure.code == "AccessDenied" for failure in error.failures)
    assert memory_client.keys(BUCKET) == ["p/2", "p/4"]


async def test_scan_continues_after_failed_batch(memory_client):
    await seed(memory_client, [f"p/{i}" for i in range(6)])
    memory_client.fail_deletes.add("p/0")

    with pytest.raises(BulkDeletePartialFailure) as exc_info:
        await make_engine(memory_client, batch_size=2, page_size=1).delete_prefixed("p")

    assert exc_info.value.failed_keys == ["p/0"]
    assert len(memory_client.calls_for("delete_objects")) == 3
    assert memory_client.keys(BUCKET) == ["p/0"]


async def test_whole_batch_transport_failure_marks_every_key(memory_client):
    await seed(memory_client, ["p/a", "p/b"])
    memory_client.fail_operation("delete_objects")

    with pytest.raises(BulkDeletePartialFailure) as exc_info:
        await make_engine(memory_client).delete_prefixed("p")

    assert sorted(exc_info.value.failed_keys) == ["p/a", "p/b"]
    assert exc_info.value.failures[0].code == ErrorCode.STORAGE_OPERATION_FAILED.name


async def test_listing_failure_aborts_with_storage_error(memory_client):
    await seed(memory_client, ["p/a"])
    memory_client.fail_operation("list_objects")

    with pytest.raises(StorageError) as exc_info:
        await make_engine(memory_client).delete_prefixed("p")

    assert not isinstance(exc_info.value, BulkDeletePartialFailure)
    assert exc_info.value.context["operation"] == "list_objects"
    assert memory_client.calls_for("delete_objects") == []


# =============================================================================
# CLEAR
# =============================================================================

async def test_clear_deletes_only_matching_and_is_idempotent(memory_client):
    await seed(memory_client, ["old/a", "old/b", "new/c"])
    now = datetime.now(timezone.utc)
    memory_client.set_last_modified(BUCKET, "old/a", now - timedelta(days=2))
    memory_client.set_last_modified(BUCKET, "old/b", now - timedelta(days=3))
    cutoff = now - timedelta(days=1)

    def older_than_cutoff(obj):
        return obj.last_modified < cutoff

    engine = make_engine(memory_client, page_size=1)
    first = await engine.clear(older_than_cutoff)
    second = await engine.clear(older_than_cutoff)

    assert sorted(first.deleted) == ["old/a", "old/b"]
    assert second.deleted_count == 0
    assert memory_client.keys(BUCKET) == ["new/c"]


async def test_clear_by_last_modified(memory_client):
    await seed(memory_client, ["a", "b"])
    now = datetime.now(timezone.utc)

    report = await make_engine(memory_client).clear(lambda obj: obj.last_modified < now - timedelta(days=1))
    assert report.deleted == []
    assert report.scanned == 2

    report = await make_engine(memory_client).clear(lambda obj: obj.last_modified <= now)
    assert sorted(report.deleted) == ["a", "b"]


async def test_clear_without_predicate_empties_namespace(memory_client):
    await seed(memory_client, ["cache/a", "cache/b/c", "store/a"])
    await make_engine(memory_client, prefix="cache").clear()
    assert memory_client.keys(BUCKET) == ["store/a"]


async def test_clear_with_metadata_uses_head(memory_client):
    await memory_client.put_object(BUCKET, "a.png", b"1", {"content_type": "image/png"})
    await memory_client.put_object(BUCKET, "b.txt", b"2", {"content_type": "text/plain"})

    report = await make_engine(memory_client).clear(
        lambda obj: obj.content_type == "image/png", with_metadata=True
    )

    assert report.deleted == ["a.png"]
    assert len(memory_client.calls_for("head_object")) == 2


async def test_clear_accepts_async_predicate(memory_client):
    await seed(memory_client, ["a", "b"])

    async def only_a(obj):
        return obj.key == "a"

    report = await make_engine(memory_client).clear(only_a)
    assert report.deleted == ["a"]


# =============================================================================
# CANCELLATION
# =============================================================================

async def test_cancelled_before_start_touches_nothing(memory_client):
    await seed(memory_client, ["p/a"])
    token = CancellationToken()
    token.cancel()

    report = await make_engine(memory_client).delete_prefixed("p", cancel=token)

    assert report.cancelled
    assert memory_client.calls_for("list_objects") == []
    assert memory_client.keys(BUCKET) == ["p/a"]


async def test_cancel_stops_at_next_batch(memory_client):
    await seed(memory_client, [f"p/{i}" for i in range(6)])
    token = CancellationToken()
    seen = []

    def cancel_after_two(obj):
        seen.append(obj.key)
        if len(seen) == 2:
            token.cancel()
        return True

    report = await make_engine(memory_client, batch_size=2, page_size=2).clear(cancel_after_two, cancel=token)

    assert report.cancelled
    assert report.deleted == []
    assert len(memory_client.keys(BUCKET)) == 6


# =============================================================================
# EXISTS
# =============================================================================

async def test_exists(memory_client):
    engine = make_engine(memory_client, prefix="store")
    assert await engine.exists("a") is False
    await seed(memory_client, ["store/a"])
    assert await engine.exists("a") is True


async def test_exists_raises_non_not_found_errors(memory_client):
    memory_client.fail_operation("head_object")
    with pytest.raises(StorageError):
        await make_engine(memory_client).exists("a")
