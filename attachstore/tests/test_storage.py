"""
Storage facade tests over the in-memory client.

Run: python -m pytest attachstore/tests/test_storage.py -v
"""

from __future__ import annotations

import io

import pytest

from attachstore.core import constants as C
from attachstore.core.errors import (
    ConfigError,
    ErrorCode,
    InvalidKeyError,
    NotFoundError,
    StorageError,
)
from attachstore.storage import (
    InMemoryObjectStoreClient,
    S3Storage,
    StorageConfig,
    create_memory_storage,
)
from attachstore.tests.conftest import BUCKET


def make_storage(client: InMemoryObjectStoreClient, **kwargs) -> S3Storage:
    kwargs.setdefault("prefix", "store")
    return S3Storage(StorageConfig(bucket=BUCKET, client=client, **kwargs))


class UnsizedStream:
    """Readable stream with no length, size or seek support."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


# =============================================================================
# UPLOAD / DOWNLOAD
# =============================================================================

async def test_exists_is_read_after_write(store, memory_client):
    assert await store.exists("photo.jpg") is False
    await store.upload(b"jpeg-bytes", "photo.jpg")
    assert await store.exists("photo.jpg") is True
    assert memory_client.get_bytes(BUCKET, "store/photo.jpg") == b"jpeg-bytes"


async def test_download_round_trip(store):
    await store.upload(io.BytesIO(b"hello"), "greeting.txt")
    assert await store.download("greeting.txt") == b"hello"


async def test_download_missing_raises_not_found(store):
    with pytest.raises(NotFoundError) as exc_info:
        await store.download("missing")
    assert exc_info.value.code is ErrorCode.STORAGE_NOT_FOUND
    assert exc_info.value.context["key"] == "store/missing"


async def test_open_stream_yields_chunks(store):
    await store.upload(b"abcdefg", "letters")
    async with await store.open_stream("letters", chunk_size=3) as stream:
        chunks = [chunk async for chunk in stream]
    assert chunks == [b"abc", b"def", b"g"]
    assert stream.closed


async def test_download_range(store):
    await store.upload(b"0123456789", "digits")
    assert await store.download("digits", range="bytes=2-4") == b"234"


async def test_upload_option_layering(memory_client):
    storage = make_storage(
        memory_client,
        public=True,
        upload_options={"acl": "private", "cache_control": "max-age=1"},
        encryption={"server_side_encryption": "AES256"},
    )

    await storage.upload(
        b"png",
        "a.png",
        metadata={"mime_type": "image/png", "filename": "a.png"},
        cache_control="max-age=60",
    )

    options = memory_client.calls_for("put_object")[0].options
    assert options == {
        "content_type": "image/png",
        "content_disposition": "inline; filename=\"a.png\"; filename*=UTF-8''a.png",
        "acl": "private",
        "cache_control": "max-age=60",
        "server_side_encryption": "AES256",
    }


async def test_public_storage_uploads_public_read(memory_client):
    await make_storage(memory_client, public=True).upload(b"x", "k")
    assert memory_client.calls_for("put_object")[0].options["acl"] == "public-read"


async def test_per_call_encryption_wins(memory_client):
    storage = make_storage(memory_client, encryption={"server_side_encryption": "aws:kms"})
    await storage.upload(b"x", "k", server_side_encryption="AES256")
    assert memory_client.calls_for("put_object")[0].options["server_side_encryption"] == "AES256"


async def test_large_upload_goes_multipart(memory_client):
    storage = make_storage(memory_client, multipart_threshold={"upload": 10})

    await storage.upload(b"x" * 11, "big", thread_count=3)
    await storage.upload(b"x" * 10, "small")

    multipart = memory_client.calls_for("multipart_upload")
    assert [call.key for call in multipart] == ["store/big"]
    assert multipart[0].thread_count == 3
    assert multipart[0].part_size == C.MIN_PART_SIZE
    assert "thread_count" not in multipart[0].options
    assert [call.key for call in memory_client.calls_for("put_object")] == ["store/small"]


async def test_multipart_uses_default_thread_count(memory_client):
    storage = make_storage(memory_client, multipart_threshold=10)
    await storage.upload(io.BytesIO(b"x" * 20), "big")
    assert memory_client.calls_for("multipart_upload")[0].thread_count == C.DEFAULT_THREAD_COUNT


async def test_unknown_size_stream_uploads_simple(memory_client):
    storage = make_storage(memory_client, multipart_threshold=1)
    await storage.upload(UnsizedStream(b"streamed"), "stream")

    assert memory_client.calls_for("multipart_upload") == []
    assert memory_client.get_bytes(BUCKET, "store/stream") == b"streamed"


async def test_size_is_measured_from_current_position(memory_client):
    storage = make_storage(memory_client, multipart_threshold=5)
    source = io.BytesIO(b"0123456789")
    source.seek(6)

    await storage.upload(source, "tail")

    assert memory_client.calls_for("multipart_upload") == []
    assert memory_client.get_bytes(BUCKET, "store/tail") == b"6789"


async def test_upload_rejects_unknown_source(store):
    with pytest.raises(ConfigError):
        await store.upload("a string is not a body", "k")


async def test_upload_rejects_empty_key(store):
    with pytest.raises(InvalidKeyError):
        await store.upload(b"x", "")


async def test_collaborator_failure_raises_storage_error(store, memory_client):
    memory_client.fail_operation("put_object")

    with pytest.raises(StorageError) as exc_info:
        await store.upload(b"x", "k")

    error = exc_info.value
    assert isinstance(error.__cause__, ConnectionError)
    assert error.context["key"] == "store/k"
    assert error.context["bucket"] == BUCKET


# =============================================================================
# COPY
# =============================================================================

async def test_stored_object_is_copied_server_side(cache, store, memory_client):
    await cache.upload(b"promote me", "upload.bin", metadata={"mime_type": "text/plain"})

    await store.upload(cache.stored("upload.bin"), "final.bin")

    copy = memory_client.calls_for("copy_object")[0]
    assert copy.key == "store/final.bin"
    assert memory_client.calls_for("put_object")[-1].key == "cache/upload.bin"
    assert memory_client.get_bytes(BUCKET, "store/final.bin") == b"promote me"
    assert (await store.head("final.bin")).content_type == "text/plain"


async def test_copy_with_header_options_replaces_metadata(cache, store, memory_client):
    await cache.upload(b"x", "a", metadata={"mime_type": "text/plain"})

    await store.upload(cache.stored("a"), "b", metadata={"mime_type": "image/png"})

    copy = memory_client.calls_for("copy_object")[0]
    assert copy.options["metadata_directive"] == "REPLACE"
    assert (await store.head("b")).content_type == "image/png"


async def test_copy_without_header_options_inherits(cache, store, memory_client):
    await cache.upload(b"x", "a")
    await store.upload(cache.stored("a"), "b", acl="private")
    assert "metadata_directive" not in memory_client.calls_for("copy_object")[0].options


async def test_large_copy_goes_multipart(memory_client):
    cache = make_storage(memory_client, prefix="cache")
    store = make_storage(memory_client, multipart_threshold={"copy": 4})
    await cache.upload(b"0123456789", "big")

    await store.upload(cache.stored("big"), "big")

    copy = memory_client.calls_for("multipart_copy")[0]
    assert copy.key == "store/big"
    assert copy.thread_count == C.DEFAULT_THREAD_COUNT
    assert memory_client.get_bytes(BUCKET, "store/big") == b"0123456789"


async def test_copy_uses_known_size_without_head(cache, store, memory_client):
    await cache.upload(b"abc", "a")
    heads_before = len(memory_client.calls_for("head_object"))

    await store.upload(cache.stored("a", size=3), "b")

    assert len(memory_client.calls_for("head_object")) == heads_before


async def test_copy_of_missing_source_raises(cache, store):
    with pytest.raises(NotFoundError):
        await store.upload(cache.stored("missing", size=1), "b")


# =============================================================================
# DELETES
# =============================================================================

async def test_delete_is_idempotent(store):
    await store.upload(b"x", "k")
    await store.delete("k")
    await store.delete("k")
    assert await store.exists("k") is False


async def test_delete_prefixed_and_clear_are_scoped(cache, store, memory_client):
    await cache.upload(b"1", "records/1/a")
    await cache.upload(b"2", "records/1/b")
    await cache.upload(b"3", "records/2/a")
    await store.upload(b"4", "records/1/a")

    report = await cache.delete_prefixed("records/1")
    assert sorted(report.deleted) == ["cache/records/1/a", "cache/records/1/b"]

    await cache.clear()
    assert memory_client.keys(BUCKET) == ["store/records/1/a"]


async def test_delete_prefixed_with_smallest_pages_and_batches(memory_client):
    storage = make_storage(memory_client, max_batch_delete=2, list_page_size=1)
    for i in range(7):
        await storage.upload(str(i).encode(), f"records/{i}")
    await storage.upload(b"keep", "other/a")

    report = await storage.delete_prefixed("records/")

    assert report.deleted_count == 7
    assert memory_client.keys(BUCKET) == ["store/other/a"]


@pytest.mark.parametrize("prefix", ["", "/", "//"])
async def test_delete_prefixed_rejects_empty_prefix(store, memory_client, prefix):
    await store.upload(b"1", "records/1/a")

    with pytest.raises(InvalidKeyError):
        await store.delete_prefixed(prefix)

    assert memory_client.keys(BUCKET) == ["store/records/1/a"]


# =============================================================================
# URLS AND PRESIGN
# =============================================================================

async def test_url_public_and_private(memory_client):
    public = make_storage(memory_client, public=True)
    private = make_storage(memory_client)

    assert await public.url("k") == memory_client.public_url(BUCKET, "store/k")
    assert "X-Amz-Method=GET" in await private.url("k")


async def test_presign_post_returns_form_fields(memory_client):
    storage = make_storage(
        memory_client,
        public=True,
        upload_options={"cache_control": "max-age=60"},
        encryption={"sse_kms_key_id": "key-1", "server_side_encryption": "aws:kms"},
    )

    result = await storage.presign("upload.bin", content_type="image/png")

    assert result.method == "post"
    assert result.headers == {}
    assert result.fields["key"] == "store/upload.bin"
    assert result.fields["acl"] == "public-read"
    assert result.fields["Content-Type"] == "image/png"
    assert result.fields["Cache-Control"] == "max-age=60"
    assert result.fields["x-amz-server-side-encryption"] == "aws:kms"
    assert result.fields["x-amz-server-side-encryption-aws-kms-key-id"] == "key-1"


async def test_presign_put_returns_headers(memory_client):
    storage = make_storage(memory_client, upload_options={"acl": "private"})

    result = await storage.presign("upload.bin", method="put", content_type="image/png", expires_in=60)

    assert result.method == "put"
    assert result.fields == {}
    assert result.headers == {"x-amz-acl": "private", "Content-Type": "image/png"}
    assert "X-Amz-Method=PUT" in result.url
    assert "X-Amz-Expires=60" in result.url


async def test_presign_rejects_unknown_method(store):
    with pytest.raises(ConfigError) as exc_info:
        await store.presign("k", method="get")
    assert exc_info.value.code is ErrorCode.CONFIG_UNSUPPORTED_METHOD


# =============================================================================
# LIFECYCLE AND CONFIGURATION
# =============================================================================

async def test_context_manager_leaves_injected_client_usable(memory_client):
    async with make_storage(memory_client) as storage:
        await storage.upload(b"x", "k")
    assert memory_client.get_bytes(BUCKET, "store/k") == b"x"


async def test_create_memory_storage_shares_client():
    client = InMemoryObjectStoreClient()
    cache = create_memory_storage(client=client, prefix="cache")
    store = create_memory_storage(client=client, prefix="store")
    await cache.upload(b"x", "k")
    await store.upload(cache.stored("k"), "k")
    assert client.keys("attachments") == ["cache/k", "store/k"]


def test_object_key_and_repr(store):
    assert store.object_key("a/b") == "store/a/b"
    assert repr(store) == "S3Storage(bucket='attachments', prefix='store')"


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"bucket": ""}, ErrorCode.CONFIG_MISSING_BUCKET),
        ({"bucket": "b", "host": "https://cdn.example.com"}, ErrorCode.CONFIG_MALFORMED_HOST),
        ({"bucket": "b", "max_batch_delete": 1001}, ErrorCode.CONFIG_INVALID_VALUE),
        ({"bucket": "b", "signer": 42}, ErrorCode.CONFIG_INVALID_VALUE),
    ],
)
def test_invalid_configuration_fails_fast(kwargs, code):
    with pytest.raises(ConfigError) as exc_info:
        StorageConfig(**kwargs)
    assert exc_info.value.code is code
