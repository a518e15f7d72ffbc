"""Pytest fixtures: in-memory client and storages over it."""

from __future__ import annotations

import pytest

from attachstore.storage import InMemoryObjectStoreClient, S3Storage, StorageConfig

BUCKET = "attachments"


@pytest.fixture
def memory_client() -> InMemoryObjectStoreClient:
    return InMemoryObjectStoreClient()


@pytest.fixture
def store(memory_client: InMemoryObjectStoreClient) -> S3Storage:
    return S3Storage(StorageConfig(bucket=BUCKET, prefix="store", client=memory_client))


@pytest.fixture
def cache(memory_client: InMemoryObjectStoreClient) -> S3Storage:
    return S3Storage(StorageConfig(bucket=BUCKET, prefix="cache", client=memory_client))


async def seed(client: InMemoryObjectStoreClient, keys, bucket: str = BUCKET) -> None:
    """Write a small object under each full key."""
    for key in keys:
        await client.put_object(bucket, key, key.encode(), {})
