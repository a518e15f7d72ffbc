"""
Storage Module: S3 Attachment Storage
=====================================

Provides:
- The `S3Storage` facade and its value types
- Key resolution, transfer planning, option merging, URL generation and
  bulk deletes as separately usable components
- The `ObjectStoreClient` protocol with the aioboto3 and in-memory clients
- Factory functions for the common setups

Design Principles:
-----------------
1. **Client Agnostic**: the facade only sees `ObjectStoreClient`
2. **Immutable Configuration**: validated once, never mutated
3. **Result Monad at the Seam**: clients return Result, the facade raises

Example:
    >>> # Production (environment-configured)
    >>> store = create_storage(prefix="store")

    >>> # Development / tests
    >>> cache = create_memory_storage("attachments", prefix="cache")
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from attachstore.storage.protocols import (
    Body,
    DeleteResult,
    ListPage,
    ObjectBody,
    ObjectStoreClient,
    ObjectSummary,
)
from attachstore.storage.config import ClientConfig, MultipartThresholds, StorageConfig
from attachstore.storage.keys import KeyResolver, normalize_prefix
from attachstore.storage.transfer import (
    OperationKind,
    TransferMode,
    TransferPlan,
    TransferPlanner,
)
from attachstore.storage.options import EncryptionTarget, content_disposition, merge_options
from attachstore.storage.urls import UrlGenerator, UrlRequest, UrlSigner, as_signer
from attachstore.storage.bulk import BulkDeleteReport, BulkOperationEngine, CancellationToken
from attachstore.storage.s3_client import AioS3Client
from attachstore.storage.backends import InMemoryObjectStoreClient
from attachstore.storage.s3_storage import ObjectStream, PresignResult, S3Storage, StoredObject


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_storage(config: Optional[StorageConfig] = None, **overrides: Any) -> S3Storage:
    """
    Create an S3-backed storage.

    Args:
        config: Storage configuration. Read from the environment
            (`StorageConfig.from_env`) when None.
        **overrides: Fields replacing those of `config`.

    Raises:
        ConfigError: If the resulting configuration is invalid.

    Example:
        >>> cache = create_storage(prefix="cache")
        >>> store = create_storage(prefix="store", public=True)
    """
    if config is None:
        config = StorageConfig.from_env(**overrides)
    elif overrides:
        config = replace(config, **overrides)
    return S3Storage(config)


def create_memory_storage(
    bucket: str = "attachments",
    client: Optional[InMemoryObjectStoreClient] = None,
    **kwargs: Any,
) -> S3Storage:
    """
    Create a storage over an in-memory client.

    Pass the same `client` to several storages to share one set of buckets
    (e.g. cache and store, for copy tests).
    """
    return S3Storage(StorageConfig(
        bucket=bucket,
        client=client if client is not None else InMemoryObjectStoreClient(),
        **kwargs,
    ))


__all__ = [
    # Facade
    "S3Storage",
    "StoredObject",
    "PresignResult",
    "ObjectStream",
    # Configuration
    "StorageConfig",
    "ClientConfig",
    "MultipartThresholds",
    # Components
    "KeyResolver",
    "normalize_prefix",
    "OperationKind",
    "TransferMode",
    "TransferPlan",
    "TransferPlanner",
    "EncryptionTarget",
    "merge_options",
    "content_disposition",
    "UrlGenerator",
    "UrlRequest",
    "UrlSigner",
    "as_signer",
    "BulkOperationEngine",
    "BulkDeleteReport",
    "CancellationToken",
    # Clients
    "ObjectStoreClient",
    "ObjectBody",
    "ObjectSummary",
    "ListPage",
    "DeleteResult",
    "Body",
    "AioS3Client",
    "InMemoryObjectStoreClient",
    # Factories
    "create_storage",
    "create_memory_storage",
]
