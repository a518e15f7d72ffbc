"""
attachstore: S3 Storage for File Attachments

Async adapter between an attachment framework and AWS S3 (or any
S3-compatible service):
- Key namespacing under a configurable prefix
- Automatic multipart uploads and copies for large payloads
- Public, CDN, externally signed and presigned URLs
- Presigned PUT/POST for direct client uploads
- Batched prefix deletes and predicate-based cleanup

Author: attachstore maintainers
License: MIT
"""

__version__ = "1.0.0"
__author__ = "attachstore maintainers"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from attachstore.core.types import Result, Ok, Err
from attachstore.core.errors import (
    AttachStoreError,
    BulkDeletePartialFailure,
    ConfigError,
    ErrorCode,
    InvalidKeyError,
    KeyFailure,
    NotFoundError,
    StorageError,
)
from attachstore.storage import (
    BulkDeleteReport,
    CancellationToken,
    ClientConfig,
    ObjectStream,
    ObjectSummary,
    PresignResult,
    S3Storage,
    StorageConfig,
    StoredObject,
    create_memory_storage,
    create_storage,
)

__all__ = [
    "__version__",
    # Result
    "Result",
    "Ok",
    "Err",
    # Errors
    "AttachStoreError",
    "BulkDeletePartialFailure",
    "ConfigError",
    "ErrorCode",
    "InvalidKeyError",
    "KeyFailure",
    "NotFoundError",
    "StorageError",
    # Storage
    "S3Storage",
    "StorageConfig",
    "ClientConfig",
    "StoredObject",
    "PresignResult",
    "ObjectStream",
    "ObjectSummary",
    "BulkDeleteReport",
    "CancellationToken",
    "create_storage",
    "create_memory_storage",
]
