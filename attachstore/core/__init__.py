"""
Core module: Result type, error hierarchy, and constants.
"""

from attachstore.core.types import Result, Ok, Err
from attachstore.core.errors import (
    ErrorCode,
    AttachStoreError,
    ConfigError,
    InvalidKeyError,
    StorageError,
    NotFoundError,
    KeyFailure,
    BulkDeletePartialFailure,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "ErrorCode",
    "AttachStoreError",
    "ConfigError",
    "InvalidKeyError",
    "StorageError",
    "NotFoundError",
    "KeyFailure",
    "BulkDeletePartialFailure",
]
