"""
Error Hierarchy for the Storage Adapter

Design Principles:
- Collaborator failures travel as Result values (see core.types) and become
  exceptions only at the storage facade boundary
- Never swallow a collaborator error: the original exception is kept as
  `cause` and the facade raises `from` it
- Carry operation, key and bucket as context so a failure can be traced
  back to the call that produced it

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause for root cause analysis
- Timestamp for correlation with request logs

Usage:
    try:
        await storage.upload(data, "photos/1.jpg")
    except NotFoundError:
        ...
    except StorageError as exc:
        log.error("upload failed", **exc.to_dict())
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence
from uuid import uuid4


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by concern:
    - 1xxx: Configuration errors
    - 2xxx: Key errors
    - 3xxx: Storage (collaborator) errors
    - 4xxx: Bulk operation errors
    """

    # Configuration errors (1xxx)
    CONFIG_MISSING_BUCKET = 1001
    CONFIG_INVALID_VALUE = 1002
    CONFIG_MALFORMED_HOST = 1003
    CONFIG_UNSUPPORTED_METHOD = 1004

    # Key errors (2xxx)
    KEY_EMPTY = 2001
    KEY_MALFORMED = 2002

    # Storage errors (3xxx)
    STORAGE_OPERATION_FAILED = 3001
    STORAGE_NOT_FOUND = 3002
    STORAGE_UNAVAILABLE = 3003

    # Bulk errors (4xxx)
    BULK_PARTIAL_FAILURE = 4001


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class AttachStoreError(Exception):
    """
    Base class for all adapter errors.

    Provides:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp (UTC)
    - Cause for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def with_context(self, **kwargs: Any) -> AttachStoreError:
        """Return a copy of this error with extra context fields."""
        return dataclasses.replace(self, context={**self.context, **kwargs})

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass
class ConfigError(AttachStoreError):
    """
    Invalid construction parameters or malformed per-call configuration.

    Raised at construction or first use; never retried.
    """

    @classmethod
    def missing_bucket(cls) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_MISSING_BUCKET,
            message="bucket is required",
        )

    @classmethod
    def invalid_value(cls, name: str, value: Any, reason: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid {name}: {reason}",
            context={"name": name, "value": repr(value)[:100]},
        )

    @classmethod
    def malformed_host(cls, host: str) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_MALFORMED_HOST,
            message=f"host must end with '/': {host!r}",
            context={"host": host},
        )

    @classmethod
    def unsupported_method(cls, method: Any) -> ConfigError:
        return cls(
            code=ErrorCode.CONFIG_UNSUPPORTED_METHOD,
            message=f"presign method must be 'put' or 'post', got {method!r}",
            context={"method": repr(method)},
        )


# =============================================================================
# KEY ERRORS
# =============================================================================
@dataclass
class InvalidKeyError(AttachStoreError):
    """Empty or malformed logical key."""

    @classmethod
    def empty(cls) -> InvalidKeyError:
        return cls(code=ErrorCode.KEY_EMPTY, message="key must not be empty")

    @classmethod
    def malformed(cls, key: Any, reason: str) -> InvalidKeyError:
        return cls(
            code=ErrorCode.KEY_MALFORMED,
            message=f"Malformed key {key!r}: {reason}",
            context={"key": repr(key)[:100]},
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(AttachStoreError):
    """
    Transport, auth or server failure reported by the object-store client.

    The adapter does not retry; `cause` holds the collaborator's exception
    unmodified and `context` names the operation and key.
    """

    @classmethod
    def operation_failed(
        cls,
        operation: str,
        key: Optional[str] = None,
        cause: Optional[BaseException] = None,
        bucket: Optional[str] = None,
    ) -> StorageError:
        target = f" on {key!r}" if key is not None else ""
        detail = f": {cause}" if cause is not None else ""
        return cls(
            code=ErrorCode.STORAGE_OPERATION_FAILED,
            message=f"{operation} failed{target}{detail}",
            cause=cause,
            context={"operation": operation, "key": key, "bucket": bucket},
        )

    @classmethod
    def unavailable(cls, reason: str, cause: Optional[BaseException] = None) -> StorageError:
        """Client could not be created or reached."""
        return cls(
            code=ErrorCode.STORAGE_UNAVAILABLE,
            message=f"Object store unavailable: {reason}",
            cause=cause,
        )


@dataclass
class NotFoundError(StorageError):
    """Object does not exist. `exists` maps this to False."""

    @classmethod
    def for_key(
        cls,
        key: str,
        operation: str = "head_object",
        bucket: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> NotFoundError:
        return cls(
            code=ErrorCode.STORAGE_NOT_FOUND,
            message=f"Object not found: {key}",
            cause=cause,
            context={"operation": operation, "key": key, "bucket": bucket},
        )


# =============================================================================
# BULK ERRORS
# =============================================================================
@dataclass(frozen=True, slots=True)
class KeyFailure:
    """One key that a batch delete could not remove."""

    key: str
    code: str
    message: str


@dataclass
class BulkDeletePartialFailure(AttachStoreError):
    """
    Some keys of a bulk delete failed.

    Raised once, after the whole listing was processed. `failures` names
    every failed key with the collaborator's error for it so callers can
    retry exactly that subset; `deleted` lists the keys confirmed removed.
    """

    failures: tuple[KeyFailure, ...] = ()
    deleted: tuple[str, ...] = ()

    @classmethod
    def from_failures(
        cls,
        failures: Sequence[KeyFailure],
        deleted: Sequence[str] = (),
        prefix: Optional[str] = None,
    ) -> BulkDeletePartialFailure:
        return cls(
            code=ErrorCode.BULK_PARTIAL_FAILURE,
            message=f"{len(failures)} key(s) failed to delete",
            failures=tuple(failures),
            deleted=tuple(deleted),
            context={"prefix": prefix, "failed_count": len(failures)},
        )

    @property
    def failed_keys(self) -> list[str]:
        return [failure.key for failure in self.failures]
