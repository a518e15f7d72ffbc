"""
Result Monad for the Collaborator Seam

Object-store clients report failures as values rather than raising, so the
storage facade decides in one place which failures become exceptions and
which become ordinary answers (a missing object for `exists` is `False`, not
an error).

Usage:
    result = await client.head_object(bucket, key, {})
    if result.is_err():
        ...
    summary = result.unwrap()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Literal, NoReturn, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failed collaborator call.

    `unwrap()` raises the wrapped exception as is; use `unwrap_or_raise`
    at the facade to attach bucket and key context first.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> NoReturn:
        if isinstance(self.error, BaseException):
            raise self.error
        raise RuntimeError(f"unwrap() on Err({self.error!r})")


Result = Union[Ok[T], Err[E]]


def unwrap_or_raise(result: Result[T, Any], **context: Any) -> T:
    """
    Return the success value or raise the wrapped error.

    Adapter errors get `context` merged in (None values skipped) and are
    raised from their original cause, so tracebacks show the collaborator
    exception that started it.
    """
    from attachstore.core.errors import AttachStoreError, StorageError

    if isinstance(result, Ok):
        return result.value

    error = result.error
    if isinstance(error, AttachStoreError):
        extra = {k: v for k, v in context.items() if v is not None}
        if extra:
            error = error.with_context(**extra)
        raise error from error.cause
    if isinstance(error, BaseException):
        raise error
    raise StorageError.operation_failed(
        str(context.get("operation", "operation")), context.get("key")
    ).with_context(detail=str(error))


__all__ = ["Ok", "Err", "Result", "unwrap_or_raise"]
