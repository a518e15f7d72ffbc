"""
Transfer Strategy Selection
===========================

Decides per operation whether a payload goes to the object store in one
request or as a multipart transfer.

| Operation | Threshold (default) | Above threshold        |
|-----------|---------------------|------------------------|
| upload    | 15 MiB              | multipart upload       |
| copy      | 150 MiB             | multipart (range) copy |

A payload of unknown size (a non-seekable stream) is planned as a simple
transfer: the client buffers it and sends one PUT. The plan is advisory
only and never raises.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from attachstore.core import constants as C
from attachstore.storage.config import MultipartThresholds


class OperationKind(str, Enum):
    UPLOAD = "upload"
    COPY = "copy"


class TransferMode(str, Enum):
    SIMPLE = "simple"
    MULTIPART = "multipart"


@dataclass(frozen=True, slots=True)
class TransferPlan:
    """
    How one upload or copy is carried out.

    Attributes:
        mode: simple or multipart.
        thread_count: Parts in flight at once (multipart only).
        part_size: Bytes per part (multipart only).
    """
    mode: TransferMode
    thread_count: Optional[int] = None
    part_size: Optional[int] = None

    @property
    def is_multipart(self) -> bool:
        return self.mode is TransferMode.MULTIPART


SIMPLE_PLAN = TransferPlan(mode=TransferMode.SIMPLE)


def part_size_for(size: int) -> int:
    """Smallest part size keeping `size` within S3's part count limit."""
    return max(math.ceil(size / C.MAX_MULTIPART_PARTS), C.MIN_PART_SIZE)


class TransferPlanner:
    """
    Plans transfers from payload size and configured thresholds.

    Example:
        >>> planner = TransferPlanner(MultipartThresholds())
        >>> planner.plan(OperationKind.UPLOAD, 20 * 1024 * 1024).mode
        <TransferMode.MULTIPART: 'multipart'>
    """

    __slots__ = ("_thresholds", "_default_thread_count")

    def __init__(
        self,
        thresholds: MultipartThresholds,
        default_thread_count: int = C.DEFAULT_THREAD_COUNT,
    ) -> None:
        self._thresholds = thresholds
        self._default_thread_count = default_thread_count

    @property
    def thresholds(self) -> MultipartThresholds:
        return self._thresholds

    def plan(
        self,
        kind: OperationKind,
        size: Optional[int],
        thread_count: Optional[int] = None,
    ) -> TransferPlan:
        if size is None or size <= self._thresholds.for_operation(OperationKind(kind).value):
            return SIMPLE_PLAN

        threads = thread_count if thread_count and thread_count > 0 else self._default_thread_count
        return TransferPlan(
            mode=TransferMode.MULTIPART,
            thread_count=threads,
            part_size=part_size_for(size),
        )
