"""
Transfer planning tests.

Run: python -m pytest attachstore/tests/test_transfer.py -v
"""

from __future__ import annotations

import pytest

from attachstore.core import constants as C
from attachstore.core.errors import ConfigError
from attachstore.storage.config import MultipartThresholds
from attachstore.storage.transfer import (
    SIMPLE_PLAN,
    OperationKind,
    TransferMode,
    TransferPlanner,
    part_size_for,
)

MB = C.MB


@pytest.fixture
def planner() -> TransferPlanner:
    return TransferPlanner(MultipartThresholds())


@pytest.mark.parametrize(
    "kind, threshold",
    [(OperationKind.UPLOAD, 15 * MB), (OperationKind.COPY, 150 * MB)],
)
def test_multipart_iff_above_threshold(planner, kind, threshold):
    for size in (0, 1, threshold - 1, threshold):
        assert planner.plan(kind, size).mode is TransferMode.SIMPLE
    for size in (threshold + 1, threshold * 4):
        assert planner.plan(kind, size).mode is TransferMode.MULTIPART


def test_thresholds_are_independent():
    planner = TransferPlanner(MultipartThresholds.coerce({"upload": 200 * MB}))
    assert planner.thresholds.copy == C.DEFAULT_COPY_MULTIPART_THRESHOLD

    size = 160 * MB
    assert planner.plan(OperationKind.UPLOAD, size).mode is TransferMode.SIMPLE
    assert planner.plan(OperationKind.COPY, size).mode is TransferMode.MULTIPART


def test_scalar_threshold_applies_to_both():
    thresholds = MultipartThresholds.coerce(10 * MB)
    assert thresholds.upload == thresholds.copy == 10 * MB


def test_unknown_size_plans_simple(planner):
    assert planner.plan(OperationKind.UPLOAD, None) is SIMPLE_PLAN


def test_thread_count_default_and_override(planner):
    size = 20 * MB
    assert planner.plan(OperationKind.UPLOAD, size).thread_count == C.DEFAULT_THREAD_COUNT
    assert planner.plan(OperationKind.UPLOAD, size, thread_count=3).thread_count == 3
    assert planner.plan(OperationKind.UPLOAD, size, thread_count=0).thread_count == C.DEFAULT_THREAD_COUNT


def test_simple_plan_has_no_thread_count(planner):
    plan = planner.plan(OperationKind.UPLOAD, 1 * MB, thread_count=4)
    assert not plan.is_multipart
    assert plan.thread_count is None


def test_part_size_respects_limits():
    assert part_size_for(20 * MB) == C.MIN_PART_SIZE
    large = 100 * C.GB
    part = part_size_for(large)
    assert part >= C.MIN_PART_SIZE
    assert -(-large // part) <= C.MAX_MULTIPART_PARTS


@pytest.mark.parametrize("value", [0, -1, "15MB", True, {"download": 5}])
def test_invalid_thresholds_raise(value):
    with pytest.raises(ConfigError):
        MultipartThresholds.coerce(value)
