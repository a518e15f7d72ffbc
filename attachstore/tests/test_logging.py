"""
Structured logging tests.

Run: python -m pytest attachstore/tests/test_logging.py -v
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from attachstore.observability.logging import (
    JsonFormatter,
    KeyValueFormatter,
    LogLevel,
    StructuredLogger,
    setup_logging,
)


@pytest.fixture
def captured():
    """Route one test logger through JsonFormatter into a buffer."""
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger = logging.getLogger("attachstore.tests.logging")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield stream
    logger.removeHandler(handler)
    logger.propagate = True


def lines(stream: io.StringIO):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_fields_become_json_keys(captured):
    StructuredLogger("attachstore.tests.logging").info("Deleted prefix", prefix="cache/", deleted=3)

    [record] = lines(captured)
    assert record["message"] == "Deleted prefix"
    assert record["level"] == "INFO"
    assert record["logger"] == "attachstore.tests.logging"
    assert record["prefix"] == "cache/"
    assert record["deleted"] == 3
    assert "@timestamp" in record


def test_context_fields_apply_inside_scope_only(captured):
    logger = StructuredLogger("attachstore.tests.logging")

    with logger.context(request_id="r-1"):
        logger.info("inside")
    logger.info("outside")

    inside, outside = lines(captured)
    assert inside["request_id"] == "r-1"
    assert "request_id" not in outside


def test_with_extra_adds_default_fields(captured):
    logger = StructuredLogger("attachstore.tests.logging").with_extra(bucket="photos")
    logger.warning("partial failure", failed=2)

    [record] = lines(captured)
    assert record["bucket"] == "photos"
    assert record["failed"] == 2


def test_disabled_level_is_skipped(captured):
    logging.getLogger("attachstore.tests.logging").setLevel(logging.WARNING)
    StructuredLogger("attachstore.tests.logging").debug("hidden")
    assert captured.getvalue() == ""


def test_setup_logging_configures_root():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    stream = io.StringIO()
    try:
        setup_logging(LogLevel.INFO, json_output=True, stream=stream)
        StructuredLogger("attachstore.tests.root").info("configured", answer=42)

        record = json.loads(stream.getvalue().splitlines()[-1])
        assert record["answer"] == 42
        assert logging.getLogger("botocore").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_secret_fields_are_masked(captured):
    StructuredLogger("attachstore.tests.logging").info(
        "copy", sse_customer_key="k3y", sse_customer_key_md5="digest", key="a.jpg"
    )

    [record] = lines(captured)
    assert record["sse_customer_key"] == "***"
    assert record["sse_customer_key_md5"] == "digest"
    assert record["key"] == "a.jpg"


def test_key_value_formatter_appends_fields():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(KeyValueFormatter())
    logger = logging.getLogger("attachstore.tests.text")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    try:
        StructuredLogger("attachstore.tests.text").info("Bulk delete finished", deleted=3, prefix=None)
    finally:
        logger.removeHandler(handler)
        logger.propagate = True

    line = stream.getvalue().strip()
    assert "| INFO     | attachstore.tests.text | Bulk delete finished deleted=3" in line
    assert "prefix" not in line
