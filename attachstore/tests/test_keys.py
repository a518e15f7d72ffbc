"""
Key resolution tests.

Run: python -m pytest attachstore/tests/test_keys.py -v
"""

from __future__ import annotations

import pytest

from attachstore.core.errors import ErrorCode, InvalidKeyError
from attachstore.storage.keys import KeyResolver, normalize_prefix


LOGICAL_KEYS = [
    "a",
    "a/b",
    "a/b/c.jpg",
    "a b.jpg",
    "ünï/cödé.txt",
    "a/",
    "/a",
    "records/42/original.png",
]


def test_resolve_with_prefix():
    assert KeyResolver("cache").resolve("a/b.jpg") == "cache/a/b.jpg"


def test_prefix_slashes_are_normalized():
    assert KeyResolver("/cache/").resolve("x") == "cache/x"
    assert KeyResolver("nested/cache/").resolve("x") == "nested/cache/x"


def test_no_prefix_returns_key_unchanged():
    resolver = KeyResolver(None)
    for key in LOGICAL_KEYS:
        assert resolver.resolve(key) == key


def test_blank_prefix_means_no_prefix():
    assert normalize_prefix("") is None
    assert normalize_prefix("///") is None
    assert KeyResolver("/").resolve("a") == "a"


@pytest.mark.parametrize("prefix", [None, "cache", "store/v2"])
def test_resolve_is_injective(prefix):
    resolver = KeyResolver(prefix)
    resolved = [resolver.resolve(key) for key in LOGICAL_KEYS]
    assert len(set(resolved)) == len(LOGICAL_KEYS)


def test_empty_key_raises():
    with pytest.raises(InvalidKeyError) as exc_info:
        KeyResolver("cache").resolve("")
    assert exc_info.value.code is ErrorCode.KEY_EMPTY


@pytest.mark.parametrize("key", [None, 42, b"bytes"])
def test_non_string_key_raises(key):
    with pytest.raises(InvalidKeyError) as exc_info:
        KeyResolver("cache").resolve(key)
    assert exc_info.value.code is ErrorCode.KEY_MALFORMED


def test_resolve_prefix_lists_directory():
    resolver = KeyResolver("cache")
    assert resolver.resolve_prefix("p") == "cache/p/"
    assert resolver.resolve_prefix("p/") == "cache/p/"
    assert resolver.resolve_prefix(None) == "cache/"
    assert resolver.resolve_prefix("") == "cache/"


def test_resolve_prefix_without_storage_prefix():
    resolver = KeyResolver(None)
    assert resolver.resolve_prefix("p") == "p/"
    assert resolver.resolve_prefix(None) is None


def test_strip_inverts_resolve():
    resolver = KeyResolver("cache")
    for key in LOGICAL_KEYS:
        assert resolver.strip(resolver.resolve(key)) == key
    assert resolver.strip("other/x") == "other/x"
