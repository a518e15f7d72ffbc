"""
Key Resolution: logical keys to bucket keys.

A storage configured with prefix "cache" stores logical key "a/b.jpg" at
"cache/a/b.jpg". Resolution is pure: no I/O and no state beyond the prefix
normalized once at construction.
"""

from __future__ import annotations

from typing import Any, Optional

from attachstore.core.errors import InvalidKeyError


def normalize_prefix(prefix: Optional[str]) -> Optional[str]:
    """Strip leading/trailing slashes; an empty result means no prefix."""
    if prefix is None:
        return None
    normalized = prefix.strip("/")
    return normalized or None


class KeyResolver:
    """
    Maps logical keys into the configured prefix namespace.

    Example:
        >>> KeyResolver("cache").resolve("a/b.jpg")
        'cache/a/b.jpg'
        >>> KeyResolver(None).resolve("a/b.jpg")
        'a/b.jpg'
    """

    __slots__ = ("_prefix",)

    def __init__(self, prefix: Optional[str] = None) -> None:
        self._prefix = normalize_prefix(prefix)

    @property
    def prefix(self) -> Optional[str]:
        return self._prefix

    def resolve(self, logical_key: Any) -> str:
        """
        Return the full bucket key for `logical_key`.

        Raises:
            InvalidKeyError: If the key is empty or not a string.
        """
        if not isinstance(logical_key, str):
            raise InvalidKeyError.malformed(logical_key, "must be a string")
        if not logical_key:
            raise InvalidKeyError.empty()
        if self._prefix is None:
            return logical_key
        return f"{self._prefix}/{logical_key}"

    def resolve_prefix(self, logical_prefix: Optional[str]) -> Optional[str]:
        """
        Listing prefix for a logical directory.

        "p" and "p/" both list "p/", so "p/a" matches and "pa/b" does not.
        An empty prefix lists the whole storage namespace.
        """
        if logical_prefix is not None and not isinstance(logical_prefix, str):
            raise InvalidKeyError.malformed(logical_prefix, "prefix must be a string")

        directory = (logical_prefix or "").rstrip("/")
        if directory:
            return self.resolve(directory) + "/"
        if self._prefix is None:
            return None
        return f"{self._prefix}/"

    def strip(self, full_key: str) -> str:
        """Inverse of `resolve` for keys inside the namespace."""
        if self._prefix is None:
            return full_key
        head = f"{self._prefix}/"
        if full_key.startswith(head):
            return full_key[len(head):]
        return full_key

    def __repr__(self) -> str:
        return f"KeyResolver(prefix={self._prefix!r})"
