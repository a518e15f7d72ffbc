"""
URL Generation
==============

One entry point, `UrlGenerator.url()`, for the four ways an object can be
addressed. Decision order:

1. CDN host (per-call `host`, else configured): `host + key`, never signed
2. External signer configured: signer(public object URL, options)
3. Public (per-call `public`, else configured), unless `force_signed`:
   unsigned object URL
4. Otherwise: presigned GET URL from the object-store client

Only case 4 may cost a network round trip; the others are local string
construction.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Union, runtime_checkable
from urllib.parse import quote

from attachstore.core.errors import ConfigError
from attachstore.core.types import unwrap_or_raise
from attachstore.storage.keys import KeyResolver
from attachstore.storage.options import EncryptionTarget, canonical_encryption, merge_options
from attachstore.storage.protocols import ObjectStoreClient


# =============================================================================
# SIGNER CAPABILITY
# =============================================================================
@runtime_checkable
class UrlSigner(Protocol):
    """
    Anything that can sign a URL, e.g. a CloudFront signer.

    `sign` may be a plain method or a coroutine function.
    """

    def sign(self, url: str, options: Mapping[str, Any]) -> str:
        ...


class _CallableSigner:
    """Adapts `fn(url, options)` to the UrlSigner capability."""

    __slots__ = ("_fn",)

    def __init__(self, fn: Callable[[str, Mapping[str, Any]], Any]) -> None:
        self._fn = fn

    def sign(self, url: str, options: Mapping[str, Any]) -> Any:
        return self._fn(url, options)

    def __repr__(self) -> str:
        return f"CallableSigner({self._fn!r})"


def as_signer(signer: Union[UrlSigner, Callable[..., Any], None]) -> Optional[UrlSigner]:
    """Normalize a configured signer; objects with `sign` take priority over `__call__`."""
    if signer is None:
        return None
    if hasattr(signer, "sign"):
        return signer  # type: ignore[return-value]
    if callable(signer):
        return _CallableSigner(signer)
    raise ConfigError.invalid_value("signer", signer, "must be callable or expose sign(url, options)")


def encode_key(key: str) -> str:
    """Percent-encode each path segment, keeping the separators."""
    return "/".join(quote(segment, safe="") for segment in key.split("/"))


# =============================================================================
# URL REQUEST
# =============================================================================
@dataclass(frozen=True, slots=True)
class UrlRequest:
    """
    One `url()` call, split into the switches the generator acts on and
    the parameters it forwards.

    Attributes:
        key: Logical key.
        expires_in: Signed URL lifetime in seconds (client default if None).
        host: CDN host override.
        public: Visibility override (None = configured default).
        force_signed: Sign even when public.
        extra_params: Everything else, forwarded verbatim
            (e.g. `response_content_disposition`).
    """
    key: str
    expires_in: Optional[int] = None
    host: Optional[str] = None
    public: Optional[bool] = None
    force_signed: bool = False
    extra_params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_options(cls, key: str, options: Mapping[str, Any]) -> UrlRequest:
        params = dict(options)
        return cls(
            key=key,
            expires_in=params.pop("expires_in", None),
            host=params.pop("host", None),
            public=params.pop("public", None),
            force_signed=bool(params.pop("force_signed", False)),
            extra_params=params,
        )

    def signing_options(self) -> Dict[str, Any]:
        """Options forwarded to a signer or the presign call."""
        options = dict(self.extra_params)
        if self.expires_in is not None:
            options["expires_in"] = self.expires_in
        return options


# =============================================================================
# URL GENERATOR
# =============================================================================
class UrlGenerator:
    """
    Produces object URLs for one bucket and key namespace.

    Example:
        >>> urls = UrlGenerator("photos", KeyResolver("store"), client,
        ...                     host="https://cdn.example.com/")
        >>> await urls.url("a b.jpg")
        'https://cdn.example.com/store/a%20b.jpg'
    """

    __slots__ = ("_bucket", "_resolver", "_client", "_public", "_signer", "_host", "_encryption")

    def __init__(
        self,
        bucket: str,
        resolver: KeyResolver,
        client: ObjectStoreClient,
        public: bool = False,
        signer: Union[UrlSigner, Callable[..., Any], None] = None,
        host: Optional[str] = None,
        encryption: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if host is not None and not host.endswith("/"):
            raise ConfigError.malformed_host(host)
        self._bucket = bucket
        self._resolver = resolver
        self._client = client
        self._public = public
        self._signer = as_signer(signer)
        self._host = host
        self._encryption = dict(encryption or {})

    async def url(self, key: str, **options: Any) -> str:
        request = UrlRequest.from_options(key, options)
        return await self.build(request)

    async def build(self, request: UrlRequest) -> str:
        full_key = self._resolver.resolve(request.key)

        host = request.host if request.host is not None else self._host
        if host is not None:
            if not isinstance(host, str) or not host.endswith("/"):
                raise ConfigError.malformed_host(str(host))
            return host + encode_key(full_key)

        if self._signer is not None:
            base_url = self._client.public_url(self._bucket, full_key)
            signed = self._signer.sign(base_url, request.signing_options())
            if inspect.isawaitable(signed):
                signed = await signed
            return signed

        public = self._public if request.public is None else request.public
        if public and not request.force_signed:
            return self._client.public_url(self._bucket, full_key)

        # Configured encryption keeps only SSE-C params for a GET; per-call
        # params are forwarded as given.
        params = merge_options(None, None, self._encryption, EncryptionTarget.DOWNLOAD)
        params.update(canonical_encryption(request.signing_options()))
        result = await self._client.presigned_url(self._bucket, full_key, "get", params)
        return unwrap_or_raise(result, operation="presigned_url", key=full_key, bucket=self._bucket)


__all__ = [
    "UrlSigner",
    "UrlRequest",
    "UrlGenerator",
    "as_signer",
    "encode_key",
]
