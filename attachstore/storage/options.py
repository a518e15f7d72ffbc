"""
Upload Option Merging
=====================

Composes configured defaults, encryption parameters and per-call options
into the option mapping handed to the object-store client.

Precedence (right wins): defaults < encryption < per-call.

Encryption parameters are spelled differently depending on the target
operation, so they are first brought to one canonical spelling and then
rendered for the operation:

| Canonical              | PRESIGN_POST spelling                       |
|------------------------|---------------------------------------------|
| server_side_encryption | server_side_encryption                      |
| sse_kms_key_id         | server_side_encryption_aws_kms_key_id       |
| sse_customer_algorithm | server_side_encryption_customer_algorithm   |
| sse_customer_key       | server_side_encryption_customer_key         |
| sse_customer_key_md5   | server_side_encryption_customer_key_md5     |

UPLOAD, COPY and PRESIGN_PUT use the canonical (`sse_*`) spelling; COPY
also mirrors customer-key parameters to `copy_source_sse_customer_*` so an
SSE-C source can be read. DOWNLOAD keeps only the customer-key parameters,
the only encryption parameters a GET or HEAD accepts.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote


class EncryptionTarget(str, Enum):
    UPLOAD = "upload"
    COPY = "copy"
    DOWNLOAD = "download"
    PRESIGN_PUT = "presign_put"
    PRESIGN_POST = "presign_post"


# POST-form spelling -> canonical spelling
_POST_TO_CANONICAL: Dict[str, str] = {
    "server_side_encryption_aws_kms_key_id": "sse_kms_key_id",
    "server_side_encryption_customer_algorithm": "sse_customer_algorithm",
    "server_side_encryption_customer_key": "sse_customer_key",
    "server_side_encryption_customer_key_md5": "sse_customer_key_md5",
    "server_side_encryption_context": "sse_kms_encryption_context",
}
_CANONICAL_TO_POST: Dict[str, str] = {v: k for k, v in _POST_TO_CANONICAL.items()}

CUSTOMER_KEY_PARAMS = ("sse_customer_algorithm", "sse_customer_key", "sse_customer_key_md5")

ENCRYPTION_PARAMS = frozenset({
    "server_side_encryption",
    "sse_kms_key_id",
    "sse_kms_encryption_context",
    "bucket_key_enabled",
    *CUSTOMER_KEY_PARAMS,
})


def canonical_encryption(options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Rename POST-style encryption keys to the canonical `sse_*` names."""
    if not options:
        return {}
    return {_POST_TO_CANONICAL.get(key, key): value for key, value in options.items()}


def _render(options: Dict[str, Any], target: EncryptionTarget) -> Dict[str, Any]:
    if target is EncryptionTarget.PRESIGN_POST:
        return {_CANONICAL_TO_POST.get(key, key): value for key, value in options.items()}

    if target is EncryptionTarget.DOWNLOAD:
        return {
            key: value for key, value in options.items()
            if key not in ENCRYPTION_PARAMS or key in CUSTOMER_KEY_PARAMS
        }

    if target is EncryptionTarget.COPY:
        rendered = dict(options)
        for key in CUSTOMER_KEY_PARAMS:
            if key in options:
                rendered.setdefault(f"copy_source_{key}", options[key])
        return rendered

    return options


def merge_options(
    defaults: Optional[Mapping[str, Any]],
    overrides: Optional[Mapping[str, Any]],
    encryption: Optional[Mapping[str, Any]],
    target: EncryptionTarget = EncryptionTarget.UPLOAD,
) -> Dict[str, Any]:
    """
    Merge option layers for one operation.

    Args:
        defaults: Storage-level defaults (`upload_options`).
        overrides: Options given to this call.
        encryption: Configured encryption parameters.
        target: Operation the result is rendered for.

    Returns:
        New dict; the inputs are not modified.

    Example:
        >>> merge_options({"acl": "private"}, {"acl": "public-read"}, {})
        {'acl': 'public-read'}
    """
    merged: Dict[str, Any] = {}
    merged.update(canonical_encryption(defaults))
    merged.update(canonical_encryption(encryption))
    merged.update(canonical_encryption(overrides))
    return _render(merged, EncryptionTarget(target))


def content_disposition(filename: str, disposition: str = "inline") -> str:
    """
    RFC 6266 Content-Disposition value with an ASCII fallback.

    >>> content_disposition("résumé.pdf")
    'inline; filename="r?sum?.pdf"; filename*=UTF-8\\'\\'r%C3%A9sum%C3%A9.pdf'
    """
    fallback = filename.encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace("\\", "\\\\").replace('"', '\\"')
    encoded = quote(filename, safe="!#$&+^`|")
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


__all__ = [
    "EncryptionTarget",
    "ENCRYPTION_PARAMS",
    "CUSTOMER_KEY_PARAMS",
    "canonical_encryption",
    "merge_options",
    "content_disposition",
]
