"""
Storage Adapter Configuration Module
====================================

Type-safe, immutable configuration dataclasses for the storage facade and
its aioboto3 client. All configurations use frozen dataclasses so one
`S3Storage` instance can be shared by concurrent tasks without locking.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time, failing
   with ConfigError before any network call is made
3. **Defaults**: Sensible defaults; only `bucket` is required
4. **Environment**: Supports loading from environment variables
5. **Per-instance**: No process-wide defaults, so a cache storage and a
   permanent storage can be configured differently side by side

License: MIT
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Union

from attachstore.core import constants as C
from attachstore.core.errors import ConfigError

if TYPE_CHECKING:
    from attachstore.storage.protocols import ObjectStoreClient
    from attachstore.storage.urls import UrlSigner


def _env_reader(prefix: str):
    """Build `_get/_get_int/_get_bool` helpers bound to an env prefix."""

    def _get(key: str, default: str = "") -> str:
        return os.environ.get(f"{prefix}_{key}", default)

    def _get_int(key: str, default: Optional[int]) -> Optional[int]:
        val = _get(key)
        if not val:
            return default
        try:
            return int(val)
        except ValueError:
            raise ConfigError.invalid_value(f"{prefix}_{key}", val, "must be an integer")

    def _get_bool(key: str, default: bool) -> bool:
        val = _get(key).lower()
        if val in ("true", "1", "yes"):
            return True
        if val in ("false", "0", "no"):
            return False
        return default

    return _get, _get_int, _get_bool


# =============================================================================
# MULTIPART THRESHOLDS
# =============================================================================

@dataclass(frozen=True, slots=True)
class MultipartThresholds:
    """
    Payload sizes above which uploads and copies switch to multipart.

    The two thresholds are independent: a copy is server-side and cheap per
    request, so it stays single-request for much larger objects.

    Attributes:
        upload: Threshold in bytes for uploads (default 15 MiB).
        copy: Threshold in bytes for server-side copies (default 150 MiB).
    """
    upload: int = C.DEFAULT_UPLOAD_MULTIPART_THRESHOLD
    copy: int = C.DEFAULT_COPY_MULTIPART_THRESHOLD

    def __post_init__(self) -> None:
        for name in ("upload", "copy"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError.invalid_value(
                    f"multipart_threshold.{name}", value, "must be a positive integer"
                )

    @classmethod
    def coerce(cls, value: Any) -> MultipartThresholds:
        """
        Accept the forms `multipart_threshold` may be configured with.

        - None: defaults for both operations
        - int: the same threshold for uploads and copies
        - mapping with `upload` and/or `copy`: missing keys keep defaults
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            unknown = set(value) - {"upload", "copy"}
            if unknown:
                raise ConfigError.invalid_value(
                    "multipart_threshold", value, f"unknown keys {sorted(unknown)}"
                )
            return cls(**dict(value))
        return cls(upload=value, copy=value)

    def for_operation(self, kind: str) -> int:
        return self.copy if kind == "copy" else self.upload


# =============================================================================
# CLIENT CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class ClientConfig:
    """
    Connection settings for the aioboto3 S3 client.

    Credentials left as None are resolved by botocore's usual chain
    (environment, shared config, instance role).

    Attributes:
        region: AWS region (None lets botocore resolve it).
        endpoint_url: Custom endpoint for MinIO/R2 (None for AWS).
        access_key_id: AWS access key (None for role-based auth).
        secret_access_key: AWS secret key (None for role-based auth).
        session_token: Temporary session token for STS.
        force_path_style: Use path-style addressing (MinIO).
        use_accelerate_endpoint: Route through S3 Transfer Acceleration.
        max_pool_connections: HTTP connection pool size.
        connect_timeout_seconds: TCP connect timeout.
        read_timeout_seconds: Read operation timeout.
        max_retries: botocore retry attempts for transient failures.
        use_ssl: Use HTTPS for connections.
        verify_ssl: Verify SSL certificates (disable for self-signed).
    """
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None

    force_path_style: bool = False
    use_accelerate_endpoint: bool = False

    max_pool_connections: int = 10
    connect_timeout_seconds: int = 5
    read_timeout_seconds: int = 60
    max_retries: int = 3

    use_ssl: bool = True
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        if self.max_pool_connections <= 0:
            raise ConfigError.invalid_value(
                "max_pool_connections", self.max_pool_connections, "must be > 0"
            )
        if self.connect_timeout_seconds <= 0:
            raise ConfigError.invalid_value(
                "connect_timeout_seconds", self.connect_timeout_seconds, "must be > 0"
            )
        if self.read_timeout_seconds <= 0:
            raise ConfigError.invalid_value(
                "read_timeout_seconds", self.read_timeout_seconds, "must be > 0"
            )
        if self.max_retries < 0:
            raise ConfigError.invalid_value("max_retries", self.max_retries, "must be >= 0")
        if self.use_accelerate_endpoint and self.force_path_style:
            raise ConfigError.invalid_value(
                "use_accelerate_endpoint", True, "cannot be combined with force_path_style"
            )

    @classmethod
    def from_env(cls, prefix: str = "S3") -> ClientConfig:
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_REGION (falls back to AWS_REGION)
        - {prefix}_ENDPOINT_URL
        - {prefix}_ACCESS_KEY_ID / {prefix}_SECRET_ACCESS_KEY
        - AWS_SESSION_TOKEN
        - {prefix}_FORCE_PATH_STYLE, {prefix}_USE_ACCELERATE_ENDPOINT
        - {prefix}_MAX_POOL_CONNECTIONS, {prefix}_CONNECT_TIMEOUT,
          {prefix}_READ_TIMEOUT, {prefix}_MAX_RETRIES
        - {prefix}_USE_SSL, {prefix}_VERIFY_SSL
        """
        _get, _get_int, _get_bool = _env_reader(prefix)

        return cls(
            region=_get("REGION") or os.environ.get("AWS_REGION") or None,
            endpoint_url=_get("ENDPOINT_URL") or None,
            access_key_id=_get("ACCESS_KEY_ID") or None,
            secret_access_key=_get("SECRET_ACCESS_KEY") or None,
            session_token=os.environ.get("AWS_SESSION_TOKEN") or None,
            force_path_style=_get_bool("FORCE_PATH_STYLE", False),
            use_accelerate_endpoint=_get_bool("USE_ACCELERATE_ENDPOINT", False),
            max_pool_connections=_get_int("MAX_POOL_CONNECTIONS", 10),
            connect_timeout_seconds=_get_int("CONNECT_TIMEOUT", 5),
            read_timeout_seconds=_get_int("READ_TIMEOUT", 60),
            max_retries=_get_int("MAX_RETRIES", 3),
            use_ssl=_get_bool("USE_SSL", True),
            verify_ssl=_get_bool("VERIFY_SSL", True),
        )

    def get_boto_config(self) -> Dict[str, Any]:
        """
        Generate keyword arguments for `aioboto3.Session().client("s3", ...)`.

        Returns:
            Dict with region, endpoint, credentials and a botocore Config.
        """
        from botocore.config import Config

        s3_options: Dict[str, Any] = {
            "addressing_style": "path" if self.force_path_style else "auto",
        }
        if self.use_accelerate_endpoint:
            s3_options["use_accelerate_endpoint"] = True

        kwargs: Dict[str, Any] = {
            "config": Config(
                max_pool_connections=self.max_pool_connections,
                connect_timeout=self.connect_timeout_seconds,
                read_timeout=self.read_timeout_seconds,
                retries={"max_attempts": self.max_retries, "mode": "standard"},
                signature_version="s3v4",
                s3=s3_options,
            ),
            "use_ssl": self.use_ssl,
        }

        if self.region:
            kwargs["region_name"] = self.region
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if self.access_key_id and self.secret_access_key:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        if not self.verify_ssl:
            kwargs["verify"] = False

        return kwargs


# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Configuration of one `S3Storage` instance.

    Created once, validated in `__post_init__` and held read-only for the
    lifetime of the storage.

    Attributes:
        bucket: Bucket name (required).
        prefix: Namespace prepended to every key, normalized without
            leading or trailing slashes.
        public: Default visibility for uploads and URLs.
        upload_options: Defaults merged into every upload, copy and presign.
        multipart_threshold: int, mapping with `upload`/`copy`, or
            MultipartThresholds. Normalized to MultipartThresholds.
        signer: External URL signer (object with `sign(url, options)` or
            a plain callable with the same arguments).
        host: Default CDN host for `url()`. Must end with "/".
        use_accelerate_endpoint: Use S3 Transfer Acceleration.
        encryption: Encryption parameters (`sse_*` or
            `server_side_encryption_*` names), merged per operation.
        max_batch_delete: Keys per batch delete call (1..1000).
        list_page_size: Keys per listing call (1..1000).
        client: Pre-built object-store client. When None, an AioS3Client
            is built from `client_config`.
        client_config: Connection settings for the built client.
    """
    bucket: str
    prefix: Optional[str] = None
    public: bool = False
    upload_options: Mapping[str, Any] = field(default_factory=dict)
    multipart_threshold: Union[int, Mapping[str, int], MultipartThresholds, None] = None
    signer: Optional[Union["UrlSigner", Callable[..., str]]] = None
    host: Optional[str] = None
    use_accelerate_endpoint: bool = False
    encryption: Mapping[str, Any] = field(default_factory=dict)
    max_batch_delete: int = C.MAX_BATCH_DELETE
    list_page_size: int = C.MAX_LIST_PAGE_SIZE
    client: Optional["ObjectStoreClient"] = None
    client_config: Optional[ClientConfig] = None

    def __post_init__(self) -> None:
        """
        Validate and normalize.

        Raises:
            ConfigError: On a missing bucket, malformed host, bad threshold,
                out-of-range batch/page size or unusable signer.
        """
        from attachstore.storage.keys import normalize_prefix

        if not isinstance(self.bucket, str) or not self.bucket.strip():
            raise ConfigError.missing_bucket()

        if self.prefix is not None and not isinstance(self.prefix, str):
            raise ConfigError.invalid_value("prefix", self.prefix, "must be a string")
        object.__setattr__(self, "prefix", normalize_prefix(self.prefix))

        if self.host is not None and (not isinstance(self.host, str) or not self.host.endswith("/")):
            raise ConfigError.malformed_host(str(self.host))

        object.__setattr__(
            self, "multipart_threshold", MultipartThresholds.coerce(self.multipart_threshold)
        )

        if not 1 <= self.max_batch_delete <= C.MAX_BATCH_DELETE:
            raise ConfigError.invalid_value(
                "max_batch_delete", self.max_batch_delete, f"must be in 1..{C.MAX_BATCH_DELETE}"
            )
        if not 1 <= self.list_page_size <= C.MAX_LIST_PAGE_SIZE:
            raise ConfigError.invalid_value(
                "list_page_size", self.list_page_size, f"must be in 1..{C.MAX_LIST_PAGE_SIZE}"
            )

        if self.signer is not None and not (callable(self.signer) or hasattr(self.signer, "sign")):
            raise ConfigError.invalid_value(
                "signer", self.signer, "must be callable or expose sign(url, options)"
            )

        if not isinstance(self.upload_options, Mapping):
            raise ConfigError.invalid_value("upload_options", self.upload_options, "must be a mapping")
        if not isinstance(self.encryption, Mapping):
            raise ConfigError.invalid_value("encryption", self.encryption, "must be a mapping")
        object.__setattr__(self, "upload_options", MappingProxyType(dict(self.upload_options)))
        object.__setattr__(self, "encryption", MappingProxyType(dict(self.encryption)))

    @property
    def thresholds(self) -> MultipartThresholds:
        # Always a MultipartThresholds after __post_init__
        return self.multipart_threshold  # type: ignore[return-value]

    def effective_client_config(self) -> ClientConfig:
        """Client settings with the storage-level accelerate flag applied."""
        base = self.client_config or ClientConfig()
        if self.use_accelerate_endpoint and not base.use_accelerate_endpoint:
            from dataclasses import replace
            return replace(base, use_accelerate_endpoint=True)
        return base

    @classmethod
    def from_env(cls, prefix: str = "ATTACHSTORE", **overrides: Any) -> StorageConfig:
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_BUCKET: Bucket name (required)
        - {prefix}_PREFIX: Key namespace
        - {prefix}_PUBLIC: true|false
        - {prefix}_HOST: CDN host ending with "/"
        - {prefix}_MULTIPART_THRESHOLD: upload threshold in bytes
        - {prefix}_MULTIPART_COPY_THRESHOLD: copy threshold in bytes
        - {prefix}_USE_ACCELERATE_ENDPOINT: true|false
        - {prefix}_SSE: server_side_encryption value (e.g. "aws:kms")
        - {prefix}_SSE_KMS_KEY_ID: KMS key for SSE-KMS

        Client settings are read by `ClientConfig.from_env(prefix)`.
        Keyword overrides win over the environment (e.g. `signer=`).

        Raises:
            ConfigError: If the bucket variable is missing.
        """
        _get, _get_int, _get_bool = _env_reader(prefix)

        threshold = MultipartThresholds(
            upload=_get_int("MULTIPART_THRESHOLD", C.DEFAULT_UPLOAD_MULTIPART_THRESHOLD),
            copy=_get_int("MULTIPART_COPY_THRESHOLD", C.DEFAULT_COPY_MULTIPART_THRESHOLD),
        )

        encryption: Dict[str, str] = {}
        if _get("SSE"):
            encryption["server_side_encryption"] = _get("SSE")
        if _get("SSE_KMS_KEY_ID"):
            encryption["sse_kms_key_id"] = _get("SSE_KMS_KEY_ID")

        values: Dict[str, Any] = {
            "bucket": _get("BUCKET"),
            "prefix": _get("PREFIX") or None,
            "public": _get_bool("PUBLIC", False),
            "host": _get("HOST") or None,
            "multipart_threshold": threshold,
            "use_accelerate_endpoint": _get_bool("USE_ACCELERATE_ENDPOINT", False),
            "encryption": encryption,
            "client_config": ClientConfig.from_env(prefix),
        }
        values.update(overrides)
        return cls(**values)


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "MultipartThresholds",
    "ClientConfig",
    "StorageConfig",
]
