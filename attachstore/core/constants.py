"""
Adapter-Wide Constants

All magic numbers and defaults for the storage adapter live here.
S3 service limits are documented at
https://docs.aws.amazon.com/AmazonS3/latest/userguide/qfacts.html
"""

from typing import Final

# =============================================================================
# SIZE UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB
GB: Final[int] = 1024 * MB

# =============================================================================
# TRANSFER STRATEGY
# =============================================================================
DEFAULT_UPLOAD_MULTIPART_THRESHOLD: Final[int] = 15 * MB
DEFAULT_COPY_MULTIPART_THRESHOLD: Final[int] = 150 * MB

# Concurrency used for multipart transfers when the caller gives no thread_count
DEFAULT_THREAD_COUNT: Final[int] = 10

# S3 multipart limits
MIN_PART_SIZE: Final[int] = 5 * MB
MAX_MULTIPART_PARTS: Final[int] = 10_000

# =============================================================================
# BULK OPERATIONS
# =============================================================================
MAX_BATCH_DELETE: Final[int] = 1000
MAX_LIST_PAGE_SIZE: Final[int] = 1000

# =============================================================================
# URLS
# =============================================================================
DEFAULT_PRESIGN_EXPIRY: Final[int] = 15 * 60  # seconds

# =============================================================================
# STREAMING
# =============================================================================
DEFAULT_CHUNK_SIZE: Final[int] = 1 * MB
