"""Local disk cache for remote objects.

This module provides caching of remote object-store files (e.g., NetCDF data
on S3) with TTL expiry, ETag revalidation and LRU size eviction.

Key components:
- CacheManager: Main cache interface (get, put, evict, clear)
- CacheConfig: Configuration
- MetadataStore: Per-entry metadata records
- derive_key: URI to cache key mapping
"""

from s3cache.cache.config import CacheConfig, init_cache_dir, resolve_cache_dir
from s3cache.cache.exceptions import (
    CacheError,
    CacheIOError,
    DataMissingError,
    DirectoryCreateError,
    EvictionPartialFailure,
    InvalidArgumentError,
    MetadataCorruptError,
)
from s3cache.cache.keys import derive_key
from s3cache.cache.manager import CacheLookup, CacheManager, EvictionResult
from s3cache.cache.metadata import CacheEntry, MetadataStore

__all__ = [
    "CacheManager",
    "CacheConfig",
    "CacheEntry",
    "CacheLookup",
    "EvictionResult",
    "MetadataStore",
    "derive_key",
    "init_cache_dir",
    "resolve_cache_dir",
    "CacheError",
    "CacheIOError",
    "DataMissingError",
    "DirectoryCreateError",
    "EvictionPartialFailure",
    "InvalidArgumentError",
    "MetadataCorruptError",
]
