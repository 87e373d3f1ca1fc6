"""s3cache: Local disk cache for large files fetched from remote object stores."""

__version__ = "0.1.0"

from s3cache.cache import (
    CacheConfig,
    CacheEntry,
    CacheError,
    CacheLookup,
    CacheManager,
    EvictionResult,
    derive_key,
)
from s3cache.remote import (
    CloudFilesStore,
    RemoteObjectChanged,
    RemoteObjectNotFound,
    fetch_cached,
)

__all__ = [
    "CacheManager",
    "CacheConfig",
    "CacheEntry",
    "CacheError",
    "CacheLookup",
    "EvictionResult",
    "CloudFilesStore",
    "RemoteObjectChanged",
    "RemoteObjectNotFound",
    "derive_key",
    "fetch_cached",
    "__version__",
]
