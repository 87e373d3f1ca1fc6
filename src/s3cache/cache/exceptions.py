"""Exceptions raised by the cache subsystem."""

from typing import Any, List, Optional, Tuple


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class DirectoryCreateError(CacheError):
    """Raised when the cache root or one of its subdirectories cannot be created."""

    pass


class InvalidArgumentError(CacheError, ValueError):
    """Raised for an empty URI or a malformed configuration value."""

    pass


class MetadataCorruptError(CacheError):
    """Raised when a metadata record exists but cannot be parsed.

    Never surfaced by read operations: the record is removed and the lookup
    degrades to a cache miss.
    """

    pass


class DataMissingError(CacheError):
    """Raised when a metadata record points at a data file that no longer exists."""

    pass


class CacheIOError(CacheError):
    """Raised when a filesystem read, write or delete fails."""

    pass


class EvictionPartialFailure(CacheError):
    """Raised after eviction or clearing when some entries could not be removed.

    Attributes:
        failures: List of (key, exception) pairs for each entry that failed
        result: Outcome of the work that did succeed
    """

    def __init__(
        self,
        failures: List[Tuple[str, BaseException]],
        result: Optional[Any] = None,
    ):
        self.failures = failures
        self.result = result
        keys = ", ".join(key for key, _ in failures)
        super().__init__(f"Failed to remove {len(failures)} cache entries: {keys}")
