"""Cache manager for local caching of remote objects."""

import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from s3cache.cache.config import (
    FILES_DIR,
    META_DIR,
    CacheConfig,
    init_cache_dir,
    resolve_cache_dir,
)
from s3cache.cache.exceptions import (
    CacheIOError,
    DataMissingError,
    EvictionPartialFailure,
    InvalidArgumentError,
)
from s3cache.cache.keys import derive_key, is_valid_key
from s3cache.cache.metadata import TEMP_PREFIX, CacheEntry, MetadataStore
from s3cache.cache.validation import etags_match, get_ttl_remaining, is_ttl_valid, utcnow
from s3cache.utils import format_size

logger = logging.getLogger(__name__)

# Orphan data files and leftover temp files younger than this are assumed to
# belong to a put still in progress in another process.
ORPHAN_GRACE_SECONDS = 60


class CacheLookup(NamedTuple):
    """Outcome of a cache lookup.

    Attributes:
        local_path: Absolute path to the cached data file on a hit, else None
        hit: True if the entry was found and validated
        entry: Metadata of the entry on a hit, else None
    """

    local_path: Optional[Path]
    hit: bool
    entry: Optional[CacheEntry] = None


MISS = CacheLookup(None, False, None)


@dataclass
class EvictionResult:
    """Summary of an eviction pass.

    Attributes:
        removed_count: Number of entries removed
        freed_bytes: Sum of size_bytes of removed entries
        remaining_bytes: Sum of size_bytes of entries left in the cache
        oversized_key: Key of a lone remaining entry that alone exceeds the
            size budget, if any
    """

    removed_count: int = 0
    freed_bytes: int = 0
    remaining_bytes: int = 0
    oversized_key: Optional[str] = None


class CacheManager:
    """Manages a local on-disk cache of remote objects keyed by URI.

    There is no locking: every data file and metadata record is committed
    with an atomic rename, so concurrent processes sharing a cache root only
    ever observe complete files.
    """

    def __init__(self, config: Optional[CacheConfig] = None):
        """Initialize cache manager.

        Args:
            config: Cache configuration (defaults if None)
        """
        self.config = config or CacheConfig()
        self.root = resolve_cache_dir(self.config)
        self.files_dir = self.root / FILES_DIR
        self.meta_dir = self.root / META_DIR
        self.store = MetadataStore(self.root)

    def __repr__(self) -> str:
        return f"CacheManager(root={str(self.root)!r}, enabled={self.config.enabled})"

    def init(self) -> Path:
        """Create the cache directory structure.

        Returns:
            Path to the cache root

        Raises:
            DirectoryCreateError: If any directory cannot be created
        """
        return init_cache_dir(self.config)

    def _data_path(self, key: str) -> Path:
        return self.files_dir / key

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, uri: str, remote_etag: Optional[str] = None) -> CacheLookup:
        """Look up a URI in the cache.

        Args:
            uri: Remote object identifier
            remote_etag: ETag currently reported by the remote store. Only
                checked when ``validate_etag`` is enabled.

        Returns:
            CacheLookup; ``hit`` is False for absent, expired, orphaned or
            superseded (ETag mismatch) entries

        Raises:
            InvalidArgumentError: If uri is empty
            CacheIOError: If metadata exists but cannot be read
        """
        key = derive_key(uri)

        if not self.config.enabled:
            return MISS

        entry = self.store.read(key)
        if entry is None:
            logger.debug(f"Cache miss for {uri}: not cached")
            return MISS

        data_path = self._data_path(key)
        try:
            self._check_data(entry, data_path)
        except DataMissingError as e:
            logger.warning(f"Removing orphaned cache metadata: {e}")
            self.store.delete(key)
            return MISS

        if not is_ttl_valid(entry.cached_at, self.config.ttl_seconds):
            logger.debug(f"Cache miss for {uri}: TTL expired")
            return MISS

        if self.config.validate_etag and not etags_match(entry.etag, remote_etag):
            # Keep the entry: the next successful put supersedes it
            logger.debug(
                f"Cache miss for {uri}: ETag changed ({entry.etag} -> {remote_etag})"
            )
            return MISS

        now = utcnow()
        entry.last_accessed = max(now, entry.cached_at)
        try:
            self.store.write(entry)
        except CacheIOError as e:
            logger.warning(f"Could not record access for {uri}: {e}")

        logger.debug(f"Cache hit for {uri}")
        return CacheLookup(data_path, True, entry)

    @staticmethod
    def _check_data(entry: CacheEntry, data_path: Path) -> None:
        if not data_path.is_file():
            raise DataMissingError(
                f"Data file {data_path} for {entry.uri} does not exist"
            )

    def contains(self, uri: str) -> bool:
        """Check if a URI has both metadata and data on disk.

        Does not check TTL or update access time.
        """
        key = derive_key(uri)
        return self.store.read(key) is not None and self._data_path(key).is_file()

    def touch(self, uri: str, etag: Optional[str] = None) -> Optional[CacheEntry]:
        """Mark an entry as revalidated.

        Refreshes ``last_accessed`` and, if given, replaces the stored ETag.
        Used after a HEAD request confirmed the cached copy is still current.

        Args:
            uri: Remote object identifier
            etag: New ETag to store

        Returns:
            Updated entry, or None if the URI is not cached
        """
        key = derive_key(uri)
        entry = self.store.read(key)
        if entry is None:
            return None

        entry.last_accessed = max(utcnow(), entry.cached_at)
        if etag is not None:
            entry.etag = etag
        self.store.write(entry)
        return entry

    # =========================================================================
    # Store
    # =========================================================================

    def put(
        self,
        uri: str,
        source_file: Any,
        etag: Optional[str] = None,
        move: bool = False,
    ) -> Optional[CacheEntry]:
        """Store a downloaded file in the cache.

        The caller is responsible for having fully downloaded source_file;
        its content is not checked against the remote object.

        Args:
            uri: Remote object identifier the file was downloaded from
            source_file: Path to the local file to cache
            etag: ETag reported by the remote store
            move: Move the file into the cache instead of copying it

        Returns:
            The new entry, or None if caching is disabled

        Raises:
            InvalidArgumentError: If uri is empty or source_file does not exist
            CacheIOError: If the data file or metadata cannot be committed
        """
        key = derive_key(uri)
        source = Path(source_file)

        if not source.is_file():
            raise InvalidArgumentError(f"Source file {source} does not exist")

        if not self.config.enabled:
            logger.debug(f"Caching disabled, not storing {uri}")
            return None

        data_path = self._data_path(key)
        self._commit_data(key, source, data_path, move)

        try:
            size_bytes = data_path.stat().st_size
            entry = CacheEntry.create(key, uri, size_bytes, etag=etag)
            self.store.write(entry)
        except (OSError, CacheIOError) as e:
            # Without a record the data file would be an orphan
            self._remove_file(data_path)
            if isinstance(e, CacheIOError):
                raise
            raise CacheIOError(f"Cannot finalize cache entry for {uri}: {e}") from e

        if not data_path.is_file():
            # Removed by a concurrent evict or clear before the record landed
            try:
                self.store.delete(key)
            except CacheIOError as e:
                logger.warning(f"Could not remove record for lost data file {data_path}: {e}")
            raise CacheIOError(f"Data file for {uri} was removed before it was committed")

        logger.debug(f"Cached {uri} ({format_size(size_bytes)}) as {key}")
        return entry

    def _commit_data(self, key: str, source: Path, data_path: Path, move: bool) -> None:
        """Copy or move source into files/ under a temp name, then rename into place."""
        try:
            fd, temp_name = tempfile.mkstemp(
                prefix=f"{TEMP_PREFIX}{key}-", dir=self.files_dir
            )
        except OSError as e:
            raise CacheIOError(f"Cannot create temp file in {self.files_dir}: {e}") from e
        os.close(fd)
        temp_path = Path(temp_name)

        try:
            if move:
                # A renamed file keeps its mtime; orphan sweeps must see it as new
                os.utime(source)
                shutil.move(str(source), str(temp_path))
            else:
                shutil.copyfile(source, temp_path)

            with open(temp_path, "rb+") as f:
                os.fsync(f.fileno())

            os.replace(temp_path, data_path)
        except OSError as e:
            if move and not source.exists() and temp_path.exists():
                # Give the caller their file back
                try:
                    shutil.move(str(temp_path), str(source))
                except OSError as restore_error:
                    logger.error(
                        f"Could not restore {source} after failed cache write; "
                        f"data left at {temp_path}: {restore_error}"
                    )
                    raise CacheIOError(
                        f"Cannot write cache data file {data_path}: {e}"
                    ) from e
            self._remove_file(temp_path)
            raise CacheIOError(f"Cannot write cache data file {data_path}: {e}") from e

    @staticmethod
    def _remove_file(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up {path}: {e}")

    # =========================================================================
    # Eviction
    # =========================================================================

    def _remove_entry(self, key: str) -> None:
        """Delete an entry's data file, then its metadata record."""
        try:
            self._data_path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheIOError(f"Cannot delete data file for {key}: {e}") from e
        self.store.delete(key)

    def evict(self) -> EvictionResult:
        """Remove expired entries, then least-recently-used ones over budget.

        TTL pass: every entry older than ``ttl_seconds`` is removed.
        Size pass: while the remaining total exceeds ``max_size_bytes`` and
        more than one entry remains, the entry with the oldest
        ``last_accessed`` is removed. A single entry larger than the budget
        is kept and reported as ``oversized_key``.

        Returns:
            EvictionResult

        Raises:
            EvictionPartialFailure: If some entries could not be removed.
                All other removals are still carried out.
        """
        result = EvictionResult()
        failures: List[Tuple[str, BaseException]] = []
        now = utcnow()

        remaining: List[CacheEntry] = []
        for entry in self.store.list_all():
            if is_ttl_valid(entry.cached_at, self.config.ttl_seconds, now=now):
                remaining.append(entry)
                continue
            try:
                self._remove_entry(entry.key)
            except CacheIOError as e:
                failures.append((entry.key, e))
                # Still on disk and still counts against the budget
                remaining.append(entry)
                continue
            result.removed_count += 1
            result.freed_bytes += entry.size_bytes
            logger.debug(f"Evicted expired cache entry {entry.key} ({entry.uri})")

        total = sum(entry.size_bytes for entry in remaining)
        max_size = self.config.max_size_bytes

        if total > max_size:
            remaining.sort(key=lambda entry: entry.last_accessed)
            survivors: List[CacheEntry] = []
            for index, entry in enumerate(remaining):
                left = len(remaining) - index
                if total <= max_size or left + len(survivors) <= 1:
                    survivors.append(entry)
                    continue
                try:
                    self._remove_entry(entry.key)
                except CacheIOError as e:
                    failures.append((entry.key, e))
                    survivors.append(entry)
                    continue
                total -= entry.size_bytes
                result.removed_count += 1
                result.freed_bytes += entry.size_bytes
                logger.debug(f"Evicted LRU cache entry {entry.key} ({entry.uri})")
            remaining = survivors

        result.remaining_bytes = total
        if len(remaining) == 1 and total > max_size:
            result.oversized_key = remaining[0].key
            logger.warning(
                f"Cache entry {remaining[0].uri} ({format_size(total)}) exceeds "
                f"max cache size ({format_size(max_size)}) and was kept"
            )

        failures.extend(self._sweep_orphans(now_ts=time.time()))

        if result.removed_count:
            logger.info(
                f"Evicted {result.removed_count} cache entries, "
                f"freed {format_size(result.freed_bytes)}"
            )

        if failures:
            raise EvictionPartialFailure(failures, result)
        return result

    def _sweep_orphans(
        self, now_ts: float, grace: float = ORPHAN_GRACE_SECONDS
    ) -> List[Tuple[str, BaseException]]:
        """Remove data files without metadata and leftover temp files.

        Files modified within the grace period are skipped.
        """
        failures: List[Tuple[str, BaseException]] = []
        known = set(self.store.list_keys())

        for directory in (self.files_dir, self.meta_dir):
            try:
                names = os.listdir(directory)
            except FileNotFoundError:
                continue
            except OSError as e:
                failures.append((str(directory), CacheIOError(str(e))))
                continue

            for name in names:
                is_temp = name.startswith(TEMP_PREFIX)
                is_orphan = (
                    directory == self.files_dir
                    and is_valid_key(name)
                    and name not in known
                )
                if not (is_temp or is_orphan):
                    continue

                path = directory / name
                try:
                    if now_ts - path.stat().st_mtime < grace:
                        continue
                    path.unlink()
                    logger.debug(f"Removed orphaned cache file {path}")
                except FileNotFoundError:
                    continue
                except OSError as e:
                    failures.append((name, CacheIOError(f"Cannot delete {path}: {e}")))

        return failures

    def clear(self) -> int:
        """Remove every entry from the cache.

        Clearing an empty or not yet initialized cache succeeds. Orphan data
        and temp files younger than the grace period are left for the put
        that owns them.

        Returns:
            Number of entries removed

        Raises:
            EvictionPartialFailure: If some entries could not be removed
        """
        removed = 0
        failures: List[Tuple[str, BaseException]] = []

        for key in self.store.list_keys():
            try:
                self._remove_entry(key)
            except CacheIOError as e:
                failures.append((key, e))
                continue
            removed += 1

        failures.extend(self._sweep_orphans(now_ts=time.time()))

        logger.info(f"Cleared {removed} entries from cache at {self.root}")

        if failures:
            raise EvictionPartialFailure(failures, removed)
        return removed

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_status(self, uri: str) -> Optional[Dict[str, Any]]:
        """Get cache status for a URI.

        Args:
            uri: Remote object identifier

        Returns:
            Status dict with cache information, or None if not cached
        """
        key = derive_key(uri)
        entry = self.store.read(key)
        if entry is None:
            return None

        data_path = self._data_path(key)
        return {
            "key": key,
            "uri": entry.uri,
            "cache_path": str(data_path),
            "data_present": data_path.is_file(),
            "size_bytes": entry.size_bytes,
            "etag": entry.etag,
            "cached_at": entry.cached_at.isoformat(),
            "last_accessed": entry.last_accessed.isoformat(),
            "ttl_remaining": get_ttl_remaining(entry.cached_at, self.config.ttl_seconds),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Statistics dict
        """
        entries = list(self.store.list_all())
        total = sum(entry.size_bytes for entry in entries)
        return {
            "cache_dir": str(self.root),
            "enabled": self.config.enabled,
            "total_items": len(entries),
            "total_size_bytes": total,
            "total_size": format_size(total),
            "max_size_bytes": self.config.max_size_bytes,
            "ttl_seconds": self.config.ttl_seconds,
            "usage_fraction": (
                total / self.config.max_size_bytes if self.config.max_size_bytes else 0.0
            ),
        }
