"""Per-entry cache metadata records.

Each cached object has one JSON record at ``<root>/meta/<key>``. Records are
replaced atomically (temp file, fsync, rename) so that readers in other
processes see either the previous record or the new one, never a partial
write.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import orjson

from s3cache.cache.config import FILES_DIR, META_DIR
from s3cache.cache.exceptions import CacheIOError, MetadataCorruptError
from s3cache.cache.keys import is_valid_key
from s3cache.cache.validation import utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

REQUIRED_FIELDS = (
    "schema_version",
    "key",
    "uri",
    "local_file",
    "size_bytes",
    "cached_at",
    "last_accessed",
)

TEMP_PREFIX = ".tmp-"


@dataclass
class CacheEntry:
    """Metadata for one cached object.

    Attributes:
        key: Derived cache key
        uri: Original remote identifier, verbatim
        local_file: Data file path relative to the cache root ('files/<key>')
        size_bytes: Size of the data file
        etag: ETag reported by the remote store, if any
        cached_at: Time of first successful store (UTC)
        last_accessed: Time of the latest validated hit (UTC)
        schema_version: Record format version
    """

    key: str
    uri: str
    local_file: str
    size_bytes: int
    cached_at: datetime
    last_accessed: datetime
    etag: Optional[str] = None
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def create(
        cls,
        key: str,
        uri: str,
        size_bytes: int,
        etag: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "CacheEntry":
        """Build a fresh entry with cached_at == last_accessed == now."""
        now = now or utcnow()
        return cls(
            key=key,
            uri=uri,
            local_file=f"{FILES_DIR}/{key}",
            size_bytes=size_bytes,
            cached_at=now,
            last_accessed=now,
            etag=etag,
        )

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds elapsed since the entry was first cached."""
        now = now or utcnow()
        return (now - self.cached_at).total_seconds()

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the on-disk record structure."""
        return {
            "schema_version": self.schema_version,
            "key": self.key,
            "uri": self.uri,
            "local_file": self.local_file,
            "size_bytes": self.size_bytes,
            "etag": self.etag,
            "cached_at": self.cached_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Any) -> "CacheEntry":
        """Parse an on-disk record.

        Unknown fields are ignored so that newer writers can add fields
        without breaking this reader.

        Raises:
            MetadataCorruptError: If required fields are missing or malformed
        """
        if not isinstance(record, dict):
            raise MetadataCorruptError("Metadata record is not an object")

        missing = [name for name in REQUIRED_FIELDS if name not in record]
        if missing:
            raise MetadataCorruptError(f"Missing required fields: {missing}")

        if isinstance(record["schema_version"], bool) or not isinstance(
            record["schema_version"], int
        ):
            raise MetadataCorruptError(
                f"Invalid schema_version: {record['schema_version']!r}"
            )

        etag = record.get("etag")
        if etag is not None and not isinstance(etag, str):
            raise MetadataCorruptError(f"Invalid etag: {etag!r}")

        size_bytes = record["size_bytes"]
        if isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0:
            raise MetadataCorruptError(f"Invalid size_bytes: {size_bytes!r}")

        for name in ("key", "uri", "local_file"):
            if not isinstance(record[name], str) or not record[name]:
                raise MetadataCorruptError(f"Invalid {name}: {record[name]!r}")

        try:
            cached_at = _parse_timestamp(record["cached_at"])
            last_accessed = _parse_timestamp(record["last_accessed"])
        except (TypeError, ValueError) as e:
            raise MetadataCorruptError(f"Invalid timestamp: {e}") from e

        return cls(
            key=record["key"],
            uri=record["uri"],
            local_file=record["local_file"],
            size_bytes=size_bytes,
            cached_at=cached_at,
            last_accessed=last_accessed,
            etag=etag,
            schema_version=record["schema_version"],
        )


def _parse_timestamp(value: Any) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no timezone")
    return parsed


class MetadataStore:
    """Reads and writes metadata records under ``<root>/meta``."""

    def __init__(self, root: Path):
        """Initialize metadata store.

        Args:
            root: Cache root directory
        """
        self.root = Path(root)
        self.meta_dir = self.root / META_DIR

    def _record_path(self, key: str) -> Path:
        return self.meta_dir / key

    def write(self, entry: CacheEntry) -> None:
        """Atomically write (or replace) the record for an entry.

        Args:
            entry: Entry to persist

        Raises:
            CacheIOError: If the record cannot be written
        """
        content = orjson.dumps(entry.to_record(), option=orjson.OPT_INDENT_2)
        target = self._record_path(entry.key)

        try:
            fd, temp_name = tempfile.mkstemp(
                prefix=f"{TEMP_PREFIX}{entry.key}-", dir=self.meta_dir
            )
        except OSError as e:
            raise CacheIOError(f"Cannot create metadata temp file for {entry.key}: {e}") from e

        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        except OSError as e:
            _unlink_quietly(temp_path)
            raise CacheIOError(f"Cannot write metadata for {entry.key}: {e}") from e

    def read(self, key: str) -> Optional[CacheEntry]:
        """Read the record for a key.

        A corrupt record is logged, removed, and reported as absent.

        Args:
            key: Cache key

        Returns:
            CacheEntry, or None if no valid record exists

        Raises:
            CacheIOError: If the record exists but cannot be read
        """
        path = self._record_path(key)
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheIOError(f"Cannot read metadata for {key}: {e}") from e

        try:
            return self._parse(key, content)
        except MetadataCorruptError as e:
            logger.warning(f"Removing corrupt cache metadata {path}: {e}")
            try:
                self.delete(key)
            except CacheIOError as delete_error:
                logger.warning(f"Could not remove corrupt metadata {path}: {delete_error}")
            return None

    @staticmethod
    def _parse(key: str, content: bytes) -> CacheEntry:
        try:
            record = orjson.loads(content)
        except orjson.JSONDecodeError as e:
            raise MetadataCorruptError(f"Invalid JSON: {e}") from e

        entry = CacheEntry.from_record(record)
        if entry.key != key:
            raise MetadataCorruptError(
                f"Record key {entry.key!r} does not match file name {key!r}"
            )
        return entry

    def delete(self, key: str) -> bool:
        """Remove the record for a key.

        Args:
            key: Cache key

        Returns:
            True if a record was removed, False if none existed

        Raises:
            CacheIOError: If the record exists but cannot be removed
        """
        try:
            self._record_path(key).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheIOError(f"Cannot delete metadata for {key}: {e}") from e
        return True

    def list_keys(self) -> List[str]:
        """Snapshot of record keys currently on disk."""
        try:
            names = os.listdir(self.meta_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise CacheIOError(f"Cannot list metadata directory {self.meta_dir}: {e}") from e
        return sorted(name for name in names if is_valid_key(name))

    def list_all(self) -> Iterator[CacheEntry]:
        """Iterate over all valid records.

        The set of keys is captured when iteration starts; records removed
        afterwards are skipped, records added afterwards are not seen.

        Yields:
            CacheEntry for each readable record
        """
        for key in self.list_keys():
            entry = self.read(key)
            if entry is not None:
                yield entry


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up temp file {path}: {e}")
