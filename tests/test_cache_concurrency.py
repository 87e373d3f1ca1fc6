"""Tests for puts interleaved with eviction from another process.

A second CacheManager on the same root stands in for a concurrent process.
Its evict() or clear() is run at the points where a put has committed some,
but not all, of its files.
"""

import os
import shutil
import tempfile
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from s3cache.cache.config import CacheConfig
from s3cache.cache.exceptions import CacheIOError
from s3cache.cache.keys import derive_key
from s3cache.cache.manager import CacheManager
from s3cache.remote import fetch_cached

URI = "s3://bucket/data/file.nc"
CONTENT = b"netcdf payload"


@pytest.fixture
def temp_dir():
    """Create temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cache_config(temp_dir):
    """Create test cache configuration."""
    return CacheConfig(cache_dir=temp_dir / "cache", validate_etag=False)


@pytest.fixture
def cache_manager(cache_config):
    """Create initialized cache manager."""
    manager = CacheManager(cache_config)
    manager.init()
    return manager


@pytest.fixture
def other_manager(cache_config):
    """Create a second manager on the same root."""
    return CacheManager(cache_config)


@pytest.fixture
def old_source(temp_dir):
    """Create a downloaded file whose mtime is an hour old."""
    source = temp_dir / "download.nc"
    source.write_bytes(CONTENT)
    old = time.time() - 3600
    os.utime(source, (old, old))
    return source


def assert_cached(manager, entry):
    data_path = manager.root / entry.local_file
    assert data_path.read_bytes() == CONTENT
    lookup = manager.get(URI)
    assert lookup.hit is True
    assert lookup.local_path == data_path


@pytest.mark.parametrize("operation", ["evict", "clear"])
@pytest.mark.parametrize("move", [True, False])
class TestInterleavedPut:
    """Test a put survives eviction running between its steps."""

    def test_after_data_staged(self, cache_manager, other_manager, old_source, operation, move):
        """Test eviction between staging the temp file and renaming it."""
        name = "move" if move else "copyfile"
        real = getattr(shutil, name)

        def staged_then_evicted(*args, **kwargs):
            result = real(*args, **kwargs)
            getattr(other_manager, operation)()
            return result

        with patch.object(shutil, name, staged_then_evicted):
            entry = cache_manager.put(URI, old_source, move=move)

        assert_cached(cache_manager, entry)
        assert old_source.exists() is not move

    def test_before_metadata_write(
        self, cache_manager, other_manager, old_source, operation, move
    ):
        """Test eviction between the data rename and the metadata commit."""
        real_write = cache_manager.store.write

        def evicted_then_write(entry):
            getattr(other_manager, operation)()
            return real_write(entry)

        with patch.object(cache_manager.store, "write", evicted_then_write):
            entry = cache_manager.put(URI, old_source, move=move)

        assert_cached(cache_manager, entry)


@pytest.mark.parametrize("operation", ["evict", "clear"])
class TestInterleavedFetch:
    """Test the fetch workflow racing eviction."""

    def test_fetch_returns_existing_path(self, cache_manager, other_manager, temp_dir, operation):
        """Test the fetch workflow hands back a file that exists."""
        staging = temp_dir / "staging"
        staging.mkdir()

        class OldDownloadStore:
            def head_object(self, uri):
                return '"v1"'

            def download(self, uri, dest_dir):
                path = Path(dest_dir) / "download.nc"
                path.write_bytes(CONTENT)
                old = time.time() - 3600
                os.utime(path, (old, old))
                return path, '"v1"'

        real_write = cache_manager.store.write

        def evicted_then_write(entry):
            getattr(other_manager, operation)()
            return real_write(entry)

        with patch("s3cache.remote.get_optimal_temp_dir", return_value=staging):
            with patch.object(cache_manager.store, "write", evicted_then_write):
                path = fetch_cached(URI, cache_manager, OldDownloadStore())

        assert path.exists()
        assert path.read_bytes() == CONTENT


class TestLostDataFile:
    """Test a put whose data file disappears before its record lands."""

    def test_put_reports_failure(self, cache_manager, old_source):
        """Test put raises instead of leaving a record without data."""
        real_write = cache_manager.store.write
        data_path = cache_manager.files_dir / derive_key(URI)

        def write_after_removal(entry):
            data_path.unlink()
            return real_write(entry)

        with patch.object(cache_manager.store, "write", write_after_removal):
            with pytest.raises(CacheIOError):
                cache_manager.put(URI, old_source)

        assert cache_manager.store.read(derive_key(URI)) is None
        assert cache_manager.get(URI).hit is False
