"""Utility functions for s3cache."""

import os
import tempfile
from pathlib import Path
from typing import Tuple, Union

# RAM-backed scratch space preferred for staging downloads
SHM_DIR = "/dev/shm"


def is_cloud_path(path: Union[str, Path]) -> bool:
    """Check if a path is a cloud storage path.

    Args:
        path: Path to check

    Returns:
        True if path starts with cloud storage protocol

    Examples:
        >>> is_cloud_path('s3://bucket/file.nc')
        True
        >>> is_cloud_path('/local/path/file.nc')
        False
        >>> is_cloud_path('gs://bucket/file.nc')
        True
    """
    path_str = str(path)
    cloud_prefixes = (
        "s3://",
        "gs://",
        "gcs://",
        "az://",
        "azure://",
        "https://",
        "http://",
        "file://",
    )
    return path_str.startswith(cloud_prefixes)


def split_uri(uri: str) -> Tuple[str, str]:
    """Split a URI into its parent location and object name.

    Examples:
        >>> split_uri('s3://bucket/data/file.nc')
        ('s3://bucket/data', 'file.nc')
    """
    parts = uri.rstrip("/").rsplit("/", 1)
    if len(parts) != 2 or not parts[1] or parts[0].endswith(":/"):
        raise ValueError(f"URI has no object name: {uri}")
    return parts[0], parts[1]


def format_size(num_bytes: int) -> str:
    """Format a byte count for humans.

    Examples:
        >>> format_size(512)
        '512 B'
        >>> format_size(10 * 1024**3)
        '10.00 GB'
    """
    if num_bytes < 1024:
        return f"{num_bytes} B"
    size = float(num_bytes)
    for unit in ("KB", "MB", "GB", "TB"):
        size /= 1024
        if size < 1024 or unit == "TB":
            return f"{size:.2f} {unit}"


def get_optimal_temp_dir() -> Path:
    """Pick a directory for staging downloads.

    Uses /dev/shm when it exists and is writable, since it avoids a round
    trip through disk before the file is moved into the cache. Falls back to
    the system temp directory.
    """
    shm = Path(SHM_DIR)
    if shm.is_dir() and os.access(shm, os.W_OK | os.X_OK):
        return shm
    return Path(tempfile.gettempdir())
