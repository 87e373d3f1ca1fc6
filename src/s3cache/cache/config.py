"""Cache configuration and cache directory resolution."""

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import orjson

from s3cache.cache.exceptions import DirectoryCreateError, InvalidArgumentError

logger = logging.getLogger(__name__)

# Environment variables consulted when resolving the cache root
CACHE_DIR_ENV = "S3_NETCDF_CACHE_DIR"
XDG_CACHE_HOME_ENV = "XDG_CACHE_HOME"
HOME_ENV = "HOME"

APP_DIR_NAME = "s3-netcdf"
TEMP_DIR_NAME = "s3-netcdf-cache"

# Cache layout
FILES_DIR = "files"
META_DIR = "meta"
DIR_MODE = 0o755

DEFAULT_MAX_SIZE_BYTES = 10 * 1024**3  # 10 GiB
DEFAULT_TTL_SECONDS = 7 * 24 * 3600  # 7 days


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the local object cache.

    Instances are immutable; use ``dataclasses.replace`` to derive a variant.

    Attributes:
        enabled: Whether caching is enabled
        cache_dir: Explicit cache root. If None, the root is resolved from the
            environment (see ``resolve_cache_dir``).
        max_size_bytes: Maximum total size of cached data files (10 GiB default)
        ttl_seconds: Maximum entry age measured from first caching (7 days default)
        validate_etag: Compare stored ETags against caller-supplied remote ETags
    """

    enabled: bool = True
    cache_dir: Optional[Path] = None
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    validate_etag: bool = True

    def __post_init__(self):
        """Normalize cache_dir and reject impossible limits."""
        if self.cache_dir is not None:
            # frozen dataclass: bypass __setattr__ for normalization
            object.__setattr__(self, "cache_dir", Path(self.cache_dir).expanduser())

        for name in ("max_size_bytes", "ttl_seconds"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidArgumentError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise InvalidArgumentError(f"{name} must be non-negative, got {value}")

    @classmethod
    def load(cls, config_path: Path) -> "CacheConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file

        Returns:
            CacheConfig instance (defaults if the file does not exist)

        Raises:
            InvalidArgumentError: If the file is not valid JSON or has unknown keys
        """
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        with open(config_path, "rb") as f:
            try:
                data = orjson.loads(f.read())
            except orjson.JSONDecodeError as e:
                raise InvalidArgumentError(
                    f"Cannot parse cache config {config_path}: {e}"
                ) from e

        if not isinstance(data, dict):
            raise InvalidArgumentError(f"Cache config {config_path} must be an object")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidArgumentError(
                f"Unknown cache config keys in {config_path}: {sorted(unknown)}"
            )

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to a JSON file.

        Args:
            config_path: Path to config file
        """
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        data["cache_dir"] = str(self.cache_dir) if self.cache_dir else None

        with open(config_path, "wb") as f:
            f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            S3_NETCDF_CACHE_ENABLED: Enable caching (true/false)
            S3_NETCDF_CACHE_MAX_SIZE: Maximum cache size in bytes
            S3_NETCDF_CACHE_TTL: TTL in seconds
            S3_NETCDF_CACHE_VALIDATE_ETAG: Validate ETags (true/false)

        The cache directory is not read here; S3_NETCDF_CACHE_DIR is honoured
        by ``resolve_cache_dir`` when ``cache_dir`` is unset.

        Returns:
            CacheConfig instance
        """
        kwargs = {}

        if os.getenv("S3_NETCDF_CACHE_ENABLED"):
            kwargs["enabled"] = _parse_bool(os.environ["S3_NETCDF_CACHE_ENABLED"])

        if os.getenv("S3_NETCDF_CACHE_MAX_SIZE"):
            kwargs["max_size_bytes"] = _parse_int(
                "S3_NETCDF_CACHE_MAX_SIZE", os.environ["S3_NETCDF_CACHE_MAX_SIZE"]
            )

        if os.getenv("S3_NETCDF_CACHE_TTL"):
            kwargs["ttl_seconds"] = _parse_int(
                "S3_NETCDF_CACHE_TTL", os.environ["S3_NETCDF_CACHE_TTL"]
            )

        if os.getenv("S3_NETCDF_CACHE_VALIDATE_ETAG"):
            kwargs["validate_etag"] = _parse_bool(
                os.environ["S3_NETCDF_CACHE_VALIDATE_ETAG"]
            )

        return cls(**kwargs)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise InvalidArgumentError(f"{name} must be an integer, got {value!r}") from e


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


def resolve_cache_dir(config: Optional[CacheConfig] = None) -> Path:
    """Determine the cache root directory.

    Priority:
    1. ``config.cache_dir``
    2. S3_NETCDF_CACHE_DIR environment variable
    3. $XDG_CACHE_HOME/s3-netcdf
    4. ~/.cache/s3-netcdf
    5. <system temp dir>/s3-netcdf-cache

    Args:
        config: Cache configuration (defaults if None)

    Returns:
        Path to the cache root (not created)
    """
    if config is not None and config.cache_dir is not None:
        return config.cache_dir

    override = _env(CACHE_DIR_ENV)
    if override:
        return Path(override)

    xdg_cache = _env(XDG_CACHE_HOME_ENV)
    if xdg_cache:
        return Path(xdg_cache) / APP_DIR_NAME

    home = _env(HOME_ENV)
    if home is None:
        try:
            home = str(Path.home())
        except (KeyError, RuntimeError):
            # No passwd entry and no HOME
            home = None
    if home:
        return Path(home) / ".cache" / APP_DIR_NAME

    return Path(tempfile.gettempdir()) / TEMP_DIR_NAME


def init_cache_dir(config: Optional[CacheConfig] = None) -> Path:
    """Create the cache root and its files/ and meta/ subdirectories.

    Safe to call repeatedly; existing directories are left untouched.

    Args:
        config: Cache configuration (defaults if None)

    Returns:
        Path to the cache root

    Raises:
        DirectoryCreateError: If any directory cannot be created
    """
    root = resolve_cache_dir(config)

    for directory in (root, root / FILES_DIR, root / META_DIR):
        try:
            directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryCreateError(
                f"Cannot create cache directory {directory}: {e}"
            ) from e
        if not directory.is_dir():
            raise DirectoryCreateError(f"Cache path {directory} is not a directory")

    logger.debug(f"Initialized cache directory at {root}")
    return root
