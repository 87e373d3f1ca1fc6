"""Cache key derivation from remote object URIs."""

import hashlib
import re

from s3cache.cache.exceptions import InvalidArgumentError

KEY_LENGTH = 16  # hex characters (64 bits of SHA-256)

_KEY_PATTERN = re.compile(r"^[0-9a-f]{%d}$" % KEY_LENGTH)


def derive_key(uri: str) -> str:
    """Derive the cache key for a URI.

    The URI is hashed verbatim: no case folding or trailing-slash
    normalization is applied, so ``s3://b/x`` and ``s3://b/x/`` map to
    different keys.

    Args:
        uri: Remote object identifier (e.g., 's3://bucket/path/file.nc')

    Returns:
        First 16 hex characters of the SHA-256 digest of the URI

    Raises:
        InvalidArgumentError: If uri is empty or not a string

    Examples:
        >>> derive_key('s3://bucket/obj.dat') == derive_key('s3://bucket/obj.dat')
        True
        >>> len(derive_key('s3://bucket/obj.dat'))
        16
    """
    if not isinstance(uri, str) or not uri:
        raise InvalidArgumentError(f"URI must be a non-empty string, got {uri!r}")

    digest = hashlib.sha256(uri.encode("utf-8")).hexdigest()
    return digest[:KEY_LENGTH]


def is_valid_key(name: str) -> bool:
    """Check whether a filename is a derived cache key."""
    return bool(_KEY_PATTERN.match(name))
