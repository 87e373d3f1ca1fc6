"""Cache validation utilities for TTL and ETag checks."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Handle timezone-naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_ttl_valid(
    cached_at: datetime, ttl_seconds: int, now: Optional[datetime] = None
) -> bool:
    """Check if a cache entry is still valid based on TTL.

    Args:
        cached_at: Time the entry was first cached
        ttl_seconds: Time-to-live in seconds
        now: Reference time (defaults to the current time)

    Returns:
        True if the entry is younger than ttl_seconds, False if expired
    """
    now = _as_utc(now) if now is not None else utcnow()
    elapsed = (now - _as_utc(cached_at)).total_seconds()
    return elapsed < ttl_seconds


def get_ttl_remaining(
    cached_at: datetime, ttl_seconds: int, now: Optional[datetime] = None
) -> int:
    """Get remaining seconds until TTL expires.

    Args:
        cached_at: Time the entry was first cached
        ttl_seconds: Time-to-live in seconds
        now: Reference time (defaults to the current time)

    Returns:
        Seconds remaining, 0 once expired
    """
    now = _as_utc(now) if now is not None else utcnow()
    elapsed = (now - _as_utc(cached_at)).total_seconds()
    return max(0, int(ttl_seconds - elapsed))


def normalize_etag(etag: Optional[str]) -> Optional[str]:
    """Strip the weak-validator prefix and surrounding quotes from an ETag.

    S3 returns ETags quoted (``"abc123"``) while other clients hand back the
    bare value, so both forms must compare equal.

    Examples:
        >>> normalize_etag('"abc123"')
        'abc123'
        >>> normalize_etag('W/"abc123"')
        'abc123'
    """
    if etag is None:
        return None
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return value


def etags_match(stored: Optional[str], remote: Optional[str]) -> bool:
    """Compare a stored ETag against one reported by the remote store.

    An entry cached without an ETag cannot be proven current, so it never
    matches a supplied remote ETag.
    """
    if remote is None:
        return True
    if stored is None:
        return False
    return normalize_etag(stored) == normalize_etag(remote)
