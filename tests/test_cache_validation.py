"""Unit tests for cache validation module."""

from datetime import datetime, timedelta, timezone

from s3cache.cache.validation import (
    etags_match,
    get_ttl_remaining,
    is_ttl_valid,
    normalize_etag,
)


class TestTTLValidation:
    """Test TTL validation functions."""

    def test_ttl_valid_within_window(self):
        """Test that an entry is valid within the TTL window."""
        cached_at = datetime.now(timezone.utc)
        assert is_ttl_valid(cached_at, 1800) is True

    def test_ttl_expired_after_window(self):
        """Test that an entry expires after the TTL window."""
        cached_at = datetime.now(timezone.utc) - timedelta(hours=2)
        assert is_ttl_valid(cached_at, 1800) is False

    def test_ttl_one_second_past(self):
        """Test an entry cached ttl + 1 seconds ago is expired."""
        now = datetime.now(timezone.utc)
        cached_at = now - timedelta(seconds=1801)
        assert is_ttl_valid(cached_at, 1800, now=now) is False

    def test_ttl_exact_boundary_is_expired(self):
        """Test an entry exactly ttl seconds old is expired."""
        now = datetime.now(timezone.utc)
        cached_at = now - timedelta(seconds=1800)
        assert is_ttl_valid(cached_at, 1800, now=now) is False

    def test_naive_datetime_treated_as_utc(self):
        """Test timezone-naive timestamps are interpreted as UTC."""
        now = datetime.now(timezone.utc)
        cached_at = (now - timedelta(seconds=10)).replace(tzinfo=None)
        assert is_ttl_valid(cached_at, 60, now=now) is True

    def test_zero_ttl_always_expired(self):
        """Test TTL of zero makes every entry expired."""
        now = datetime.now(timezone.utc)
        assert is_ttl_valid(now, 0, now=now) is False

    def test_ttl_remaining_within_window(self):
        """Test TTL remaining calculation."""
        now = datetime.now(timezone.utc)
        cached_at = now - timedelta(seconds=100)
        assert get_ttl_remaining(cached_at, 1800, now=now) == 1700

    def test_ttl_remaining_expired(self):
        """Test TTL remaining when expired."""
        cached_at = datetime.now(timezone.utc) - timedelta(hours=2)
        assert get_ttl_remaining(cached_at, 1800) == 0


class TestETagValidation:
    """Test ETag comparison."""

    def test_normalize_quoted(self):
        """Test surrounding quotes are stripped."""
        assert normalize_etag('"abc123"') == "abc123"

    def test_normalize_weak(self):
        """Test weak validator prefix is stripped."""
        assert normalize_etag('W/"abc123"') == "abc123"

    def test_normalize_bare(self):
        """Test bare ETags are unchanged."""
        assert normalize_etag("abc123") == "abc123"

    def test_normalize_none(self):
        """Test None passes through."""
        assert normalize_etag(None) is None

    def test_quoted_matches_bare(self):
        """Test quoted and bare forms of the same ETag match."""
        assert etags_match('"abc123"', "abc123") is True

    def test_mismatch(self):
        """Test different ETags do not match."""
        assert etags_match("abc123", "def456") is False

    def test_no_remote_etag_matches(self):
        """Test a missing remote ETag does not invalidate."""
        assert etags_match("abc123", None) is True

    def test_no_stored_etag_does_not_match(self):
        """Test an entry without ETag cannot be validated against one."""
        assert etags_match(None, "abc123") is False

    def test_case_sensitive(self):
        """Test ETags are opaque and compared case-sensitively."""
        assert etags_match("ABC", "abc") is False
