# tests/test_paygate_session_cache.py
"""
Unit tests for the best-effort session cache.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.paygate.session_cache import SessionCache, make_key

from tests.conftest import SUBJECT


class TestSessionCache:
    """Test cache hits, misses and expiry."""

    def test_miss_is_unknown_not_false(self):
        cache = SessionCache()
        assert cache.get(SUBJECT, "model-details", "7") is None

    def test_set_then_get(self):
        cache = SessionCache()
        cache.set(SUBJECT, "model-details", "7")
        assert cache.get(SUBJECT, "model-details", "7") is True

    def test_key_is_case_insensitive_on_subject(self):
        cache = SessionCache()
        cache.set(SUBJECT.upper(), "model-details", "7")
        assert cache.get(SUBJECT, "model-details", "7") is True

    def test_key_normalizes_resource_id(self):
        assert make_key(SUBJECT, "model-details", 7) == make_key(SUBJECT, "model-details", "7")

    def test_entries_are_per_resource(self):
        cache = SessionCache()
        cache.set(SUBJECT, "model-details", "7")
        assert cache.get(SUBJECT, "model-details", "8") is None
        assert cache.get(SUBJECT, "deposit", "7") is None

    @patch("app.paygate.session_cache.time.time")
    def test_ttl_expiry(self, mock_time):
        mock_time.return_value = 1_000_000.0
        cache = SessionCache(ttl_seconds=60)
        cache.set(SUBJECT, "model-details", "7")

        mock_time.return_value = 1_000_059.0
        assert cache.get(SUBJECT, "model-details", "7") is True

        mock_time.return_value = 1_000_060.0
        assert cache.get(SUBJECT, "model-details", "7") is None
        assert len(cache) == 0

    def test_entry_never_outlives_grant(self):
        cache = SessionCache(ttl_seconds=3600)
        expired = datetime.now(timezone.utc) - timedelta(seconds=1)
        cache.set(SUBJECT, "model-details", "7", expires_at=expired)
        assert cache.get(SUBJECT, "model-details", "7") is None

    def test_naive_expiry_treated_as_utc(self):
        cache = SessionCache(ttl_seconds=3600)
        future = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(minutes=5)
        cache.set(SUBJECT, "model-details", "7", expires_at=future)
        assert cache.get(SUBJECT, "model-details", "7") is True

    def test_clear(self):
        cache = SessionCache()
        cache.set(SUBJECT, "model-details", "7")
        cache.set(SUBJECT, "deposit", "1")
        cache.clear()
        assert len(cache) == 0


class TestEviction:
    """Test bounded size."""

    def test_size_stays_bounded(self):
        cache = SessionCache(max_entries=10)
        for i in range(50):
            cache.set(SUBJECT, "model-details", str(i))
        assert len(cache) <= 10

    def test_newest_entry_survives_eviction(self):
        cache = SessionCache(max_entries=4)
        for i in range(5):
            cache.set(SUBJECT, "model-details", str(i))
        assert cache.get(SUBJECT, "model-details", "4") is True

    @patch("app.paygate.session_cache.time.time")
    def test_expired_entries_evicted_first(self, mock_time):
        mock_time.return_value = 1000.0
        cache = SessionCache(ttl_seconds=10, max_entries=3)
        cache.set(SUBJECT, "model-details", "old")

        mock_time.return_value = 1005.0
        cache.set(SUBJECT, "model-details", "a")
        cache.set(SUBJECT, "model-details", "b")

        mock_time.return_value = 1011.0
        cache.set(SUBJECT, "model-details", "c")

        assert cache.get(SUBJECT, "model-details", "old") is None
        assert cache.get(SUBJECT, "model-details", "a") is True
        assert cache.get(SUBJECT, "model-details", "b") is True
        assert cache.get(SUBJECT, "model-details", "c") is True
