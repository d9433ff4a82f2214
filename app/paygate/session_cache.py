# app/paygate/session_cache.py
"""
Best-effort cache of "already granted" flags.

The cache only ever answers "granted" or "unknown"; a miss means
"ask the grant store", never "deny". It is populated right after a
successful verification (or a store hit) and entries may disappear at any
time: on TTL expiry, on eviction when full, or on process restart.

Entries never outlive the grant that justified them: each entry remembers
the grant's expiry and is dropped once that passes.

No locks are taken. Individual dict operations are atomic under the GIL,
and a lost update only costs one extra store lookup.
"""
import logging
import time
from datetime import datetime
from typing import Dict, Optional, Tuple

from app.paygate.store import as_utc

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 10_000


def make_key(subject: str, resource_type: str, resource_id: str) -> CacheKey:
    return (subject.lower(), resource_type, str(resource_id))


class SessionCache:
    """In-memory read-through cache keyed by (subject, resource_type, resource_id)."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES
    ):
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        # key -> deadline (unix timestamp)
        self._entries: Dict[CacheKey, float] = {}

    def get(self, subject: str, resource_type: str, resource_id: str) -> Optional[bool]:
        """
        Look up a cached grant flag.

        Returns:
            True if a live entry exists, None if unknown
        """
        key = make_key(subject, resource_type, resource_id)
        deadline = self._entries.get(key)
        if deadline is None:
            return None
        if deadline <= time.time():
            self._entries.pop(key, None)
            return None
        return True

    def set(
        self,
        subject: str,
        resource_type: str,
        resource_id: str,
        expires_at: Optional[datetime] = None
    ) -> None:
        """
        Record that access was granted.

        Args:
            expires_at: Expiry of the backing grant; the entry never outlives it
        """
        deadline = time.time() + self._ttl_seconds
        if expires_at is not None:
            deadline = min(deadline, as_utc(expires_at).timestamp())

        if len(self._entries) >= self._max_entries:
            self._evict()

        self._entries[make_key(subject, resource_type, resource_id)] = deadline

    def clear(self) -> None:
        """Drop all entries (useful for testing)."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _evict(self) -> None:
        now = time.time()
        expired = [key for key, deadline in list(self._entries.items()) if deadline <= now]
        for key in expired:
            self._entries.pop(key, None)

        # Still full: drop the oldest half (insertion order)
        if len(self._entries) >= self._max_entries:
            overflow = list(self._entries.keys())[: max(len(self._entries) // 2, 1)]
            for key in overflow:
                self._entries.pop(key, None)
            logger.debug(f"Session cache full, evicted {len(overflow)} entries")
