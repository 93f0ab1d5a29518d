"""
Content-addressed result cache for KNN computations.

Entries are keyed by a hash of the query feature vector plus k. Vectors
are formatted to 3 decimal places before hashing, so vectors that differ
only by floating-point jitter share a key; scores finer than 3 decimals
do not affect cache-key stability.

Two backends share the same duck-typed store interface
(``get``, ``upsert``, ``purge_expired``, ``delete_all``, ``count``):

- SQLiteCacheStore: the ``knn_cache`` table of a CareerDatabase
- MemoryCacheStore: an in-process cachetools.TLRUCache

Example:
    cache = ResultCache(SQLiteCacheStore(db))
    key = hash_features(query_vector)
    entry = cache.get(key, k=5)
    if entry is None:
        cache.put(key, 5, payload, ttl_ms=ResultCache.DEFAULT_TTL_MS)
"""

import logging
import time
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np
from cachetools import TLRUCache

from .errors import CacheUnavailable
from .models import CachedResult, CacheStats

if TYPE_CHECKING:
    from ..database import CareerDatabase

logger = logging.getLogger(__name__)

HASH_PRECISION = 3
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def rolling_hash(text: str) -> str:
    """
    32-bit shift-and-add string hash (h * 31 + c), rendered in base 36.

    This is a fast content hash for cache keys, not a security primitive.
    A collision only costs an extra cache miss: cached payloads are always
    recomputable from the query, and lookups also match on k.
    """
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def hash_features(vector, precision: int = HASH_PRECISION) -> str:
    """Hash a feature vector after rounding each component to fixed precision."""
    text = ",".join(f"{float(v):.{precision}f}" for v in np.asarray(vector).ravel())
    return rolling_hash(text)


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Stores
# =============================================================================


class SQLiteCacheStore:
    """Cache store backed by the knn_cache table."""

    def __init__(self, db: "CareerDatabase"):
        self.db = db

    def get(self, hash_key: str, k: int) -> Optional[CachedResult]:
        return self.db.get_cache_row(hash_key, k)

    def upsert(self, entry: CachedResult) -> None:
        self.db.upsert_cache_row(entry)

    def purge_expired(self, now_ms: int) -> int:
        return self.db.purge_expired_cache(now_ms)

    def delete_all(self) -> int:
        return self.db.delete_all_cache()

    def count(self, now_ms: int) -> CacheStats:
        return self.db.get_cache_stats(now_ms)


class MemoryCacheStore:
    """
    In-process cache store with per-entry expiry.

    Uses cachetools.TLRUCache so each entry expires at its own
    ``expires_at_ms``; entries already expired on insert are dropped.
    """

    DEFAULT_MAXSIZE = 1000

    def __init__(
        self,
        maxsize: int = DEFAULT_MAXSIZE,
        clock: Callable[[], int] = _now_ms,
    ):
        self.maxsize = maxsize
        self._clock = clock
        self._cache: TLRUCache = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, _now: entry.expires_at_ms,
            timer=clock,
        )

    def get(self, hash_key: str, k: int) -> Optional[CachedResult]:
        return self._cache.get((hash_key, k))

    def upsert(self, entry: CachedResult) -> None:
        self._cache[(entry.hash, entry.k)] = entry

    def purge_expired(self, now_ms: int) -> int:
        # len() on a TLRUCache expires first, so count what expire() hands back
        return len(self._cache.expire(now_ms))

    def delete_all(self) -> int:
        removed = len(self._cache)
        self._cache.clear()
        return removed

    def count(self, now_ms: int) -> CacheStats:
        # Expired entries are evicted first, so counts only cover live entries
        self._cache.expire()
        entries = [e for e in (self._cache.get(key) for key in list(self._cache)) if e is not None]
        avg = (
            sum(e.computation_time_ms for e in entries) / len(entries)
            if entries
            else 0.0
        )
        return CacheStats(
            total_entries=len(entries),
            active_entries=sum(1 for e in entries if e.is_valid(now_ms)),
            expired_entries=sum(1 for e in entries if not e.is_valid(now_ms)),
            avg_computation_ms=avg,
        )


# =============================================================================
# Result cache
# =============================================================================


class ResultCache:
    """
    Expiry-aware facade over a cache store.

    Store failures are raised as CacheUnavailable so callers can treat
    the cache as an optimisation and fall back to computing. Expired
    entries are always reported as misses, whatever the backend returns.
    """

    DEFAULT_TTL_MS = 24 * 60 * 60 * 1000  # 24 hours

    def __init__(self, store, clock: Callable[[], int] = _now_ms):
        self.store = store
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._errors = 0

    def get(self, hash_key: str, k: int) -> Optional[CachedResult]:
        """
        Look up a cached result.

        Returns:
            The entry, or None if absent or expired

        Raises:
            CacheUnavailable: If the store cannot be read
        """
        try:
            entry = self.store.get(hash_key, k)
        except Exception as e:
            self._errors += 1
            raise CacheUnavailable(f"Cache lookup failed: {e}") from e

        if entry is None or not entry.is_valid(self._clock()):
            self._misses += 1
            return None

        self._hits += 1
        return entry

    def put(
        self,
        hash_key: str,
        k: int,
        payload: list[dict],
        ttl_ms: int = DEFAULT_TTL_MS,
        computation_time_ms: float = 0.0,
        pool_size: int = 0,
    ) -> CachedResult:
        """
        Store a result, replacing any entry for the same (hash, k).

        Raises:
            CacheUnavailable: If the store cannot be written
        """
        now = self._clock()
        entry = CachedResult(
            hash=hash_key,
            k=k,
            payload=payload,
            computed_at_ms=now,
            expires_at_ms=now + max(0, int(ttl_ms)),
            computation_time_ms=computation_time_ms,
            pool_size=pool_size,
        )
        try:
            self.store.upsert(entry)
        except Exception as e:
            self._errors += 1
            raise CacheUnavailable(f"Cache write failed: {e}") from e
        return entry

    def purge_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        try:
            removed = self.store.purge_expired(self._clock())
        except Exception as e:
            raise CacheUnavailable(f"Cache purge failed: {e}") from e
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    def clear(self) -> int:
        """Delete all entries."""
        try:
            removed = self.store.delete_all()
        except Exception as e:
            raise CacheUnavailable(f"Cache clear failed: {e}") from e
        logger.info("Result cache cleared")
        return removed

    def stats(self) -> CacheStats:
        """Entry counts from the store plus hit/miss counters for this instance."""
        try:
            stats = self.store.count(self._clock())
        except Exception as e:
            raise CacheUnavailable(f"Cache stats failed: {e}") from e
        stats.hits = self._hits
        stats.misses = self._misses
        stats.errors = self._errors
        return stats
