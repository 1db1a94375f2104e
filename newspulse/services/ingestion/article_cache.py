"""
Read-path cache for article lists.

Pairs CachePolicy (keys and TTLs) with a CacheStore. Entries are written
as CacheEntry envelopes and kept in the store a little longer than their
TTL so an expired entry can still be served stale when a refresh fails.
Cache-store failures never propagate: reads become misses and writes
become no-ops.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from fnmatch import fnmatchcase
from typing import Any, Mapping, Optional

import structlog
from pydantic import ValidationError

from newspulse.core.errors import CacheStoreError
from newspulse.models.domain import Article, CacheEntry, CacheStats, CategoryCacheStats
from newspulse.services.ingestion.cache_policy import CachePolicy
from newspulse.services.ingestion.interfaces import CacheStore

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "articles"


@dataclass
class CacheLookup:
    """Result of a cache read."""
    key: str
    articles: list[Article] = field(default_factory=list)
    hit: bool = False
    stale: bool = False  # entry found but past its TTL
    entry: Optional[CacheEntry] = None


class ArticleCache:
    """Cached article lists with hit/miss accounting."""

    def __init__(
        self,
        store: CacheStore,
        policy: CachePolicy,
        stale_grace_seconds: int = 3600,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ):
        self.store = store
        self.policy = policy
        self.stale_grace_seconds = stale_grace_seconds
        self.content_type = content_type

        self._counters: dict[str, int] = defaultdict(int)
        self._per_category: dict[str, CategoryCacheStats] = {}
        self._access_counts: dict[str, int] = defaultdict(int)

    def _category_stats(self, category: str) -> CategoryCacheStats:
        stats = self._per_category.get(category)
        if stats is None:
            stats = CategoryCacheStats(target_hit_rate=self.policy.target_hit_rate(category))
            self._per_category[category] = stats
        return stats

    def key_for(
        self,
        category: str,
        page: int = 1,
        limit: int = 20,
        filters: Optional[Mapping[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        return self.policy.build_key(content_type or self.content_type, category, page, limit, filters)

    async def get_articles(
        self,
        category: str,
        page: int = 1,
        limit: int = 20,
        filters: Optional[Mapping[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> CacheLookup:
        """
        Look up a cached article list.

        A fresh entry is a hit. An entry past its TTL but still held by the
        store comes back with ``stale=True`` and counts as a miss; the
        caller decides whether to serve it.
        """
        key = self.key_for(category, page, limit, filters, content_type)
        stats = self._category_stats(category)
        stats.requests += 1
        self._counters["requests"] += 1

        entry = await self._read(key)
        now = self.policy.clock.now()

        if entry is not None and not entry.is_expired(now):
            self._access_counts[key] += 1
            entry.access_count = self._access_counts[key]
            self._counters["hits"] += 1
            stats.hits += 1
            self._update_rate(stats)
            logger.debug("Cache hit", key=key, category=category)
            return CacheLookup(key=key, articles=entry.articles, hit=True, entry=entry)

        self._counters["misses"] += 1
        stats.misses += 1
        self._update_rate(stats)

        if entry is not None:
            logger.debug("Cache entry expired", key=key, category=category)
            return CacheLookup(key=key, articles=entry.articles, stale=True, entry=entry)

        logger.debug("Cache miss", key=key, category=category)
        return CacheLookup(key=key)

    async def set_articles(
        self,
        category: str,
        articles: list[Article],
        page: int = 1,
        limit: int = 20,
        filters: Optional[Mapping[str, Any]] = None,
        content_type: Optional[str] = None,
    ) -> Optional[CacheEntry]:
        """Write an article list under the policy TTL. Returns None if the store failed."""
        key = self.key_for(category, page, limit, filters, content_type)
        now = self.policy.clock.now()
        ttl = self.policy.ttl_for(category, now)

        entry = CacheEntry(
            key=key,
            category=category,
            ttl_seconds=ttl,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            articles=articles,
        )

        try:
            await self.store.set(key, entry.model_dump_json(), ttl + self.stale_grace_seconds)
        except CacheStoreError as e:
            self._counters["store_errors"] += 1
            logger.warning("Cache write failed", key=key, error=str(e))
            return None

        self._access_counts.pop(key, None)
        self._counters["writes"] += 1
        stats = self._category_stats(category)
        stats.last_ttl_seconds = ttl
        stats.last_updated = now
        logger.info(
            "Cache set",
            key=key,
            category=category,
            ttl=ttl,
            rule=self.policy.ttl_rule(category, now),
            articles=len(articles),
        )
        return entry

    async def invalidate_category(self, category: str) -> Optional[int]:
        """Drop every cached list for a category. Returns keys removed, or None if the store failed."""
        pattern = self.policy.category_pattern(category)
        try:
            removed = await self.store.invalidate(pattern)
        except CacheStoreError as e:
            self._counters["store_errors"] += 1
            logger.warning("Cache invalidation failed", pattern=pattern, error=str(e))
            return None

        for key in [k for k in self._access_counts if fnmatchcase(k, pattern)]:
            del self._access_counts[key]
        self._counters["evictions"] += removed
        logger.info("Cache invalidated", category=category, pattern=pattern, removed=removed)
        return removed

    def record_stale_serve(self, category: str) -> None:
        """Count an expired entry that was handed to a reader."""
        self._counters["stale_hits"] += 1
        self._category_stats(category).stale_hits += 1

    async def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            payload = await self.store.get(key)
        except CacheStoreError as e:
            self._counters["store_errors"] += 1
            logger.warning("Cache read failed", key=key, error=str(e))
            return None

        if payload is None:
            return None
        try:
            return CacheEntry.model_validate_json(payload)
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            return None

    @staticmethod
    def _update_rate(stats: CategoryCacheStats) -> None:
        if stats.requests:
            stats.hit_rate = round(stats.hits / stats.requests * 100, 2)

    def stats(self) -> CacheStats:
        requests = self._counters["requests"]
        hits = self._counters["hits"]
        return CacheStats(
            total_requests=requests,
            hits=hits,
            misses=self._counters["misses"],
            stale_hits=self._counters["stale_hits"],
            writes=self._counters["writes"],
            evictions=self._counters["evictions"],
            store_errors=self._counters["store_errors"],
            hit_rate=round(hits / requests * 100, 2) if requests else 0.0,
            per_category={k: v.model_copy() for k, v in self._per_category.items()},
        )

    def reset_stats(self) -> None:
        self._counters.clear()
        self._per_category.clear()
