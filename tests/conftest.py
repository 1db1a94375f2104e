"""
Shared fakes for the ingestion tests.

None of these touch the network or a real clock.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

import pytest

from newspulse.config import Settings
from newspulse.core.clock import IST
from newspulse.core.errors import CacheStoreError, PersistenceError
from newspulse.models.domain import Article
from newspulse.services.ingestion.article_cache import ArticleCache
from newspulse.services.ingestion.base import RawArticle, SourceClient, SourceConfig
from newspulse.services.ingestion.cache_policy import CachePolicy
from newspulse.services.ingestion.dedup import Deduplicator
from newspulse.services.ingestion.enrichment import ContentAnalyzer
from newspulse.services.ingestion.interfaces import ArticleStore, CacheStore
from newspulse.services.ingestion.orchestrator import IngestionOrchestrator
from newspulse.services.ingestion.quota import ProviderQuota, QuotaAllocator
from newspulse.storage.cache_store import InMemoryCacheStore


def ist(year=2024, month=1, day=15, hour=10, minute=30) -> datetime:
    """A timestamp in India Standard Time. 2024-01-15 is a Monday."""
    return datetime(year, month, day, hour, minute, tzinfo=IST)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, moment: Optional[datetime] = None):
        self.moment = moment or ist()

    def now(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> datetime:
        self.moment += timedelta(**kwargs)
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment

    def timer(self) -> float:
        return self.moment.timestamp()


class InMemoryArticleStore(ArticleStore):
    """Dict-backed article store with switchable failures."""

    def __init__(self):
        self.articles: dict[str, Article] = {}
        self.upsert_calls: list[list[Article]] = []
        self.fail_upsert = False
        self.fail_reads = False

    async def upsert_articles(self, batch: list[Article]) -> int:
        if self.fail_upsert:
            raise PersistenceError("database is unavailable")
        self.upsert_calls.append(list(batch))
        for article in batch:
            self.articles[article.external_id] = article
        return len(batch)

    async def find_recent_by_window(self, category, since):
        if self.fail_reads:
            raise PersistenceError("database is unavailable")
        return [
            a for a in self.articles.values()
            if (category is None or a.category == category)
            and (a.published_at or a.fetched_at) is not None
            and (a.published_at or a.fetched_at) >= since
        ]

    async def article_exists_by_url(self, url: str) -> bool:
        if self.fail_reads:
            raise PersistenceError("database is unavailable")
        return any(a.canonical_url == url for a in self.articles.values())

    async def find_latest(self, category, limit, offset=0, origin=None):
        if self.fail_reads:
            raise PersistenceError("database is unavailable")
        matching = [
            a for a in self.articles.values()
            if (category is None or a.category == category)
            and (origin is None or a.content_origin.value == origin)
        ]
        matching.sort(key=lambda a: a.published_at or datetime.min.replace(tzinfo=IST), reverse=True)
        return matching[offset:offset + limit]


class BrokenCacheStore(CacheStore):
    async def get(self, key):
        raise CacheStoreError("connection refused")

    async def set(self, key, payload, ttl_seconds):
        raise CacheStoreError("connection refused")

    async def invalidate(self, pattern):
        raise CacheStoreError("connection refused")


class ScriptedSource(SourceClient):
    """Provider that returns canned batches, raises, or stalls."""

    def __init__(
        self,
        name: str,
        articles: Optional[list[RawArticle]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        super().__init__(SourceConfig(name=name, base_url=f"test://{name}"))
        self.articles = articles or []
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, int]] = []

    async def fetch(self, category: str, max_count: int) -> list[RawArticle]:
        self.calls.append((category, max_count))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.articles[:max_count])


def make_raw(
    title: str,
    url: str,
    published_at: Optional[datetime] = None,
    provider: str = "primary",
    **kwargs,
) -> RawArticle:
    return RawArticle(
        title=title,
        url=url,
        source_name=kwargs.pop("source_name", "Test Wire"),
        provider=provider,
        published_at=published_at or ist(hour=9),
        **kwargs,
    )


def make_quota(source: str, priority: int, ceiling: int = 10, used_today: int = 0, **kwargs) -> ProviderQuota:
    daily = kwargs.pop("daily_limit", ceiling + 2)
    return ProviderQuota(
        source=source,
        daily_limit=daily,
        hourly_limit=kwargs.pop("hourly_limit", daily),
        conservative_ceiling=ceiling,
        priority=priority,
        used_today=used_today,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        categories=["general", "business", "sports", "breaking"],
        worker_pool_size=2,
        fetch_timeout_seconds=0.5,
        articles_per_request=20,
        failure_cooldown_seconds=300,
    )


@pytest.fixture
def store():
    return InMemoryArticleStore()


@pytest.fixture
def cache_store(clock):
    return InMemoryCacheStore(timer=clock.timer)


@pytest.fixture
def policy(clock):
    return CachePolicy(clock)


@pytest.fixture
def article_cache(cache_store, policy):
    return ArticleCache(cache_store, policy, stale_grace_seconds=3600)


@pytest.fixture
def build_orchestrator(clock, settings, store, article_cache):
    """Factory: orchestrator over the given quotas and sources."""

    def build(quotas: list[ProviderQuota], sources: list[SourceClient], **kwargs) -> IngestionOrchestrator:
        allocator = QuotaAllocator(
            quotas,
            clock=clock,
            failure_threshold=settings.failure_threshold,
            failure_cooldown_seconds=settings.failure_cooldown_seconds,
        )
        return IngestionOrchestrator(
            allocator=allocator,
            sources={s.name: s for s in sources},
            deduplicator=Deduplicator(),
            analyzer=ContentAnalyzer(),
            store=kwargs.pop("store", store),
            cache=kwargs.pop("cache", article_cache),
            clock=clock,
            settings=kwargs.pop("settings", settings),
            **kwargs,
        )

    return build
