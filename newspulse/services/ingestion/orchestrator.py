"""
Ingestion Orchestrator - runs aggregation passes per category.

One pass: allocate a provider, fetch, drop duplicates, enrich, upsert,
refresh the category cache and charge the provider's quota. Passes for
different categories run concurrently up to the worker-pool bound.
"""

import asyncio
import time
from datetime import timedelta
from typing import Any, Mapping, Optional

import structlog

from newspulse.config import Settings, get_settings
from newspulse.core.clock import Clock, SystemClock
from newspulse.core.errors import IngestionError, PersistenceError, SourceFetchError
from newspulse.models.domain import Article, CacheStats, FeedResult, PassStatus
from newspulse.services.ingestion.article_cache import ArticleCache
from newspulse.services.ingestion.base import PassResult, SourceClient
from newspulse.services.ingestion.dedup import DedupIndex, Deduplicator
from newspulse.services.ingestion.enrichment import ContentAnalyzer
from newspulse.services.ingestion.interfaces import ArticleStore, QuotaUsageStore
from newspulse.services.ingestion.quota import CategoryUsage, FetchPlan, ProviderQuota, QuotaAllocator

logger = structlog.get_logger(__name__)


class IngestionOrchestrator:
    """
    Top-level coordinator for the ingestion core.

    Failures local to a provider are recorded and never abort anything
    beyond the current pass. Persistence failures propagate to the caller,
    since they affect durability; whatever is already cached stays valid.
    """

    def __init__(
        self,
        allocator: QuotaAllocator,
        sources: dict[str, SourceClient],
        deduplicator: Deduplicator,
        analyzer: ContentAnalyzer,
        store: ArticleStore,
        cache: ArticleCache,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        usage_store: Optional[QuotaUsageStore] = None,
    ):
        self.settings = settings or get_settings()
        self.allocator = allocator
        self.sources = sources
        self.deduplicator = deduplicator
        self.analyzer = analyzer
        self.store = store
        self.cache = cache
        self.clock = clock or allocator.clock or SystemClock()
        self.usage_store = usage_store

        self._semaphore = asyncio.Semaphore(self.settings.worker_pool_size)

        missing = [s for s in allocator.sources if s not in sources]
        for source in missing:
            logger.warning("Provider has no client, disabling", source=source)
            allocator.set_active(source, False)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def trigger_ingestion(self, category: str) -> PassResult:
        """
        Run one pass for a category.

        Returns:
            PassResult describing what happened. Provider exhaustion and
            provider failures are reported here, not raised.

        Raises:
            PersistenceError: if the article store could not be read or written
        """
        async with self._semaphore:
            return await self._run_pass(category)

    async def trigger_full_refresh(self, categories: Optional[list[str]] = None) -> list[PassResult]:
        """
        Run one pass per category, concurrently up to the worker-pool size.

        Categories that start after the advisory hourly budget is spent are
        skipped. Every category gets its pass before any failure is raised.

        Raises:
            IngestionError: if any pass failed to persist
        """
        categories = categories or list(self.settings.categories)
        started = time.monotonic()
        logger.info("Full refresh started", categories=len(categories))

        async def bounded(category: str) -> PassResult:
            async with self._semaphore:
                if self.allocator.hourly_headroom() <= 0:
                    logger.warning("Hourly budget spent, skipping pass", category=category)
                    return PassResult(category=category, status=PassStatus.BUDGET_EXHAUSTED)
                return await self._run_pass(category)

        outcomes = await asyncio.gather(
            *(bounded(category) for category in categories),
            return_exceptions=True,
        )

        results: list[PassResult] = []
        failures: dict[str, Exception] = {}
        for category, outcome in zip(categories, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Pass failed", category=category, error=str(outcome))
                failures[category] = outcome
                results.append(PassResult(
                    category=category,
                    status=PassStatus.PERSISTENCE_FAILED,
                    errors=[str(outcome)],
                ))
            else:
                results.append(outcome)

        logger.info(
            "Full refresh completed",
            categories=len(categories),
            persisted=sum(r.articles_persisted for r in results),
            duplicates=sum(r.duplicates for r in results),
            skipped=sum(1 for r in results if r.status != PassStatus.COMPLETED),
            failed=len(failures),
            duration_seconds=round(time.monotonic() - started, 2),
        )

        if failures:
            raise IngestionError(failures)
        return results

    async def _run_pass(self, category: str) -> PassResult:
        started = time.monotonic()
        log = logger.bind(category=category)
        result = PassResult(category=category, status=PassStatus.COMPLETED)

        # 1. Pick a provider
        allocation = await self.allocator.next_source(category, self.settings.requests_per_pass)
        if allocation is None:
            result.status = PassStatus.NO_SOURCE
            log.warning("No provider available, pass skipped; cache left in place")
            return self._finish(result, started)

        result.source = allocation.source
        result.fallback = allocation.fallback
        client = self.sources[allocation.source]

        called = False
        fetch_ok = False
        try:
            since = self.clock.now() - timedelta(hours=self.settings.dedup.lookback_hours)
            try:
                snapshot = await self.store.find_recent_by_window(category, since)
            except PersistenceError as e:
                result.status = PassStatus.PERSISTENCE_FAILED
                result.errors.append(str(e))
                log.error("Could not load dedup snapshot", error=str(e))
                raise

            # 2. Fetch
            max_count = min(
                self.settings.articles_per_request * allocation.reserved,
                client.config.max_page_size,
            )
            called = True
            try:
                raw_articles = await asyncio.wait_for(
                    client.fetch(category, max_count),
                    timeout=self.settings.fetch_timeout_seconds,
                )
                fetch_ok = True
            except asyncio.TimeoutError:
                result.status = PassStatus.SOURCE_FAILED
                result.errors.append(
                    f"{allocation.source} timed out after {self.settings.fetch_timeout_seconds}s"
                )
                log.warning("Provider timed out", source=allocation.source)
                return self._finish(result, started)
            except SourceFetchError as e:
                result.status = PassStatus.SOURCE_FAILED
                result.errors.append(str(e))
                log.warning("Provider failed", source=allocation.source, error=str(e))
                return self._finish(result, started)
            except Exception as e:
                result.status = PassStatus.SOURCE_FAILED
                result.errors.append(f"{allocation.source} failed: {type(e).__name__}: {e}")
                log.warning(
                    "Provider raised unexpectedly",
                    source=allocation.source,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return self._finish(result, started)

            result.articles_fetched = len(raw_articles)

            # 3. Drop duplicates
            index = DedupIndex.from_articles(snapshot)
            originals, verdicts = await self.deduplicator.screen(
                raw_articles,
                index,
                url_exists=self.store.article_exists_by_url,
            )
            result.verdicts = verdicts
            result.duplicates = len(verdicts)

            # 4. Enrich
            fetched_at = self.clock.now()
            batch = self._unique_by_id(
                [self.analyzer.analyze(raw, category, fetched_at) for raw in originals]
            )

            # 5. Persist
            if batch:
                try:
                    result.articles_persisted = await self.store.upsert_articles(batch)
                except PersistenceError as e:
                    result.status = PassStatus.PERSISTENCE_FAILED
                    result.errors.append(str(e))
                    log.error("Persistence failed", source=allocation.source, error=str(e))
                    raise
            else:
                log.info("Nothing new to persist", source=allocation.source, duplicates=result.duplicates)

            # 6. Refresh the cache, strictly after the write committed
            await self._refresh_cache(result)
            return self._finish(result, started)

        finally:
            # 7. The call consumed quota whatever happened afterwards
            if called:
                await self.allocator.record_usage(allocation.source, allocation.reserved, success=fetch_ok)
            else:
                await self.allocator.release(allocation.source, allocation.reserved, category)

    @staticmethod
    def _unique_by_id(batch: list[Article]) -> list[Article]:
        unique: dict[str, Article] = {}
        for article in batch:
            unique[article.external_id] = article
        return list(unique.values())

    async def _refresh_cache(self, result: PassResult) -> None:
        """Invalidate and re-warm the category. Cache failures land in ``result.errors``."""
        category = result.category
        removed = await self.cache.invalidate_category(category)
        if removed is None:
            result.errors.append(f"cache invalidation failed for {category}")
            return
        result.cache_invalidated = True
        if not self.settings.cache.warm_after_ingest:
            return

        limit = self.settings.cache.default_page_size
        try:
            latest = await self.store.find_latest(category, limit)
        except PersistenceError as e:
            logger.warning("Cache warm-up skipped", category=category, error=str(e))
            return
        entry = await self.cache.set_articles(category, latest, page=1, limit=limit)
        if entry is None:
            result.errors.append(f"cache warm-up failed for {category}")

    def _finish(self, result: PassResult, started: float) -> PassResult:
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Ingestion pass completed",
            category=result.category,
            status=result.status.value,
            source=result.source,
            fallback=result.fallback,
            fetched=result.articles_fetched,
            persisted=result.articles_persisted,
            duplicates=result.duplicates,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def read_feed(
        self,
        category: str,
        page: int = 1,
        limit: Optional[int] = None,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> FeedResult:
        """
        Best available articles for a category. Never raises on store failure.

        Cache first; on a miss the store is read and the result cached.
        If the store is unavailable an expired entry is served stale, and
        failing that an empty list.
        """
        limit = limit or self.settings.cache.default_page_size
        lookup = await self.cache.get_articles(category, page, limit, filters)
        if lookup.hit:
            return FeedResult(category=category, articles=lookup.articles, from_cache=True)

        origin = (filters or {}).get("origin")
        try:
            articles = await self.store.find_latest(
                category, limit, offset=(page - 1) * limit, origin=origin
            )
        except PersistenceError as e:
            if lookup.stale:
                self.cache.record_stale_serve(category)
                logger.warning("Store unavailable, serving stale cache", category=category, error=str(e))
                return FeedResult(category=category, articles=lookup.articles, from_cache=True, stale=True)
            logger.warning("Store unavailable, serving empty feed", category=category, error=str(e))
            return FeedResult(category=category)

        await self.cache.set_articles(category, articles, page, limit, filters)
        return FeedResult(category=category, articles=articles)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def plan(self, category: str) -> FetchPlan:
        return self.allocator.plan(category)

    def get_quota_snapshot(self) -> dict[str, ProviderQuota]:
        return self.allocator.snapshot()

    def get_category_usage(self) -> dict[str, CategoryUsage]:
        return self.allocator.category_usage()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    # ------------------------------------------------------------------
    # Quota durability (best-effort)
    # ------------------------------------------------------------------

    async def restore_quota_usage(self) -> int:
        """Reload persisted counters after a restart. Returns providers restored."""
        if self.usage_store is None:
            return 0
        try:
            rows = await self.usage_store.load_usage()
        except PersistenceError as e:
            logger.warning("Could not load quota usage", error=str(e))
            return 0
        return self.allocator.restore(rows, self.clock.now())

    async def persist_quota_usage(self) -> bool:
        if self.usage_store is None:
            return False
        try:
            await self.usage_store.save_usage(self.allocator.usage_rows())
        except PersistenceError as e:
            logger.warning("Could not persist quota usage", error=str(e))
            return False
        return True

    async def close(self) -> None:
        for client in self.sources.values():
            await client.close()
