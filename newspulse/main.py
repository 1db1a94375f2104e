"""
Application wiring for NewsPulse.

Builds the stores, allocator, provider clients, orchestrator and scheduler
once per process and hands them out as a single Application object.
"""
import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from newspulse.config import Settings, get_settings
from newspulse.core.clock import SystemClock
from newspulse.core.errors import IngestionError
from newspulse.core.log import configure_logging
from newspulse.models.database import Database
from newspulse.services.ingestion import (
    ArticleCache,
    CachePolicy,
    ContentAnalyzer,
    Deduplicator,
    IngestionOrchestrator,
    IngestionScheduler,
    QuotaAllocator,
)
from newspulse.services.ingestion.interfaces import CacheStore
from newspulse.sources import build_sources
from newspulse.storage.article_store import SqlArticleStore, SqlQuotaStore
from newspulse.storage.cache_store import InMemoryCacheStore, RedisCacheStore

logger = structlog.get_logger(__name__)


@dataclass
class Application:
    settings: Settings
    database: Database
    cache_store: CacheStore
    store: SqlArticleStore
    orchestrator: IngestionOrchestrator
    scheduler: IngestionScheduler

    async def close(self):
        """Stop jobs, flush quota counters and release connections."""
        await self.scheduler.stop()
        await self.orchestrator.persist_quota_usage()
        await self.orchestrator.close()
        if isinstance(self.cache_store, RedisCacheStore):
            await self.cache_store.close()
        await self.database.dispose()
        logger.info("Shut down")


async def create_app(settings: Optional[Settings] = None) -> Application:
    settings = settings or get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    clock = SystemClock.for_zone(settings.timezone)

    logger.info("Initializing database", url=settings.database_url)
    database = Database(settings.database_url)
    await database.create_tables()
    store = SqlArticleStore(database)

    if settings.cache.redis_url:
        logger.info("Using Redis cache store")
        cache_store: CacheStore = RedisCacheStore.from_url(settings.cache.redis_url)
    else:
        cache_store = InMemoryCacheStore()

    policy = CachePolicy(clock, key_prefix=settings.cache.key_prefix)
    cache = ArticleCache(cache_store, policy, stale_grace_seconds=settings.cache.stale_grace_seconds)

    allocator = QuotaAllocator(
        settings.provider_quotas(clock.now()),
        clock=clock,
        failure_threshold=settings.failure_threshold,
        failure_cooldown_seconds=settings.failure_cooldown_seconds,
        category_limits=settings.category_daily_limits,
        default_category_limit=settings.default_category_daily_limit,
    )

    orchestrator = IngestionOrchestrator(
        allocator=allocator,
        sources=build_sources(settings),
        deduplicator=Deduplicator(
            title_threshold=settings.dedup.title_similarity_threshold,
            time_window_hours=settings.dedup.time_window_hours,
        ),
        analyzer=ContentAnalyzer(),
        store=store,
        cache=cache,
        clock=clock,
        settings=settings,
        usage_store=SqlQuotaStore(database),
    )
    await orchestrator.restore_quota_usage()

    return Application(
        settings=settings,
        database=database,
        cache_store=cache_store,
        store=store,
        orchestrator=orchestrator,
        scheduler=IngestionScheduler(orchestrator, settings),
    )


async def run_initial_refresh(app: Application):
    try:
        results = await app.orchestrator.trigger_full_refresh()
        logger.info("Initial refresh completed", passes=len(results))
    except IngestionError as e:
        logger.error("Initial refresh failed", categories=sorted(e.failures))


async def start_initial_refresh(app: Application) -> Optional[asyncio.Task]:
    """Populate an empty development database in the background."""
    if app.settings.environment != "development" or await app.store.count() != 0:
        return None
    logger.info("Database empty, running initial refresh")
    return asyncio.create_task(run_initial_refresh(app))


async def stop_initial_refresh(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def serve(settings: Optional[Settings] = None):
    """Run the scheduler until cancelled."""
    app = await create_app(settings)
    await app.scheduler.start()
    initial_refresh = await start_initial_refresh(app)

    try:
        await asyncio.Event().wait()
    finally:
        await stop_initial_refresh(initial_refresh)
        await app.close()


def run():
    """Console entry point."""
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
