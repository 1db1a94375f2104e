"""
Ingestion Scheduler - time-driven jobs around the orchestrator.

Runs the quota reset tick, periodic full refreshes, quota persistence and
the two event-window refreshes (market open, evening sports) on an
APScheduler AsyncIOScheduler in the target timezone.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from newspulse.config import Settings, get_settings
from newspulse.core.errors import IngestionError, NewsPulseError
from newspulse.services.ingestion.cache_policy import MARKET_OPEN, SPORTS_WINDOW
from newspulse.services.ingestion.orchestrator import IngestionOrchestrator

logger = structlog.get_logger(__name__)

MARKET_CATEGORIES = ["business", "finance"]
SPORTS_CATEGORIES = ["sports"]


class IngestionScheduler:
    """
    Schedules ingestion work.

    Jobs:
    - quota_reset: top of every hour, applies any due hour/day reset
    - full_refresh: every ``refresh_interval_minutes``
    - quota_persist: every ``quota_persist_interval_minutes``
    - market_open: 09:15 on weekdays, refreshes market-linked categories
    - sports_prime_time: 19:00, refreshes sports

    A failing job is logged and the scheduler keeps running.
    """

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        settings: Optional[Settings] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.settings.timezone)

        self._running = False
        self._last_runs: dict[str, datetime] = {}

    def _register_jobs(self) -> None:
        tz = self.settings.timezone
        jobs = [
            ("quota_reset", "Quota reset tick", self.run_quota_reset,
             CronTrigger(minute=0, timezone=tz)),
            ("full_refresh", "Full category refresh", self.run_full_refresh,
             IntervalTrigger(minutes=self.settings.refresh_interval_minutes, timezone=tz)),
            ("quota_persist", "Quota usage persistence", self.run_quota_persist,
             IntervalTrigger(minutes=self.settings.quota_persist_interval_minutes, timezone=tz)),
            ("market_open", "Market open refresh", self.run_market_open,
             CronTrigger(day_of_week="mon-fri", hour=MARKET_OPEN.hour,
                         minute=MARKET_OPEN.minute, timezone=tz)),
            ("sports_prime_time", "Live sports refresh", self.run_sports_window,
             CronTrigger(hour=SPORTS_WINDOW[0], minute=0, timezone=tz)),
        ]

        for job_id, name, func, trigger in jobs:
            self.scheduler.add_job(
                func,
                trigger,
                id=job_id,
                name=name,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )

    async def start(self):
        """Register jobs and start the scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._register_jobs()
        self.scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started",
            timezone=self.settings.timezone,
            jobs=[job.id for job in self.scheduler.get_jobs()],
        )

    async def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    async def _guarded(self, job_id: str, func: Callable[[], Awaitable[None]]) -> None:
        self._last_runs[job_id] = self.orchestrator.clock.now()
        try:
            await func()
        except IngestionError as e:
            logger.error("Job finished with failures", job=job_id, categories=sorted(e.failures))
        except NewsPulseError as e:
            logger.error("Job failed", job=job_id, error=str(e))
        except Exception as e:
            logger.error("Job crashed", job=job_id, error=str(e), exc_info=True)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_quota_reset(self):
        async def reset():
            await self.orchestrator.allocator.reset_if_due()
        await self._guarded("quota_reset", reset)

    async def run_full_refresh(self):
        async def refresh():
            await self.orchestrator.trigger_full_refresh()
        await self._guarded("full_refresh", refresh)

    async def run_quota_persist(self):
        async def persist():
            await self.orchestrator.persist_quota_usage()
        await self._guarded("quota_persist", persist)

    async def run_market_open(self):
        async def market():
            await self.refresh_categories(MARKET_CATEGORIES)
        await self._guarded("market_open", market)

    async def run_sports_window(self):
        async def sports():
            await self.refresh_categories(SPORTS_CATEGORIES)
        await self._guarded("sports_prime_time", sports)

    async def refresh_categories(self, categories: list[str]) -> None:
        """Re-ingest each configured category; the pass refreshes its cache after persisting."""
        for category in categories:
            if category not in self.settings.categories:
                continue
            result = await self.orchestrator.trigger_ingestion(category)
            logger.info(str(result))

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        """Get scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "last_run": (
                    self._last_runs[job.id].isoformat() if job.id in self._last_runs else None
                ),
            })

        return {
            "running": self._running,
            "timezone": self.settings.timezone,
            "jobs": jobs,
            "quota": self.orchestrator.allocator.stats(),
        }
