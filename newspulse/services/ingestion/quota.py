"""
Provider quota allocation.

Decides which provider to call next and how many requests a pass may
make against it, without letting any provider's counters cross its
limits.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional

import structlog

from newspulse.core.clock import Clock, SystemClock, day_bucket, hour_bucket
from newspulse.services.ingestion.cache_policy import is_peak_hour

logger = structlog.get_logger(__name__)

# Recommended total requests per local (IST) hour. Volume concentrates
# around market open, the midday market peak and evening prime time.
HOURLY_REQUEST_DISTRIBUTION = {
    0: 1150, 1: 1150, 2: 1150, 3: 1150, 4: 1150, 5: 1150,
    6: 1200, 7: 1300, 8: 1400,
    9: 1750, 10: 1750, 11: 1750,
    12: 1850, 13: 1850, 14: 1850,
    15: 1650, 16: 1650, 17: 1650,
    18: 1500, 19: 1500, 20: 1500,
    21: 1800,
    22: 1300, 23: 1200,
}
DEFAULT_HOURLY_BUDGET = 400

WARNING_THRESHOLD = 0.85
CRITICAL_THRESHOLD = 0.95

# Requests per category per local day. Indian-focus categories may run
# 10% over their allocation.
DEFAULT_CATEGORY_DAILY_LIMIT = 500
INDIAN_FOCUS_CATEGORIES = frozenset({"politics", "business"})
INDIAN_FOCUS_ALLOWANCE = 1.1


def is_indian_focus(category: str) -> bool:
    return "indian" in category or category in INDIAN_FOCUS_CATEGORIES


@dataclass
class ProviderQuota:
    """Usage ledger for one provider."""
    source: str
    daily_limit: int
    hourly_limit: int
    conservative_ceiling: int
    priority: int  # 1 = tried first
    used_today: int = 0
    used_hour: int = 0
    last_reset: Optional[datetime] = None
    active: bool = True

    error_count: int = 0
    reserved: int = 0  # handed out to in-flight passes, not yet recorded
    consecutive_failures: int = 0
    suspended_until: Optional[datetime] = None
    categories: Optional[frozenset[str]] = None
    warning_flagged: bool = False

    def __post_init__(self):
        if self.daily_limit <= 0 or self.hourly_limit <= 0:
            raise ValueError(f"{self.source}: limits must be positive")
        if self.conservative_ceiling > self.daily_limit:
            raise ValueError(
                f"{self.source}: ceiling {self.conservative_ceiling} exceeds "
                f"daily limit {self.daily_limit}"
            )

    def remaining_budget(self) -> int:
        """Requests still available this hour under both the hourly cap and the ceiling."""
        hourly_left = self.hourly_limit - self.used_hour - self.reserved
        daily_left = self.conservative_ceiling - self.used_today - self.reserved
        return max(0, min(hourly_left, daily_left))

    def serves(self, category: str) -> bool:
        return self.categories is None or category in self.categories

    def is_suspended(self, now: datetime) -> bool:
        return self.suspended_until is not None and now < self.suspended_until

    @property
    def usage_ratio(self) -> float:
        return self.used_today / self.daily_limit


@dataclass
class Allocation:
    """Budget granted to one pass. ``reserved`` units are held until recorded or released."""
    source: str
    budget: int
    reserved: int
    priority: int
    fallback: bool = False
    category: Optional[str] = None


@dataclass
class CategoryUsage:
    """Daily request count for one category against its allocation."""
    category: str
    daily_limit: int
    used: int = 0
    indian_focus: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.used)


@dataclass
class FetchPlan:
    """Candidate providers for one aggregation pass, best first."""
    category: str
    candidates: list[tuple[str, int]] = field(default_factory=list)  # (source, budget)
    hourly_budget: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    @property
    def sources(self) -> list[str]:
        return [source for source, _ in self.candidates]


class QuotaAllocator:
    """
    Priority-ordered quota allocator with per-source locking.

    Features:
    - Falls through providers by priority rank
    - Reserves budget at allocation time so racing passes cannot
      both spend the last unit
    - Hour and day counters reset on local wall-clock boundaries
    - Suspends a provider after repeated failures so the next pass
      falls through instead of hammering it
    """

    def __init__(
        self,
        quotas: list[ProviderQuota],
        clock: Optional[Clock] = None,
        hourly_distribution: Optional[dict[int, int]] = None,
        failure_threshold: int = 1,
        failure_cooldown_seconds: int = 300,
        category_limits: Optional[dict[str, int]] = None,
        default_category_limit: int = DEFAULT_CATEGORY_DAILY_LIMIT,
    ):
        self.clock = clock or SystemClock()
        self.hourly_distribution = hourly_distribution or HOURLY_REQUEST_DISTRIBUTION
        self.failure_threshold = failure_threshold
        self.failure_cooldown = timedelta(seconds=failure_cooldown_seconds)
        self.category_limits = dict(category_limits or {})
        self.default_category_limit = default_category_limit

        now = self.clock.now()
        self._category_used: dict[str, int] = defaultdict(int)
        self._category_day = day_bucket(now)
        self._category_lock = asyncio.Lock()
        self._quotas: dict[str, ProviderQuota] = {}
        for quota in quotas:
            if quota.source in self._quotas:
                raise ValueError(f"Duplicate provider quota: {quota.source}")
            if quota.last_reset is None:
                quota.last_reset = now
            self._quotas[quota.source] = quota

        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._stats: dict[str, int] = defaultdict(int)

        logger.info(
            "Quota allocator initialized",
            sources=[q.source for q in self._ordered()],
            hourly_budget=self.current_hourly_budget(),
        )

    def _ordered(self) -> list[ProviderQuota]:
        return sorted(self._quotas.values(), key=lambda q: (q.priority, q.source))

    def _get(self, source: str) -> ProviderQuota:
        try:
            return self._quotas[source]
        except KeyError:
            raise ValueError(f"Unknown provider: {source}") from None

    @property
    def sources(self) -> list[str]:
        return [q.source for q in self._ordered()]

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def next_source(self, category: str, requests: int = 1) -> Optional[Allocation]:
        """
        Pick the highest-priority provider that can take ``requests`` more calls.

        Args:
            category: Category the pass is fetching
            requests: Units to reserve on the chosen provider

        Returns:
            An Allocation holding the reservation, or None when the
            category's daily allocation is spent or every provider is
            exhausted, inactive or suspended. None is a normal outcome;
            callers should skip the pass rather than retry.
        """
        if requests < 1:
            raise ValueError("requests must be at least 1")

        now = self.clock.now()
        await self.reset_if_due(now)
        self._stats["allocation_requests"] += 1

        async with self._category_lock:
            used = self._category_used[category]
            limit = self.category_limit(category)
            if used + requests > limit:
                self._stats["category_rejections"] += 1
                logger.warning("Category daily quota spent", category=category, used=used, limit=limit)
                return None
            self._category_used[category] = used + requests

        first_priority = None
        for quota in self._ordered():
            if not quota.active or not quota.serves(category):
                continue
            if first_priority is None:
                first_priority = quota.priority

            async with self._locks[quota.source]:
                if quota.is_suspended(now):
                    logger.debug("Provider suspended, skipping", source=quota.source)
                    continue
                budget = quota.remaining_budget()
                if budget < requests:
                    continue
                quota.reserved += requests

            fallback = quota.priority != first_priority
            self._stats["allocations"] += 1
            if fallback:
                self._stats["fallback_allocations"] += 1
            if is_peak_hour(now):
                self._stats["peak_allocations"] += 1
            else:
                self._stats["off_peak_allocations"] += 1

            logger.info(
                "Quota allocated",
                source=quota.source,
                category=category,
                budget=budget,
                reserved=requests,
                used_today=quota.used_today,
                ceiling=quota.conservative_ceiling,
                fallback=fallback,
            )
            return Allocation(
                source=quota.source,
                budget=budget,
                reserved=requests,
                priority=quota.priority,
                fallback=fallback,
                category=category,
            )

        await self._refund_category(category, requests)
        self._stats["rejections"] += 1
        logger.warning("All providers exhausted", category=category)
        return None

    def category_limit(self, category: str) -> int:
        """Daily request allocation for a category, with the Indian-focus allowance applied."""
        limit = self.category_limits.get(category, self.default_category_limit)
        if is_indian_focus(category):
            limit = int(limit * INDIAN_FOCUS_ALLOWANCE)
        return limit

    async def _refund_category(self, category: str, count: int) -> None:
        async with self._category_lock:
            self._category_used[category] = max(0, self._category_used[category] - count)

    async def record_usage(self, source: str, count: int = 1, success: bool = True) -> None:
        """
        Charge ``count`` requests to a provider.

        Reserved units are consumed first. Counters never move past the
        hourly or daily limit; anything beyond is dropped and logged.
        """
        quota = self._get(source)
        now = self.clock.now()

        async with self._locks[source]:
            quota.reserved -= min(count, quota.reserved)

            allowed = max(0, min(
                count,
                quota.hourly_limit - quota.used_hour,
                quota.daily_limit - quota.used_today,
            ))
            if allowed < count:
                logger.error(
                    "Usage beyond provider limits dropped",
                    source=source,
                    requested=count,
                    recorded=allowed,
                )
            quota.used_hour += allowed
            quota.used_today += allowed

            if success:
                quota.consecutive_failures = 0
            else:
                quota.error_count += 1
                quota.consecutive_failures += 1
                self._stats["failures"] += 1
                if (
                    quota.consecutive_failures >= self.failure_threshold
                    and self.failure_cooldown.total_seconds() > 0
                ):
                    quota.suspended_until = now + self.failure_cooldown
                    logger.warning(
                        "Provider suspended after failures",
                        source=source,
                        consecutive_failures=quota.consecutive_failures,
                        until=quota.suspended_until.isoformat(),
                    )

            self._check_thresholds(quota)

    async def release(self, source: str, count: int, category: Optional[str] = None) -> None:
        """Return reserved units that were never spent, to the provider and the category."""
        quota = self._get(source)
        async with self._locks[source]:
            quota.reserved -= min(count, quota.reserved)
        if category is not None:
            await self._refund_category(category, count)

    def _check_thresholds(self, quota: ProviderQuota) -> None:
        ratio = quota.usage_ratio
        if ratio >= WARNING_THRESHOLD and not quota.warning_flagged:
            quota.warning_flagged = True
            logger.warning(
                "Quota warning threshold reached",
                source=quota.source,
                usage_percent=round(ratio * 100, 1),
                used=quota.used_today,
                limit=quota.daily_limit,
            )
        if ratio >= CRITICAL_THRESHOLD:
            logger.error(
                "Quota critical threshold reached",
                source=quota.source,
                usage_percent=round(ratio * 100, 1),
                used=quota.used_today,
                limit=quota.daily_limit,
            )

    def plan(self, category: str) -> FetchPlan:
        """Non-reserving view of who would serve ``category`` right now."""
        now = self.clock.now()
        candidates = []
        for quota in self._ordered():
            if not quota.active or not quota.serves(category) or quota.is_suspended(now):
                continue
            budget = quota.remaining_budget()
            if budget > 0:
                candidates.append((quota.source, budget))

        return FetchPlan(
            category=category,
            candidates=candidates,
            hourly_budget=self.current_hourly_budget(),
            created_at=now,
        )

    def set_active(self, source: str, active: bool) -> None:
        self._get(source).active = active

    # ------------------------------------------------------------------
    # Hourly budget
    # ------------------------------------------------------------------

    def current_hourly_budget(self, clock: Optional[Clock] = None) -> int:
        """Advisory request total for the current local hour."""
        hour = (clock or self.clock).now().hour
        return self.hourly_distribution.get(hour, DEFAULT_HOURLY_BUDGET)

    def hourly_headroom(self) -> int:
        """How much of the advisory hourly budget is still unspent."""
        spent = sum(q.used_hour + q.reserved for q in self._quotas.values())
        return self.current_hourly_budget() - spent

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    async def reset_if_due(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """
        Zero hour/day counters whose wall-clock bucket has rolled over.

        Safe to call any number of times: a bucket is reset only when the
        current hour (or day) differs from the one recorded at the last
        reset, so a missed tick is caught up and a repeated tick is a no-op.

        Returns:
            Tuple of (hourly_resets, daily_resets)
        """
        now = now or self.clock.now()
        hourly_resets = 0
        daily_resets = 0

        async with self._category_lock:
            today = day_bucket(now)
            if today > self._category_day:
                self._category_used.clear()
                self._category_day = today

        for quota in self._ordered():
            async with self._locks[quota.source]:
                last = quota.last_reset
                if last is None:
                    quota.last_reset = now
                    continue
                if last.tzinfo is not None and now.tzinfo is not None:
                    last = last.astimezone(now.tzinfo)
                if now <= last:
                    continue

                if day_bucket(now) != day_bucket(last):
                    quota.used_today = 0
                    quota.used_hour = 0
                    quota.error_count = 0
                    quota.warning_flagged = False
                    daily_resets += 1
                elif hour_bucket(now) != hour_bucket(last):
                    quota.used_hour = 0
                    hourly_resets += 1
                else:
                    continue
                quota.last_reset = now

        if daily_resets:
            logger.info("Daily quota reset", sources=daily_resets, at=now.isoformat())
            self._stats.clear()
        elif hourly_resets:
            logger.info("Hourly quota reset", sources=hourly_resets, at=now.isoformat())

        return hourly_resets, daily_resets

    # ------------------------------------------------------------------
    # Introspection and recovery
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, ProviderQuota]:
        """Copies of every ledger, safe to hand to callers."""
        return {q.source: replace(q) for q in self._ordered()}

    def category_usage(self) -> dict[str, CategoryUsage]:
        """Today's usage for every configured or already-charged category."""
        categories = sorted(set(self.category_limits) | set(self._category_used))
        return {
            category: CategoryUsage(
                category=category,
                daily_limit=self.category_limit(category),
                used=self._category_used.get(category, 0),
                indian_focus=is_indian_focus(category),
            )
            for category in categories
        }

    def stats(self) -> dict:
        data = dict(self._stats)
        data["hourly_budget"] = self.current_hourly_budget()
        data["hourly_headroom"] = self.hourly_headroom()
        data["category_usage"] = {c: u.used for c, u in self.category_usage().items()}
        return data

    def usage_rows(self) -> list[dict]:
        """Counters in the shape the usage store persists."""
        return [
            {
                "source": q.source,
                "used_today": q.used_today,
                "used_hour": q.used_hour,
                "error_count": q.error_count,
                "last_reset": q.last_reset,
            }
            for q in self._ordered()
        ]

    def restore(self, rows: list[dict], now: Optional[datetime] = None) -> int:
        """
        Rebuild counters from persisted usage after a restart.

        Rows from an earlier day are ignored; the hourly counter is only
        restored when the row belongs to the current hour. Counters are
        never lowered, so restoring twice is harmless.

        Returns:
            Number of providers whose counters were restored
        """
        now = now or self.clock.now()
        restored = 0

        for row in rows:
            quota = self._quotas.get(row.get("source"))
            last = row.get("last_reset")
            if quota is None or last is None:
                continue
            if last.tzinfo is not None and now.tzinfo is not None:
                last = last.astimezone(now.tzinfo)
            if day_bucket(last) != day_bucket(now):
                continue

            quota.used_today = min(max(quota.used_today, row.get("used_today", 0)), quota.daily_limit)
            quota.error_count = max(quota.error_count, row.get("error_count", 0))
            if hour_bucket(last) == hour_bucket(now):
                quota.used_hour = min(max(quota.used_hour, row.get("used_hour", 0)), quota.hourly_limit)
            quota.last_reset = last
            restored += 1

        if restored:
            logger.info("Quota usage restored", providers=restored)
        return restored
