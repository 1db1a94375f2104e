"""
Tests for the provider quota allocator.
"""

import asyncio

import pytest

from newspulse.config import Settings
from newspulse.services.ingestion.quota import (
    HOURLY_REQUEST_DISTRIBUTION,
    ProviderQuota,
    QuotaAllocator,
)

from tests.conftest import FixedClock, ist, make_quota


def assert_within_limits(allocator: QuotaAllocator):
    for quota in allocator.snapshot().values():
        assert quota.used_today <= quota.daily_limit
        assert quota.used_hour <= quota.hourly_limit


class TestProviderQuota:

    def test_ceiling_above_daily_limit_rejected(self):
        with pytest.raises(ValueError):
            ProviderQuota(source="x", daily_limit=10, hourly_limit=10, conservative_ceiling=11, priority=1)

    def test_remaining_budget_is_tighter_of_hour_and_day(self):
        quota = make_quota("a", 1, ceiling=10, daily_limit=12, hourly_limit=4, used_today=8)
        assert quota.remaining_budget() == 2

        quota.used_today = 0
        quota.used_hour = 1
        assert quota.remaining_budget() == 3

    def test_reserved_units_reduce_budget(self):
        quota = make_quota("a", 1, ceiling=5)
        quota.reserved = 3
        assert quota.remaining_budget() == 2


class TestNextSource:

    @pytest.mark.asyncio
    async def test_falls_through_to_secondary_when_primary_at_ceiling(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, ceiling=10, used_today=10, hourly_limit=100, daily_limit=12),
            make_quota("secondary", 2, ceiling=5, used_today=0, hourly_limit=100, daily_limit=6),
        ], clock=clock)

        allocation = await allocator.next_source("general")

        assert allocation is not None
        assert allocation.source == "secondary"
        assert allocation.budget == 5
        assert allocation.fallback is True

    @pytest.mark.asyncio
    async def test_primary_preferred_when_it_has_budget(self, clock):
        allocator = QuotaAllocator([
            make_quota("secondary", 2),
            make_quota("primary", 1),
        ], clock=clock)

        allocation = await allocator.next_source("general")
        assert allocation.source == "primary"
        assert allocation.fallback is False

    @pytest.mark.asyncio
    async def test_none_when_every_source_exhausted(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, ceiling=3, used_today=3),
            make_quota("secondary", 2, ceiling=2, used_today=2),
        ], clock=clock)

        assert await allocator.next_source("general") is None
        assert allocator.stats()["rejections"] == 1

    @pytest.mark.asyncio
    async def test_hourly_limit_blocks_source(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=10, hourly_limit=2)], clock=clock)

        for _ in range(2):
            allocation = await allocator.next_source("general")
            await allocator.record_usage(allocation.source, allocation.reserved)

        assert await allocator.next_source("general") is None
        assert allocator.snapshot()["primary"].used_hour == 2

    @pytest.mark.asyncio
    async def test_inactive_and_unsupported_sources_skipped(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, active=False),
            make_quota("sports_only", 2, categories=frozenset({"sports"})),
            make_quota("tertiary", 3),
        ], clock=clock)

        allocation = await allocator.next_source("business")
        assert allocation.source == "tertiary"

        allocation = await allocator.next_source("sports")
        assert allocation.source == "sports_only"

    @pytest.mark.asyncio
    async def test_budget_never_zero(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=3)], clock=clock)

        budgets = []
        while (allocation := await allocator.next_source("general")) is not None:
            budgets.append(allocation.budget)
            await allocator.record_usage(allocation.source, allocation.reserved)

        assert budgets == [3, 2, 1]
        assert all(b > 0 for b in budgets)

    @pytest.mark.asyncio
    async def test_requests_larger_than_budget_fall_through(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, ceiling=2),
            make_quota("secondary", 2, ceiling=10),
        ], clock=clock)

        allocation = await allocator.next_source("general", requests=3)
        assert allocation.source == "secondary"
        assert allocation.reserved == 3


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_last_unit_is_handed_out_once(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=1, daily_limit=2)], clock=clock)

        allocations = await asyncio.gather(*(allocator.next_source("general") for _ in range(10)))

        granted = [a for a in allocations if a is not None]
        assert len(granted) == 1

    @pytest.mark.asyncio
    async def test_counters_stay_within_limits_under_load(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, ceiling=7, daily_limit=8, hourly_limit=5),
            make_quota("secondary", 2, ceiling=4, daily_limit=5),
        ], clock=clock)

        async def worker(i: int):
            allocation = await allocator.next_source("general")
            if allocation is None:
                return None
            await asyncio.sleep(0)
            await allocator.record_usage(allocation.source, allocation.reserved, success=i % 3 != 0)
            return allocation.source

        results = await asyncio.gather(*(worker(i) for i in range(40)))

        assert_within_limits(allocator)
        snapshot = allocator.snapshot()
        assert snapshot["primary"].used_hour <= 5
        assert snapshot["secondary"].used_today <= 4
        assert all(q.reserved == 0 for q in snapshot.values())
        assert len([r for r in results if r is not None]) <= 9

    @pytest.mark.asyncio
    async def test_record_usage_clamps_at_hard_limits(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=10, daily_limit=12, hourly_limit=6)], clock=clock)

        await allocator.record_usage("primary", 50)

        quota = allocator.snapshot()["primary"]
        assert quota.used_hour == 6
        assert quota.used_today == 6
        assert_within_limits(allocator)

    @pytest.mark.asyncio
    async def test_release_returns_reservation(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=1)], clock=clock)

        allocation = await allocator.next_source("general")
        assert await allocator.next_source("general") is None

        await allocator.release(allocation.source, allocation.reserved)
        assert (await allocator.next_source("general")).source == "primary"

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=clock)
        with pytest.raises(ValueError):
            await allocator.record_usage("nope", 1)


class TestFailures:

    @pytest.mark.asyncio
    async def test_failure_counts_usage_and_errors(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=clock, failure_cooldown_seconds=0)

        await allocator.record_usage("primary", 1, success=False)

        quota = allocator.snapshot()["primary"]
        assert quota.used_today == 1
        assert quota.used_hour == 1
        assert quota.error_count == 1

    @pytest.mark.asyncio
    async def test_failed_source_skipped_until_cooldown_ends(self, clock):
        allocator = QuotaAllocator(
            [make_quota("primary", 1), make_quota("secondary", 2)],
            clock=clock,
            failure_threshold=1,
            failure_cooldown_seconds=300,
        )

        allocation = await allocator.next_source("general")
        await allocator.record_usage(allocation.source, allocation.reserved, success=False)

        assert (await allocator.next_source("general")).source == "secondary"

        clock.advance(seconds=301)
        assert (await allocator.next_source("general")).source == "primary"

    @pytest.mark.asyncio
    async def test_success_clears_consecutive_failures(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=clock, failure_threshold=2)

        await allocator.record_usage("primary", 1, success=False)
        await allocator.record_usage("primary", 1, success=True)
        await allocator.record_usage("primary", 1, success=False)

        quota = allocator.snapshot()["primary"]
        assert quota.consecutive_failures == 1
        assert quota.suspended_until is None

    @pytest.mark.asyncio
    async def test_warning_threshold_flagged(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=18, daily_limit=20)], clock=clock)

        await allocator.record_usage("primary", 16)
        assert allocator.snapshot()["primary"].warning_flagged is False

        await allocator.record_usage("primary", 1)
        assert allocator.snapshot()["primary"].warning_flagged is True


class TestResets:

    @pytest.mark.asyncio
    async def test_hour_rollover_resets_hourly_counter_only(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50, hourly_limit=10)], clock=clock)
        await allocator.record_usage("primary", 3)

        clock.set(ist(hour=11, minute=5))
        hourly, daily = await allocator.reset_if_due()

        quota = allocator.snapshot()["primary"]
        assert (hourly, daily) == (1, 0)
        assert quota.used_hour == 0
        assert quota.used_today == 3

    @pytest.mark.asyncio
    async def test_midnight_resets_both_counters(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50)], clock=clock)
        await allocator.record_usage("primary", 4, success=False)

        clock.set(ist(day=16, hour=0, minute=1))
        await allocator.reset_if_due()

        quota = allocator.snapshot()["primary"]
        assert quota.used_hour == 0
        assert quota.used_today == 0
        assert quota.error_count == 0

    @pytest.mark.asyncio
    async def test_repeated_tick_in_same_bucket_is_noop(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50)], clock=clock)

        clock.set(ist(hour=11))
        assert await allocator.reset_if_due() == (1, 0)
        await allocator.record_usage("primary", 2)

        clock.set(ist(hour=11, minute=45))
        assert await allocator.reset_if_due() == (0, 0)
        assert allocator.snapshot()["primary"].used_hour == 2

    @pytest.mark.asyncio
    async def test_missed_ticks_caught_up_once(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50)], clock=clock)
        await allocator.record_usage("primary", 5)

        # process was down for several hours
        clock.set(ist(hour=16, minute=20))
        assert await allocator.reset_if_due() == (1, 0)
        assert await allocator.reset_if_due() == (0, 0)
        assert allocator.snapshot()["primary"].used_today == 5

    @pytest.mark.asyncio
    async def test_next_source_applies_due_reset(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50, hourly_limit=1)], clock=clock)
        allocation = await allocator.next_source("general")
        await allocator.record_usage(allocation.source, allocation.reserved)
        assert await allocator.next_source("general") is None

        clock.set(ist(hour=11, minute=1))
        assert (await allocator.next_source("general")).source == "primary"


class TestCategoryQuotas:

    @pytest.mark.asyncio
    async def test_category_allocation_caps_passes(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=clock, category_limits={"general": 2})

        assert await allocator.next_source("general") is not None
        assert await allocator.next_source("general") is not None
        assert await allocator.next_source("general") is None
        assert await allocator.next_source("sports") is not None

        usage = allocator.category_usage()
        assert usage["general"].used == 2
        assert usage["general"].remaining == 0
        assert usage["sports"].daily_limit == 500
        stats = allocator.stats()
        assert stats["category_rejections"] == 1
        assert stats["category_usage"] == {"general": 2, "sports": 1}

    @pytest.mark.asyncio
    async def test_release_and_exhaustion_refund_category(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=1)], clock=clock)

        allocation = await allocator.next_source("general")
        assert await allocator.next_source("general") is None
        assert allocator.category_usage()["general"].used == 1

        await allocator.release(allocation.source, allocation.reserved, allocation.category)
        assert allocator.category_usage()["general"].used == 0

    def test_indian_focus_allowance(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=clock, default_category_limit=100)

        assert allocator.category_limit("business") == 110
        assert allocator.category_limit("indian_politics") == 110
        assert allocator.category_limit("sports") == 100

    @pytest.mark.asyncio
    async def test_category_usage_resets_at_midnight(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50)], clock=clock, category_limits={"general": 1})
        await allocator.next_source("general")
        assert await allocator.next_source("general") is None

        clock.set(ist(day=16, hour=0, minute=1))

        assert await allocator.next_source("general") is not None
        assert allocator.category_usage()["general"].used == 1

    def test_settings_carry_category_limits(self):
        settings = Settings(_env_file=None, category_daily_limits={"sports": 40})
        assert settings.category_daily_limits == {"sports": 40}
        assert settings.default_category_daily_limit == 500


class TestHourlyBudget:

    def test_distribution_covers_every_hour(self):
        assert sorted(HOURLY_REQUEST_DISTRIBUTION) == list(range(24))

    @pytest.mark.parametrize("hour,expected", [
        (3, 1150),
        (8, 1400),
        (10, 1750),
        (13, 1850),
        (21, 1800),
        (23, 1200),
    ])
    def test_current_hourly_budget(self, hour, expected):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=FixedClock(ist(hour=hour)))
        assert allocator.current_hourly_budget() == expected

    @pytest.mark.asyncio
    async def test_headroom_shrinks_with_usage(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50)], clock=clock)
        await allocator.record_usage("primary", 5)
        assert allocator.hourly_headroom() == 1750 - 5


class TestPlanAndRestore:

    def test_plan_does_not_reserve(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, ceiling=3, used_today=3),
            make_quota("secondary", 2, ceiling=5),
            make_quota("tertiary", 3, ceiling=2),
        ], clock=clock)

        plan = allocator.plan("general")

        assert plan.candidates == [("secondary", 5), ("tertiary", 2)]
        assert allocator.snapshot()["secondary"].reserved == 0

    def test_restore_same_day_rows(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1, ceiling=50, hourly_limit=20)], clock=clock)

        restored = allocator.restore([
            {"source": "primary", "used_today": 12, "used_hour": 4, "error_count": 1,
             "last_reset": ist(hour=10, minute=0)},
            {"source": "unknown", "used_today": 1, "used_hour": 1, "last_reset": ist()},
        ])

        quota = allocator.snapshot()["primary"]
        assert restored == 1
        assert quota.used_today == 12
        assert quota.used_hour == 4
        assert quota.error_count == 1

    def test_restore_ignores_previous_day_and_previous_hour(self, clock):
        allocator = QuotaAllocator([
            make_quota("primary", 1, ceiling=50),
            make_quota("secondary", 2, ceiling=50),
        ], clock=clock)

        allocator.restore([
            {"source": "primary", "used_today": 9, "used_hour": 9, "last_reset": ist(day=14, hour=23)},
            {"source": "secondary", "used_today": 7, "used_hour": 3, "last_reset": ist(hour=8)},
        ])

        snapshot = allocator.snapshot()
        assert snapshot["primary"].used_today == 0
        assert snapshot["secondary"].used_today == 7
        assert snapshot["secondary"].used_hour == 0

    def test_snapshot_is_a_copy(self, clock):
        allocator = QuotaAllocator([make_quota("primary", 1)], clock=clock)
        allocator.snapshot()["primary"].used_today = 99
        assert allocator.snapshot()["primary"].used_today == 0


class TestSettingsQuotas:

    def test_conservative_ceiling_stays_below_limit(self):
        settings = Settings(_env_file=None)
        assert settings.conservative_ceiling(150) == 135
        assert settings.conservative_ceiling(12) == 10
        assert settings.conservative_ceiling(1) == 0

    def test_keyless_providers_start_inactive(self):
        settings = Settings(_env_file=None, gnews_api_key="key")
        quotas = {q.source: q for q in settings.provider_quotas()}

        assert [q.source for q in sorted(quotas.values(), key=lambda q: q.priority)] == [
            "gdelt", "newsdata", "gnews", "mediastack",
        ]
        assert quotas["gdelt"].active
        assert quotas["gnews"].active
        assert not quotas["newsdata"].active
        assert not quotas["mediastack"].active
        assert quotas["gdelt"].hourly_limit == 1000
        assert quotas["mediastack"].conservative_ceiling == 10
