#!/usr/bin/env python3
"""
CLI tool for news ingestion.

Usage:
    # Run one pass for a category
    python -m scripts.ingest fetch --category sports

    # Refresh every configured category
    python -m scripts.ingest refresh

    # Show which providers would serve a category right now
    python -m scripts.ingest plan --category business

    # Show provider quota usage
    python -m scripts.ingest quota

    # Read a category feed through the cache
    python -m scripts.ingest feed --category politics

    # Show cache TTLs and hit statistics
    python -m scripts.ingest cache-stats

    # Run scheduler (continuous)
    python -m scripts.ingest serve
"""

import argparse
import asyncio
import json
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from newspulse.config import get_settings
from newspulse.core.errors import IngestionError, PersistenceError
from newspulse.main import Application, create_app, serve


async def with_app(func, args) -> int:
    app = await create_app()
    try:
        return await func(app, args)
    finally:
        await app.close()


async def cmd_fetch(app: Application, args) -> int:
    """Run one ingestion pass."""
    print(f"Fetching category: {args.category}")
    try:
        result = await app.orchestrator.trigger_ingestion(args.category)
    except PersistenceError as e:
        print(f"✗ Persistence failed: {e}")
        return 1

    print(result)
    if args.verbose:
        for verdict in result.verdicts:
            print(f"  duplicate {verdict.candidate_ref} -> {verdict.matched_ref} ({verdict.method.value})")
    return 0 if result.success else 1


async def cmd_refresh(app: Application, args) -> int:
    """Refresh all (or selected) categories."""
    categories = args.categories or None
    try:
        results = await app.orchestrator.trigger_full_refresh(categories)
    except IngestionError as e:
        print(f"✗ {e}")
        return 1

    print("\n" + "=" * 60)
    print("INGESTION RESULTS")
    print("=" * 60)
    for result in results:
        print(result)
    print("-" * 60)
    print(f"Persisted: {sum(r.articles_persisted for r in results)}")
    return 0


async def cmd_plan(app: Application, args) -> int:
    plan = app.orchestrator.plan(args.category)
    print(f"Category: {plan.category}")
    print(f"Hourly budget: {plan.hourly_budget}")
    if plan.is_empty:
        print("  No provider available")
        return 1
    for rank, (source, budget) in enumerate(plan.candidates, start=1):
        print(f"  {rank}. {source}: {budget} requests left this hour")
    return 0


async def cmd_quota(app: Application, args) -> int:
    snapshot = app.orchestrator.get_quota_snapshot()

    print("\n" + "=" * 60)
    print("PROVIDER QUOTAS")
    print("=" * 60)
    for quota in snapshot.values():
        state = "active" if quota.active else "inactive"
        print(f"  {quota.source} (priority {quota.priority}, {state})")
        print(f"    Today: {quota.used_today}/{quota.conservative_ceiling} (limit {quota.daily_limit})")
        print(f"    Hour:  {quota.used_hour}/{quota.hourly_limit}")
        print(f"    Errors: {quota.error_count}")

    stats = app.orchestrator.allocator.stats()
    print("-" * 60)
    print(f"Hourly budget: {stats['hourly_budget']} (headroom {stats['hourly_headroom']})")

    usage = app.orchestrator.get_category_usage()
    if usage:
        print("Categories today:")
        for item in usage.values():
            print(f"  {item.category}: {item.used}/{item.daily_limit}")
    return 0


async def cmd_feed(app: Application, args) -> int:
    feed = await app.orchestrator.read_feed(args.category, page=args.page, limit=args.limit)
    origin = "cache" if feed.from_cache else "store"
    if feed.stale:
        origin += ", stale"
    print(f"{feed.category}: {len(feed.articles)} articles ({origin})")
    for article in feed.articles:
        print(f"\n[{article.source_name}] {article.title}")
        print(f"  URL: {article.url}")
        print(f"  Published: {article.published_at}")
        print(f"  Relevance: {article.relevance_score}  Reading time: {article.reading_time_minutes} min")
    return 0


async def cmd_cache_stats(app: Application, args) -> int:
    policy = app.orchestrator.cache.policy
    now = policy.clock.now()

    print("\n" + "=" * 60)
    print(f"CACHE TTLS at {now:%H:%M %Z}")
    print("=" * 60)
    for category in app.settings.categories:
        rule = policy.ttl_rule(category, now)
        print(f"  {category:<14} {policy.ttl_for(category, now):>6}s  ({rule})")

    stats = app.orchestrator.get_cache_stats()
    print("-" * 60)
    print(json.dumps(stats.model_dump(mode="json"), indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="NewsPulse - News Ingestion CLI"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    categories = get_settings().categories

    # Fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Run one ingestion pass")
    fetch_parser.add_argument(
        "--category", "-c",
        required=True,
        choices=categories,
        help="Category to fetch"
    )
    fetch_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show duplicate verdicts"
    )

    # Refresh command
    refresh_parser = subparsers.add_parser("refresh", help="Refresh all categories")
    refresh_parser.add_argument(
        "--categories",
        nargs="*",
        choices=categories,
        help="Limit the refresh to these categories"
    )

    # Plan command
    plan_parser = subparsers.add_parser("plan", help="Show provider candidates for a category")
    plan_parser.add_argument("--category", "-c", required=True, choices=categories)

    # Quota command
    subparsers.add_parser("quota", help="Show provider quota usage")

    # Feed command
    feed_parser = subparsers.add_parser("feed", help="Read a category feed")
    feed_parser.add_argument("--category", "-c", required=True, choices=categories)
    feed_parser.add_argument("--page", type=int, default=1)
    feed_parser.add_argument("--limit", "-l", type=int, default=None)

    # Cache stats command
    subparsers.add_parser("cache-stats", help="Show cache TTLs and statistics")

    # Serve command
    subparsers.add_parser("serve", help="Run continuous scheduler")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "fetch": cmd_fetch,
        "refresh": cmd_refresh,
        "plan": cmd_plan,
        "quota": cmd_quota,
        "feed": cmd_feed,
        "cache-stats": cmd_cache_stats,
    }

    if args.command == "serve":
        print("Starting scheduler")
        print("Press Ctrl+C to stop")
        try:
            asyncio.run(serve())
        except KeyboardInterrupt:
            print("\nShutting down...")
        return 0

    return asyncio.run(with_app(commands[args.command], args))


if __name__ == "__main__":
    sys.exit(main())
