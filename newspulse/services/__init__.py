"""
Services layer - core business logic for NewsPulse.

The ingestion package implements the key pieces:

1. Quota Allocation (ingestion/quota.py):
   - Priority fall-through across rate-limited providers
   - Hour and day counters on local wall-clock boundaries

2. Orchestration (ingestion/orchestrator.py):
   - One pass per category: allocate, fetch, dedup, enrich, persist
   - Bounded worker pool for full refreshes

3. Duplicate Detection (ingestion/dedup.py):
   - URL, content hash, then fuzzy title within a time window

4. Caching (ingestion/cache_policy.py, ingestion/article_cache.py):
   - Deterministic keys and time-of-day TTLs
   - Stale-serve when the store is unavailable

5. Scheduling (ingestion/scheduler.py):
   - Quota reset tick, periodic refresh and event-window refreshes
"""
