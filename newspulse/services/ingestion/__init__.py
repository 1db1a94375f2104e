"""
Ingestion and caching core for NewsPulse.

- Quota allocation across rate-limited news providers
- Multi-source fetch orchestration with fall-through
- Duplicate detection (URL, content hash, title + time window)
- Time-aware cache keys and TTLs
"""

from newspulse.services.ingestion.base import (
    PassResult,
    RawArticle,
    SourceClient,
    SourceConfig,
)
from newspulse.services.ingestion.quota import (
    Allocation,
    CategoryUsage,
    FetchPlan,
    ProviderQuota,
    QuotaAllocator,
)
from newspulse.services.ingestion.dedup import (
    DedupIndex,
    Deduplicator,
    DetectionMethod,
    DuplicateVerdict,
)
from newspulse.services.ingestion.cache_policy import CachePolicy, CategoryTTL
from newspulse.services.ingestion.article_cache import ArticleCache, CacheLookup
from newspulse.services.ingestion.enrichment import ContentAnalyzer
from newspulse.services.ingestion.orchestrator import IngestionOrchestrator
from newspulse.services.ingestion.scheduler import IngestionScheduler

__all__ = [
    "PassResult",
    "RawArticle",
    "SourceClient",
    "SourceConfig",
    "Allocation",
    "CategoryUsage",
    "FetchPlan",
    "ProviderQuota",
    "QuotaAllocator",
    "DedupIndex",
    "Deduplicator",
    "DetectionMethod",
    "DuplicateVerdict",
    "CachePolicy",
    "CategoryTTL",
    "ArticleCache",
    "CacheLookup",
    "ContentAnalyzer",
    "IngestionOrchestrator",
    "IngestionScheduler",
]
