"""
Domain models for NewsPulse.
These are the core business entities, independent of database/API representation.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class ContentOrigin(str, Enum):
    """Coarse origin flag used to surface India-relevant content."""
    INDIAN = "indian"
    GLOBAL = "global"


class PassStatus(str, Enum):
    """Outcome of one ingestion pass for a category."""
    COMPLETED = "completed"
    NO_SOURCE = "no_source"  # every provider exhausted or suspended
    SOURCE_FAILED = "source_failed"  # network, parse or timeout failure
    PERSISTENCE_FAILED = "persistence_failed"
    BUDGET_EXHAUSTED = "budget_exhausted"  # advisory hourly budget reached


# =============================================================================
# Articles
# =============================================================================

class Article(BaseModel):
    """Enriched article as handed to the persistent store and cached for readers."""
    external_id: str
    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    url: str
    canonical_url: str  # normalized URL used for duplicate detection
    source_name: str  # outlet, e.g. "The Hindu"
    provider: str  # API the article came through, e.g. "gdelt"
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    category: str

    # Derived fields
    content_hash: str
    word_count: int = 0
    reading_time_minutes: int = 1
    relevance_score: float = 0.5
    content_origin: ContentOrigin = ContentOrigin.GLOBAL

    fetched_at: Optional[datetime] = None

    @property
    def is_indian(self) -> bool:
        return self.content_origin == ContentOrigin.INDIAN


# =============================================================================
# Caching
# =============================================================================

class CacheEntry(BaseModel):
    """Serialized article list plus the metadata needed for TTL and stale-serve."""
    key: str
    category: str
    ttl_seconds: int
    created_at: datetime
    expires_at: datetime
    access_count: int = 0
    articles: list[Article] = Field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class CategoryCacheStats(BaseModel):
    """Read-path counters for a single category."""
    requests: int = 0
    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    hit_rate: float = 0.0
    target_hit_rate: Optional[int] = None
    last_ttl_seconds: Optional[int] = None
    last_updated: Optional[datetime] = None


class CacheStats(BaseModel):
    """Aggregate cache performance, as exposed to callers."""
    total_requests: int = 0
    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    writes: int = 0
    evictions: int = 0
    store_errors: int = 0
    hit_rate: float = 0.0  # percent
    per_category: dict[str, CategoryCacheStats] = Field(default_factory=dict)


class FeedResult(BaseModel):
    """What the read path returns: the best articles available right now."""
    category: str
    articles: list[Article] = Field(default_factory=list)
    from_cache: bool = False
    stale: bool = False
