"""
Application configuration using Pydantic Settings.
"""

import math
from datetime import datetime
from functools import lru_cache
from typing import TYPE_CHECKING, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from newspulse.services.ingestion.quota import ProviderQuota


DEFAULT_CATEGORIES = [
    "general",
    "breaking",
    "business",
    "finance",
    "sports",
    "technology",
    "health",
    "politics",
    "entertainment",
]


class DedupSettings(BaseSettings):
    """Thresholds for the duplicate detector."""

    model_config = SettingsConfigDict(env_prefix="DEDUP_")

    title_similarity_threshold: float = Field(
        default=0.8,
        description="Minimum title similarity (0-1) for a fuzzy match",
    )
    time_window_hours: int = Field(
        default=24,
        ge=1,
        description="Max publish-time distance for a fuzzy title match to count",
    )
    lookback_hours: int = Field(
        default=48,
        ge=1,
        description="How far back the per-pass comparison snapshot reaches",
    )

    @field_validator("title_similarity_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Similarity threshold must be between 0 and 1")
        return v


class CacheSettings(BaseSettings):
    """Cache store and read-path settings."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    key_prefix: str = Field(default="newspulse")
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL; the in-process store is used when unset",
    )
    stale_grace_seconds: int = Field(
        default=3600,
        ge=0,
        description="How long an expired entry stays available for stale-serve",
    )
    warm_after_ingest: bool = Field(default=True)
    default_page_size: int = Field(default=20, ge=1, le=100)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "NewsPulse"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)
    timezone: str = Field(default="Asia/Kolkata")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./newspulse.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # Ingestion
    categories: list[str] = Field(default_factory=lambda: list(DEFAULT_CATEGORIES))
    worker_pool_size: int = Field(default=3, ge=1, le=32)
    fetch_timeout_seconds: float = Field(default=15.0, gt=0)
    requests_per_pass: int = Field(default=1, ge=1)
    articles_per_request: int = Field(default=50, ge=1, le=100)
    failure_threshold: int = Field(
        default=1,
        ge=1,
        description="Consecutive failures before a provider is skipped",
    )
    failure_cooldown_seconds: int = Field(default=300, ge=0)
    category_daily_limits: dict[str, int] = Field(
        default_factory=dict,
        description="Per-category daily request allocations; unlisted categories use the default",
    )
    default_category_daily_limit: int = Field(default=500, ge=1)
    enable_mock_source: bool = Field(default=False)

    # Scheduler
    refresh_interval_minutes: int = Field(default=30, ge=1)
    quota_persist_interval_minutes: int = Field(default=5, ge=1)

    # Provider quotas
    quota_safety_ratio: float = Field(
        default=0.9,
        gt=0.0,
        lt=1.0,
        description="Conservative ceiling as a fraction of each daily limit",
    )
    gdelt_daily_limit: int = Field(default=24000, ge=1)
    gdelt_hourly_limit: int = Field(default=1000, ge=1)
    newsdata_daily_limit: int = Field(default=150, ge=1)
    gnews_daily_limit: int = Field(default=75, ge=1)
    mediastack_daily_limit: int = Field(default=12, ge=1)

    # API keys (GDELT needs none)
    newsdata_api_key: Optional[str] = Field(default=None)
    gnews_api_key: Optional[str] = Field(default=None)
    mediastack_api_key: Optional[str] = Field(default=None)

    # Nested groups
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    def conservative_ceiling(self, daily_limit: int) -> int:
        """Safety-margined ceiling, always strictly below the daily limit."""
        ceiling = math.floor(daily_limit * self.quota_safety_ratio)
        return max(0, min(ceiling, daily_limit - 1))

    def provider_quotas(self, now: Optional[datetime] = None) -> list["ProviderQuota"]:
        """
        Build the provider ledger from static configuration.

        Priority order is primary (GDELT), secondary (NewsData.io),
        tertiary (GNews) and emergency (Mediastack). Providers that need
        an API key start inactive when the key is missing.
        """
        from newspulse.services.ingestion.quota import ProviderQuota

        rows = [
            ("gdelt", self.gdelt_daily_limit, self.gdelt_hourly_limit, 1, True),
            ("newsdata", self.newsdata_daily_limit, self.newsdata_daily_limit, 2,
             bool(self.newsdata_api_key)),
            ("gnews", self.gnews_daily_limit, self.gnews_daily_limit, 3,
             bool(self.gnews_api_key)),
            ("mediastack", self.mediastack_daily_limit, self.mediastack_daily_limit, 4,
             bool(self.mediastack_api_key)),
        ]

        quotas = []
        for source, daily, hourly, priority, active in rows:
            quotas.append(ProviderQuota(
                source=source,
                daily_limit=daily,
                hourly_limit=min(hourly, daily),
                conservative_ceiling=self.conservative_ceiling(daily),
                priority=priority,
                active=active,
                last_reset=now,
            ))

        if self.enable_mock_source:
            quotas.append(ProviderQuota(
                source="mock",
                daily_limit=100000,
                hourly_limit=10000,
                conservative_ceiling=self.conservative_ceiling(100000),
                priority=99,
                last_reset=now,
            ))

        return quotas


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
