"""Collaborator interfaces consumed by the ingestion core."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from newspulse.models.domain import Article


class ArticleStore(ABC):
    """Persistent article storage."""

    @abstractmethod
    async def upsert_articles(self, batch: list[Article]) -> int:
        """Insert or update articles keyed by external id. Returns rows written."""
        pass

    @abstractmethod
    async def find_recent_by_window(self, category: Optional[str], since: datetime) -> list[Article]:
        """Articles published (or fetched) since the given time, for dedup snapshots."""
        pass

    @abstractmethod
    async def article_exists_by_url(self, url: str) -> bool:
        """Whether any stored article has this canonical URL."""
        pass

    @abstractmethod
    async def find_latest(
        self,
        category: Optional[str],
        limit: int,
        offset: int = 0,
        origin: Optional[str] = None,
    ) -> list[Article]:
        """Newest articles for a category, used to fill the read cache."""
        pass


class CacheStore(ABC):
    """Key/value cache with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the payload, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        """Store a payload that the store expires after ttl_seconds."""
        pass

    @abstractmethod
    async def invalidate(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns keys removed."""
        pass


class QuotaUsageStore(ABC):
    """Durable copy of provider counters, used to rebuild them after a restart."""

    @abstractmethod
    async def save_usage(self, rows: list[dict]) -> None:
        pass

    @abstractmethod
    async def load_usage(self) -> list[dict]:
        pass
