"""
Base classes and data models for data ingestion.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from newspulse.models.domain import PassStatus

if TYPE_CHECKING:
    from newspulse.services.ingestion.dedup import DuplicateVerdict


@dataclass
class SourceConfig:
    """Configuration for a news provider."""
    name: str
    base_url: str
    api_key: Optional[str] = None
    language: str = "en"
    country: str = "in"
    max_page_size: int = 100
    timeout_seconds: float = 15.0
    categories: Optional[frozenset[str]] = None  # None = serves every category


@dataclass
class RawArticle:
    """
    Normalized article from a provider, before dedup and persistence.

    This is the intermediate format between provider-specific payloads
    and the enriched Article model.
    """
    # Required fields
    title: str
    url: str
    source_name: str  # outlet name
    provider: str  # provider that returned it

    external_id: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None
    category_hint: Optional[str] = None
    relevance_hint: Optional[float] = None
    fetched_at: Optional[datetime] = None

    @property
    def body(self) -> str:
        return self.content or ""


@dataclass
class PassResult:
    """Result of one ingestion pass for one category."""
    category: str
    status: PassStatus
    source: Optional[str] = None
    fallback: bool = False
    articles_fetched: int = 0
    articles_persisted: int = 0
    duplicates: int = 0
    verdicts: list["DuplicateVerdict"] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cache_invalidated: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status in (PassStatus.COMPLETED, PassStatus.NO_SOURCE, PassStatus.BUDGET_EXHAUSTED)

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return (
            f"{status} {self.category} [{self.status.value}] via {self.source or '-'}: "
            f"fetched={self.articles_fetched}, persisted={self.articles_persisted}, "
            f"duplicates={self.duplicates}, errors={len(self.errors)}, "
            f"time={self.duration_seconds:.1f}s"
        )


class SourceClient(ABC):
    """
    Abstract base class for news providers.

    Each provider implementation handles:
    - Calling its specific API
    - Parsing the provider-specific payload
    - Mapping to normalized RawArticle format

    Quota accounting and retries are not the adapter's concern: the
    orchestrator charges every call to the provider ledger and never
    retries a failed provider within the same pass.
    """

    def __init__(self, config: SourceConfig):
        self.config = config
        self.name = config.name

    @abstractmethod
    async def fetch(self, category: str, max_count: int) -> list[RawArticle]:
        """
        Fetch the latest articles for a category.

        Args:
            category: Our category slug (e.g. "sports")
            max_count: Maximum number of articles to return

        Returns:
            List of RawArticle objects

        Raises:
            SourceFetchError: on network, HTTP or payload failure
        """
        pass

    def supports(self, category: str) -> bool:
        """Whether this provider can serve the category at all."""
        return self.config.categories is None or category in self.config.categories

    async def close(self) -> None:
        """Release any pooled connections."""
        return None
