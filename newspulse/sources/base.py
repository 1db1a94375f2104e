"""
Base class for JSON news APIs fetched over httpx.

Adapters supply request parameters and a payload parser; this class owns
the HTTP call and turns every transport, status or payload problem into
SourceFetchError. It never retries: a failed provider is skipped until a
later pass.
"""
from abc import abstractmethod
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog

from newspulse.core.errors import SourceFetchError
from newspulse.services.ingestion.base import RawArticle, SourceClient, SourceConfig

logger = structlog.get_logger(__name__)


def parse_timestamp(value: Optional[str], *formats: str) -> Optional[datetime]:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Tries ISO 8601 first, then each strptime format. Naive results are
    taken to be UTC. Unparseable values give None rather than an error.
    """
    if not value:
        return None

    parsed = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        for fmt in formats:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = " ".join(str(value).split())
    return value or None


class HTTPNewsSource(SourceClient):
    """Adapter base for providers with a single JSON GET endpoint."""

    # Our category -> provider vocabulary. Categories missing here are not served.
    CATEGORY_MAP: dict[str, str] = {}

    def __init__(self, config: SourceConfig, client: Optional[httpx.AsyncClient] = None):
        if config.categories is None and self.CATEGORY_MAP:
            config.categories = frozenset(self.CATEGORY_MAP)
        super().__init__(config)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                headers={"User-Agent": "NewsPulse/0.1"},
            )
        return self._client

    @abstractmethod
    def build_params(self, category: str, count: int) -> dict:
        """Query parameters for one request."""
        pass

    @abstractmethod
    def parse(self, data: dict) -> list[RawArticle]:
        """Map a decoded payload to RawArticles, skipping unusable items."""
        pass

    def check_payload(self, data: dict) -> None:
        """Raise SourceFetchError if the payload reports an API-level error."""
        return None

    async def _get_json(self, params: dict) -> dict:
        client = self._get_client()
        try:
            response = await client.get(
                self.config.base_url,
                params=params,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            # the URL carries the API key, keep it out of the message
            status = e.response.status_code
            raise SourceFetchError(self.name, f"HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(self.name, f"request failed ({type(e).__name__})") from e
        except ValueError as e:
            raise SourceFetchError(self.name, "response was not valid JSON") from e

        if not isinstance(data, dict):
            raise SourceFetchError(self.name, f"unexpected payload type {type(data).__name__}")
        return data

    async def fetch(self, category: str, max_count: int) -> list[RawArticle]:
        if not self.supports(category) or max_count <= 0:
            return []

        count = min(max_count, self.config.max_page_size)
        data = await self._get_json(self.build_params(category, count))
        self.check_payload(data)

        try:
            articles = self.parse(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SourceFetchError(self.name, f"could not parse payload: {e}") from e

        fetched_at = datetime.now(timezone.utc)
        for article in articles:
            article.fetched_at = article.fetched_at or fetched_at
            article.category_hint = article.category_hint or category

        logger.info("Provider fetch", source=self.name, category=category, articles=len(articles))
        return articles[:count]

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
