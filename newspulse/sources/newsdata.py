"""
NewsData.io adapter (secondary provider).
API docs: https://newsdata.io/documentation
"""
from typing import Optional

from newspulse.core.errors import SourceFetchError
from newspulse.services.ingestion.base import RawArticle, SourceConfig
from newspulse.sources.base import HTTPNewsSource, clean_text, parse_timestamp

BASE_URL = "https://newsdata.io/api/1/news"

CATEGORY_MAP = {
    "general": "top",
    "breaking": "top",
    "business": "business",
    "finance": "business",
    "sports": "sports",
    "technology": "technology",
    "health": "health",
    "politics": "politics",
    "entertainment": "entertainment",
}


def create_newsdata_config(api_key: Optional[str], timeout_seconds: float = 15.0) -> SourceConfig:
    return SourceConfig(
        name="newsdata",
        base_url=BASE_URL,
        api_key=api_key,
        max_page_size=10,  # free tier page size
        timeout_seconds=timeout_seconds,
    )


class NewsDataSource(HTTPNewsSource):
    """Adapter for NewsData.io latest news."""

    CATEGORY_MAP = CATEGORY_MAP

    def build_params(self, category: str, count: int) -> dict:
        return {
            "apikey": self.config.api_key,
            "country": self.config.country,
            "language": self.config.language,
            "category": self.CATEGORY_MAP[category],
            "size": count,
        }

    def check_payload(self, data: dict) -> None:
        if data.get("status") == "error":
            results = data.get("results") or {}
            message = results.get("message") if isinstance(results, dict) else None
            raise SourceFetchError(self.name, f"API error: {message or 'unknown'}")

    def parse(self, data: dict) -> list[RawArticle]:
        articles = []
        for item in data.get("results") or []:
            title = clean_text(item.get("title"))
            url = item.get("link")
            if not title or not url:
                continue

            creators = item.get("creator") or []
            external = item.get("article_id")
            articles.append(RawArticle(
                external_id=f"newsdata:{external}" if external else None,
                title=title,
                url=url,
                source_name=item.get("source_id") or "NewsData",
                provider=self.name,
                description=clean_text(item.get("description")),
                content=clean_text(item.get("content")),
                author=creators[0] if creators else None,
                published_at=parse_timestamp(item.get("pubDate"), "%Y-%m-%d %H:%M:%S"),
            ))
        return articles
