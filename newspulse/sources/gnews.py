"""
GNews adapter (tertiary provider).
API docs: https://gnews.io/docs/v4
"""
from typing import Optional

from newspulse.core.errors import SourceFetchError
from newspulse.services.ingestion.base import RawArticle, SourceConfig
from newspulse.sources.base import HTTPNewsSource, clean_text, parse_timestamp

BASE_URL = "https://gnews.io/api/v4/top-headlines"

CATEGORY_MAP = {
    "general": "general",
    "breaking": "general",
    "business": "business",
    "finance": "business",
    "sports": "sports",
    "technology": "technology",
    "health": "health",
    "politics": "nation",
    "entertainment": "entertainment",
}


def create_gnews_config(api_key: Optional[str], timeout_seconds: float = 15.0) -> SourceConfig:
    return SourceConfig(
        name="gnews",
        base_url=BASE_URL,
        api_key=api_key,
        max_page_size=10,
        timeout_seconds=timeout_seconds,
    )


class GNewsSource(HTTPNewsSource):
    """Adapter for GNews top headlines."""

    CATEGORY_MAP = CATEGORY_MAP

    def build_params(self, category: str, count: int) -> dict:
        return {
            "apikey": self.config.api_key,
            "lang": self.config.language,
            "country": self.config.country,
            "category": self.CATEGORY_MAP[category],
            "max": count,
        }

    def check_payload(self, data: dict) -> None:
        errors = data.get("errors")
        if errors:
            detail = errors[0] if isinstance(errors, list) else errors
            raise SourceFetchError(self.name, f"API error: {detail}")

    def parse(self, data: dict) -> list[RawArticle]:
        articles = []
        for item in data.get("articles") or []:
            title = clean_text(item.get("title"))
            url = item.get("url")
            if not title or not url:
                continue

            source = item.get("source") or {}
            articles.append(RawArticle(
                title=title,
                url=url,
                source_name=source.get("name") or "GNews",
                provider=self.name,
                description=clean_text(item.get("description")),
                content=clean_text(item.get("content")),
                published_at=parse_timestamp(item.get("publishedAt")),
            ))
        return articles
