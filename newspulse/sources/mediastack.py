"""
Mediastack adapter (emergency provider, very small free quota).
API docs: https://mediastack.com/documentation
"""
from typing import Optional

from newspulse.core.errors import SourceFetchError
from newspulse.services.ingestion.base import RawArticle, SourceConfig
from newspulse.sources.base import HTTPNewsSource, clean_text, parse_timestamp

BASE_URL = "http://api.mediastack.com/v1/news"

CATEGORY_MAP = {
    "general": "general",
    "breaking": "general",
    "business": "business",
    "finance": "business",
    "sports": "sports",
    "technology": "technology",
    "health": "health",
    "politics": "general",
    "entertainment": "entertainment",
}


def create_mediastack_config(api_key: Optional[str], timeout_seconds: float = 15.0) -> SourceConfig:
    return SourceConfig(
        name="mediastack",
        base_url=BASE_URL,
        api_key=api_key,
        max_page_size=100,
        timeout_seconds=timeout_seconds,
    )


class MediastackSource(HTTPNewsSource):
    """Adapter for Mediastack live news."""

    CATEGORY_MAP = CATEGORY_MAP

    def build_params(self, category: str, count: int) -> dict:
        return {
            "access_key": self.config.api_key,
            "countries": self.config.country,
            "languages": self.config.language,
            "categories": self.CATEGORY_MAP[category],
            "limit": count,
            "sort": "published_desc",
        }

    def check_payload(self, data: dict) -> None:
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise SourceFetchError(self.name, f"API error: {message}")

    def parse(self, data: dict) -> list[RawArticle]:
        articles = []
        for item in data.get("data") or []:
            title = clean_text(item.get("title"))
            url = item.get("url")
            if not title or not url:
                continue

            articles.append(RawArticle(
                title=title,
                url=url,
                source_name=item.get("source") or "Mediastack",
                provider=self.name,
                description=clean_text(item.get("description")),
                author=clean_text(item.get("author")),
                published_at=parse_timestamp(item.get("published_at")),
            ))
        return articles
