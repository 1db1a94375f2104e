"""
GDELT DOC 2.0 adapter (primary provider).
API docs: https://blog.gdeltproject.org/gdelt-doc-2-0-api-debuts/

Free and keyless. ArtList mode returns title, URL, domain and the time
GDELT first saw the article; there is no description or body.
"""
from typing import Optional

import httpx

from newspulse.services.ingestion.base import RawArticle, SourceConfig
from newspulse.services.ingestion.dedup import article_id
from newspulse.sources.base import HTTPNewsSource, clean_text, parse_timestamp

BASE_URL = "https://api.gdeltproject.org/api/v2/doc/doc"
MAX_RECORDS = 250

CATEGORY_QUERIES = {
    "general": "india",
    "breaking": "india",
    "business": "(business OR economy OR markets)",
    "finance": "(sensex OR nifty OR rbi OR stocks)",
    "sports": "(cricket OR ipl OR football OR hockey)",
    "technology": "(technology OR startup OR software OR isro)",
    "health": "(health OR hospital OR disease OR vaccine)",
    "politics": "(politics OR election OR parliament OR government)",
    "entertainment": "(bollywood OR film OR music OR celebrity)",
}


def create_gdelt_config(timeout_seconds: float = 15.0) -> SourceConfig:
    return SourceConfig(
        name="gdelt",
        base_url=BASE_URL,
        max_page_size=MAX_RECORDS,
        timeout_seconds=timeout_seconds,
    )


class GDELTSource(HTTPNewsSource):
    """Adapter for the GDELT DOC 2.0 article list."""

    CATEGORY_MAP = CATEGORY_QUERIES

    def __init__(self, config: Optional[SourceConfig] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config or create_gdelt_config(), client)

    def build_params(self, category: str, count: int) -> dict:
        query = f"{self.CATEGORY_MAP[category]} sourcecountry:IN sourcelang:english"
        return {
            "query": query,
            "mode": "ArtList",
            "format": "json",
            "maxrecords": count,
            "sort": "DateDesc",
            "timespan": "24h",
        }

    def parse(self, data: dict) -> list[RawArticle]:
        # GDELT answers {} when nothing matched
        articles = []
        for item in data.get("articles") or []:
            title = clean_text(item.get("title"))
            url = item.get("url")
            if not title or not url:
                continue

            articles.append(RawArticle(
                external_id=f"gdelt:{article_id(url, title)}",
                title=title,
                url=url,
                source_name=item.get("domain") or "GDELT",
                provider=self.name,
                published_at=parse_timestamp(item.get("seendate"), "%Y%m%dT%H%M%SZ"),
            ))
        return articles
