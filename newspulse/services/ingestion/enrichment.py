"""
Derived fields for accepted articles.

Word count, reading time, relevance and a coarse India/global origin flag
are computed here before the batch is handed to the article store.
"""

import re
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from newspulse.models.domain import Article, ContentOrigin
from newspulse.services.ingestion.base import RawArticle
from newspulse.services.ingestion.dedup import article_id, content_hash, normalize_url

WORDS_PER_MINUTE = 200
BASE_RELEVANCE = 0.5
KEYWORD_BOOST = 0.1
ORIGIN_BOOST = 0.1
LOW_RELEVANCE_CAP = 0.7

INDIA_TERMS = [
    "india", "indian", "delhi", "mumbai", "bangalore", "chennai", "kolkata",
    "hyderabad", "rupee", "modi", "bjp", "congress", "bollywood", "cricket",
    "ipl", "bcci", "sensex", "nifty", "rbi", "isro", "drdo", "aiims", "iit",
    "neet", "karnataka", "maharashtra", "tamil nadu", "west bengal",
    "rajasthan", "gujarat",
]

INDIAN_OUTLETS = frozenset({
    "thehindu.com", "timesofindia.indiatimes.com", "indiatimes.com",
    "ndtv.com", "hindustantimes.com", "indianexpress.com", "livemint.com",
    "economictimes.indiatimes.com", "moneycontrol.com", "business-standard.com",
    "news18.com", "indiatoday.in", "scroll.in", "thewire.in", "deccanherald.com",
})

CATEGORY_KEYWORDS = {
    "politics": ["politics", "government", "election", "policy"],
    "business": ["business", "economy", "market", "finance"],
    "finance": ["finance", "market", "stocks", "economy"],
    "sports": ["sports", "cricket", "football", "match"],
    "technology": ["technology", "tech", "software", "innovation"],
    "health": ["health", "hospital", "medical", "vaccine"],
    "entertainment": ["film", "movie", "music", "bollywood"],
}


def _term_pattern(terms: list[str]) -> re.Pattern:
    return re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + r")\b")


_INDIA_PATTERN = _term_pattern(INDIA_TERMS)


class ContentAnalyzer:
    """Turns a RawArticle that survived dedup into an enriched Article."""

    def __init__(self, category_keywords: Optional[dict[str, list[str]]] = None):
        keywords = category_keywords if category_keywords is not None else CATEGORY_KEYWORDS
        self._keyword_patterns = {
            category: _term_pattern(terms) for category, terms in keywords.items() if terms
        }

    @staticmethod
    def word_count(raw: RawArticle) -> int:
        return sum(len((text or "").split()) for text in (raw.title, raw.description, raw.content))

    @staticmethod
    def reading_time(word_count: int) -> int:
        return max(1, word_count // WORDS_PER_MINUTE)

    def content_origin(self, raw: RawArticle) -> ContentOrigin:
        text = " ".join(filter(None, (raw.title, raw.description, raw.source_name))).lower()
        if _INDIA_PATTERN.search(text):
            return ContentOrigin.INDIAN

        host = urlsplit(raw.url or "").netloc.lower()
        if host.startswith("www."):
            host = host[4:]
        if host.endswith(".in") or host in INDIAN_OUTLETS:
            return ContentOrigin.INDIAN
        return ContentOrigin.GLOBAL

    def relevance(self, raw: RawArticle, category: str, origin: ContentOrigin) -> float:
        """
        Heuristic relevance score.

        Starts from the provider's hint (or 0.5), adds a small boost per
        category keyword and for India-origin content. Articles that
        started below 0.7 are capped at 0.7, so only provider-rated items
        can score higher.
        """
        base = raw.relevance_hint if raw.relevance_hint is not None else BASE_RELEVANCE

        boost = 0.0
        pattern = self._keyword_patterns.get(category)
        if pattern is not None:
            text = " ".join(filter(None, (raw.title, raw.description))).lower()
            boost += KEYWORD_BOOST * len(set(pattern.findall(text)))
        if origin == ContentOrigin.INDIAN:
            boost += ORIGIN_BOOST

        cap = 1.0 if base >= LOW_RELEVANCE_CAP else LOW_RELEVANCE_CAP
        return round(min(cap, base + boost), 2)

    def analyze(self, raw: RawArticle, category: str, fetched_at: Optional[datetime] = None) -> Article:
        words = self.word_count(raw)
        origin = self.content_origin(raw)

        return Article(
            external_id=raw.external_id or article_id(raw.url, raw.title),
            title=raw.title.strip(),
            description=raw.description,
            content=raw.content,
            url=raw.url,
            canonical_url=normalize_url(raw.url),
            source_name=raw.source_name,
            provider=raw.provider,
            author=raw.author,
            published_at=raw.published_at,
            category=category,
            content_hash=content_hash(raw.title, raw.description, raw.content),
            word_count=words,
            reading_time_minutes=self.reading_time(words),
            relevance_score=self.relevance(raw, category, origin),
            content_origin=origin,
            fetched_at=raw.fetched_at or fetched_at,
        )
