"""
Duplicate detection for incoming articles.

Each candidate is compared against a read-only snapshot of recent
articles taken at pass start, plus whatever this pass has already
accepted. Signals are tried strongest first and the first match wins:

1. Normalized URL equality
2. Content hash of normalized title + description + body
3. Fuzzy title similarity, only within a publish-time window
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from enum import Enum
from typing import Awaitable, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog

from newspulse.models.domain import Article
from newspulse.services.ingestion.base import RawArticle

logger = structlog.get_logger(__name__)

TRACKING_PARAMS = frozenset({
    "fbclid", "gclid", "msclkid", "ref", "source", "campaign",
    "_ga", "mc_eid", "mc_cid", "campaign_id", "ad_id",
})


def normalize_url(url: str) -> str:
    """
    Canonical form of a URL for exact-match comparison.

    Lowercases, drops the fragment, ``www.`` and tracking parameters,
    sorts what is left of the query and strips a trailing slash.
    """
    url = (url or "").strip().lower()
    if not url:
        return ""

    parts = urlsplit(url)
    netloc = parts.netloc
    if netloc.startswith("www."):
        netloc = netloc[4:]

    params = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not k.startswith("utm_") and k not in TRACKING_PARAMS
    ]
    query = urlencode(sorted(params))

    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, netloc, path, query, ""))


def normalize_title(title: str) -> str:
    """Normalize title for fuzzy matching."""
    title = (title or "").lower()
    title = re.sub(r"[^\w\s]", " ", title)
    return " ".join(title.split())


def _collapse(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def content_hash(title: str, description: Optional[str] = None, body: Optional[str] = None) -> str:
    """sha256 over lower-cased, whitespace-collapsed title, description and body."""
    normalized = " ".join(
        part for part in (_collapse(title), _collapse(description), _collapse(body)) if part
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def article_id(url: str, title: str) -> str:
    """Stable external id for providers that do not supply one."""
    return hashlib.sha256(f"{url}|{title}".encode("utf-8")).hexdigest()[:16]


def title_similarity(a: str, b: str) -> float:
    """SequenceMatcher ratio of the normalized titles (0 when either is empty)."""
    left, right = normalize_title(a), normalize_title(b)
    if not left or not right:
        return 0.0
    return SequenceMatcher(None, left, right).ratio()


class DetectionMethod(str, Enum):
    URL_MATCH = "url_match"
    CONTENT_HASH = "content_hash"
    TITLE_TIME_WINDOW = "title_time_window"
    NONE = "none"


@dataclass
class DuplicateVerdict:
    """Outcome of classifying one candidate, kept for audit."""
    candidate_ref: str
    is_duplicate: bool
    method: DetectionMethod = DetectionMethod.NONE
    matched_ref: Optional[str] = None
    url_match: bool = False
    content_hash_match: bool = False
    title_similarity: float = 0.0
    time_window_match: bool = False


@dataclass
class _IndexedArticle:
    ref: str
    canonical_url: str
    content_hash: str
    title: str  # normalized
    published_at: Optional[datetime]


@dataclass
class DedupIndex:
    """
    Comparison set for one pass.

    ``existing`` is the snapshot taken at pass start and is never changed;
    articles accepted during the pass go into a separate list via ``admit``.
    """
    existing: list[_IndexedArticle] = field(default_factory=list)
    accepted: list[_IndexedArticle] = field(default_factory=list)

    def __post_init__(self):
        self._by_url: dict[str, str] = {}
        self._by_hash: dict[str, str] = {}
        for item in self.existing:
            self._index(item)

    @classmethod
    def from_articles(cls, articles: list[Article]) -> "DedupIndex":
        return cls(existing=[
            _IndexedArticle(
                ref=a.external_id,
                canonical_url=a.canonical_url or normalize_url(a.url),
                content_hash=a.content_hash,
                title=normalize_title(a.title),
                published_at=a.published_at,
            )
            for a in articles
        ])

    def _index(self, item: _IndexedArticle) -> None:
        if item.canonical_url:
            self._by_url.setdefault(item.canonical_url, item.ref)
        self._by_hash.setdefault(item.content_hash, item.ref)

    def admit(self, raw: RawArticle) -> None:
        """Add an accepted candidate so later candidates in the pass compare against it."""
        item = _IndexedArticle(
            ref=candidate_ref(raw),
            canonical_url=normalize_url(raw.url),
            content_hash=content_hash(raw.title, raw.description, raw.content),
            title=normalize_title(raw.title),
            published_at=raw.published_at,
        )
        self.accepted.append(item)
        self._index(item)

    def match_url(self, canonical_url: str) -> Optional[str]:
        return self._by_url.get(canonical_url) if canonical_url else None

    def match_hash(self, digest: str) -> Optional[str]:
        return self._by_hash.get(digest)

    def __iter__(self):
        yield from self.existing
        yield from self.accepted

    def __len__(self) -> int:
        return len(self.existing) + len(self.accepted)


def candidate_ref(raw: RawArticle) -> str:
    return raw.external_id or article_id(raw.url, raw.title)


class Deduplicator:
    """
    Classifies candidates as duplicate or original.

    Stateless apart from its thresholds; all comparison state lives in the
    DedupIndex passed in for each pass.
    """

    def __init__(self, title_threshold: float = 0.8, time_window_hours: int = 24):
        if not 0.0 <= title_threshold <= 1.0:
            raise ValueError("title_threshold must be between 0 and 1")
        self.title_threshold = title_threshold
        self.time_window = timedelta(hours=time_window_hours)

    def _within_window(self, a: Optional[datetime], b: Optional[datetime]) -> bool:
        if a is None or b is None:
            return False
        # naive timestamps are UTC
        if a.tzinfo is None:
            a = a.replace(tzinfo=timezone.utc)
        if b.tzinfo is None:
            b = b.replace(tzinfo=timezone.utc)
        return abs(a - b) <= self.time_window

    def classify(self, candidate: RawArticle, index: DedupIndex) -> DuplicateVerdict:
        ref = candidate_ref(candidate)

        canonical = normalize_url(candidate.url)
        matched = index.match_url(canonical)
        if matched is not None:
            return DuplicateVerdict(
                candidate_ref=ref,
                is_duplicate=True,
                method=DetectionMethod.URL_MATCH,
                matched_ref=matched,
                url_match=True,
            )

        digest = content_hash(candidate.title, candidate.description, candidate.content)
        matched = index.match_hash(digest)
        if matched is not None:
            return DuplicateVerdict(
                candidate_ref=ref,
                is_duplicate=True,
                method=DetectionMethod.CONTENT_HASH,
                matched_ref=matched,
                content_hash_match=True,
            )

        title = normalize_title(candidate.title)
        best = 0.0
        if title:
            for item in index:
                if not item.title:
                    continue
                similarity = SequenceMatcher(None, title, item.title).ratio()
                best = max(best, similarity)
                if similarity < self.title_threshold:
                    continue
                if self._within_window(candidate.published_at, item.published_at):
                    return DuplicateVerdict(
                        candidate_ref=ref,
                        is_duplicate=True,
                        method=DetectionMethod.TITLE_TIME_WINDOW,
                        matched_ref=item.ref,
                        title_similarity=similarity,
                        time_window_match=True,
                    )

        return DuplicateVerdict(candidate_ref=ref, is_duplicate=False, title_similarity=best)

    async def screen(
        self,
        candidates: list[RawArticle],
        index: DedupIndex,
        url_exists: Optional[Callable[[str], Awaitable[bool]]] = None,
    ) -> tuple[list[RawArticle], list[DuplicateVerdict]]:
        """
        Classify a batch in order, admitting originals as it goes.

        Args:
            candidates: Articles from one provider response
            index: Snapshot for this pass; originals are admitted to it
            url_exists: Optional lookup against the full stored URL history,
                consulted for candidates the snapshot did not catch

        Returns:
            Tuple of (originals, duplicate verdicts)
        """
        originals: list[RawArticle] = []
        duplicates: list[DuplicateVerdict] = []

        for candidate in candidates:
            verdict = self.classify(candidate, index)

            if not verdict.is_duplicate and url_exists is not None:
                canonical = normalize_url(candidate.url)
                if canonical and await url_exists(canonical):
                    verdict = DuplicateVerdict(
                        candidate_ref=verdict.candidate_ref,
                        is_duplicate=True,
                        method=DetectionMethod.URL_MATCH,
                        matched_ref=canonical,
                        url_match=True,
                        title_similarity=verdict.title_similarity,
                    )

            if verdict.is_duplicate:
                duplicates.append(verdict)
                logger.info(
                    "Duplicate dropped",
                    candidate=verdict.candidate_ref,
                    method=verdict.method.value,
                    matched=verdict.matched_ref,
                    title_similarity=round(verdict.title_similarity, 3),
                )
                continue

            index.admit(candidate)
            originals.append(candidate)

        return originals, duplicates
