"""
Tests for duplicate detection.
"""

import pytest

from newspulse.services.ingestion.dedup import (
    DedupIndex,
    Deduplicator,
    DetectionMethod,
    content_hash,
    normalize_title,
    normalize_url,
    title_similarity,
)
from newspulse.services.ingestion.enrichment import ContentAnalyzer

from tests.conftest import ist, make_raw


def stored(raw, category="general"):
    return ContentAnalyzer().analyze(raw, category, fetched_at=ist())


class TestNormalization:

    def test_tracking_params_and_www_removed(self):
        url = "https://www.TheHindu.com/news/national/story/?utm_source=tw&id=7&fbclid=abc#comments"
        assert normalize_url(url) == "https://thehindu.com/news/national/story?id=7"

    def test_query_order_does_not_matter(self):
        assert normalize_url("https://site.in/a?b=2&a=1") == normalize_url("https://site.in/a?a=1&b=2")

    def test_empty_url(self):
        assert normalize_url("") == ""
        assert normalize_url(None) == ""

    def test_title_normalization(self):
        assert normalize_title("  RBI Holds Rates, Again!  ") == "rbi holds rates again"

    def test_content_hash_ignores_case_and_whitespace(self):
        assert content_hash("Sensex  Rises", "Markets up") == content_hash("sensex rises", "markets   UP")
        assert content_hash("Sensex rises", "Markets up") != content_hash("Sensex falls", "Markets up")

    def test_title_similarity_bounds(self):
        assert title_similarity("Same title", "same title") == 1.0
        assert title_similarity("", "anything") == 0.0


class TestClassify:

    def setup_method(self):
        self.dedup = Deduplicator(title_threshold=0.8, time_window_hours=24)

    def test_url_match_beats_other_signals(self):
        existing = make_raw("Monsoon arrives in Kerala", "https://news.in/monsoon?utm_medium=x", external_id="a")
        index = DedupIndex.from_articles([stored(existing)])

        candidate = make_raw("Completely different headline", "https://www.news.in/monsoon/", external_id="c")
        verdict = self.dedup.classify(candidate, index)

        assert verdict.is_duplicate
        assert verdict.method == DetectionMethod.URL_MATCH
        assert verdict.matched_ref == "a"
        assert verdict.candidate_ref == "c"

    def test_content_hash_match_across_urls(self):
        existing = make_raw("ISRO launches PSLV", "https://one.in/isro", description="Launch from Sriharikota",
                            external_id="a")
        index = DedupIndex.from_articles([stored(existing)])

        candidate = make_raw("ISRO  launches PSLV", "https://two.in/isro-launch",
                             description="launch from sriharikota", external_id="b")
        verdict = self.dedup.classify(candidate, index)

        assert verdict.method == DetectionMethod.CONTENT_HASH
        assert verdict.matched_ref == "a"

    def test_similar_title_inside_window_is_duplicate(self):
        existing = make_raw("India beat Australia by six wickets in Chennai", "https://one.in/cricket",
                            published_at=ist(hour=8), external_id="a")
        index = DedupIndex.from_articles([stored(existing)])

        candidate = make_raw("India beat Australia by six wickets at Chennai", "https://two.in/cricket",
                             published_at=ist(hour=20), external_id="b")
        verdict = self.dedup.classify(candidate, index)

        assert verdict.is_duplicate
        assert verdict.method == DetectionMethod.TITLE_TIME_WINDOW
        assert verdict.time_window_match
        assert verdict.title_similarity >= 0.8

    def test_similar_title_outside_window_is_original(self):
        existing = make_raw("India beat Australia by six wickets in Chennai", "https://one.in/cricket",
                            published_at=ist(day=5), external_id="a")
        index = DedupIndex.from_articles([stored(existing)])

        candidate = make_raw("India beat Australia by six wickets at Chennai", "https://two.in/cricket",
                             published_at=ist(day=15), external_id="b")
        verdict = self.dedup.classify(candidate, index)

        assert not verdict.is_duplicate
        assert verdict.method == DetectionMethod.NONE
        assert verdict.title_similarity >= 0.9

    def test_missing_publish_time_never_matches_on_title(self):
        existing = make_raw("Budget session begins today", "https://one.in/budget", external_id="a")
        existing.published_at = None
        index = DedupIndex.from_articles([stored(existing)])

        candidate = make_raw("Budget session begins today!", "https://two.in/budget", external_id="b")
        assert not self.dedup.classify(candidate, index).is_duplicate

    def test_unrelated_article_is_original(self):
        index = DedupIndex.from_articles([
            stored(make_raw("Monsoon arrives in Kerala", "https://one.in/monsoon", external_id="a")),
        ])
        candidate = make_raw("Sensex closes at record high", "https://two.in/sensex", external_id="b")

        verdict = self.dedup.classify(candidate, index)
        assert not verdict.is_duplicate
        assert verdict.matched_ref is None

    def test_invalid_threshold_rejected(self):
        with pytest.raises(ValueError):
            Deduplicator(title_threshold=1.5)


class TestScreen:

    @pytest.mark.asyncio
    async def test_intra_batch_duplicates_dropped(self):
        dedup = Deduplicator()
        index = DedupIndex()

        first = make_raw("Chandrayaan lander wakes up", "https://one.in/moon", external_id="a")
        echo = make_raw("Different words entirely", "https://one.in/moon/?utm_source=x", external_id="b")
        other = make_raw("Rupee slips against dollar", "https://two.in/rupee", external_id="c")

        originals, duplicates = await dedup.screen([first, echo, other], index)

        assert [r.external_id for r in originals] == ["a", "c"]
        assert len(duplicates) == 1
        assert duplicates[0].matched_ref == "a"
        assert len(index) == 2

    @pytest.mark.asyncio
    async def test_snapshot_is_not_modified(self):
        index = DedupIndex.from_articles([
            stored(make_raw("Monsoon arrives in Kerala", "https://one.in/monsoon", external_id="a")),
        ])

        await Deduplicator().screen([make_raw("New story", "https://two.in/new", external_id="b")], index)

        assert len(index.existing) == 1
        assert len(index.accepted) == 1

    @pytest.mark.asyncio
    async def test_url_history_lookup_catches_older_articles(self):
        seen = {"https://archive.in/old-story"}

        async def url_exists(url):
            return url in seen

        originals, duplicates = await Deduplicator().screen(
            [
                make_raw("Old story resurfaces", "https://www.archive.in/old-story/", external_id="a"),
                make_raw("Fresh story", "https://archive.in/fresh", external_id="b"),
            ],
            DedupIndex(),
            url_exists=url_exists,
        )

        assert [r.external_id for r in originals] == ["b"]
        assert duplicates[0].method == DetectionMethod.URL_MATCH
        assert duplicates[0].matched_ref == "https://archive.in/old-story"

    @pytest.mark.asyncio
    async def test_naive_and_aware_timestamps_compare(self):
        existing = make_raw("Election results declared in Bihar", "https://one.in/bihar", external_id="a")
        existing.published_at = existing.published_at.replace(tzinfo=None)
        index = DedupIndex.from_articles([stored(existing)])

        candidate = make_raw("Election results declared for Bihar", "https://two.in/bihar", external_id="b")
        originals, duplicates = await Deduplicator().screen([candidate], index)

        assert originals == []
        assert duplicates[0].method == DetectionMethod.TITLE_TIME_WINDOW
