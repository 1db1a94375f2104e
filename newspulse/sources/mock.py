"""
Mock news provider for development and testing.
Generates realistic-looking articles without external API calls.
"""
import hashlib
import random
from datetime import datetime, timedelta, timezone
from typing import Optional

from newspulse.services.ingestion.base import RawArticle, SourceClient, SourceConfig

MOCK_DATA = {
    "business": [
        {
            "title": "Sensex climbs 600 points as banking stocks lead the rally",
            "description": "Benchmark indices closed higher on Tuesday with private lenders and IT majors gaining after strong quarterly numbers.",
            "source": "Economic Times",
        },
        {
            "title": "RBI keeps repo rate unchanged, signals focus on inflation",
            "description": "The Monetary Policy Committee voted to hold the policy rate while revising its growth forecast for the fiscal year.",
            "source": "Mint",
        },
        {
            "title": "Startups raised record funding in Bengaluru this quarter",
            "description": "Venture capital investment in Indian startups rebounded, with fintech and climate companies attracting the largest rounds.",
            "source": "Business Standard",
        },
    ],
    "sports": [
        {
            "title": "India clinch T20 series with a thrilling last-over win",
            "description": "A late flurry of boundaries sealed the series for India in front of a packed crowd in Chennai.",
            "source": "ESPNcricinfo",
        },
        {
            "title": "IPL auction: franchises spend big on young fast bowlers",
            "description": "Uncapped Indian pacers were among the most sought-after players as teams rebuilt their squads.",
            "source": "Sportstar",
        },
    ],
    "technology": [
        {
            "title": "ISRO readies next mission to study the Sun's corona",
            "description": "The space agency confirmed the launch window and outlined the payloads for the solar observation mission.",
            "source": "The Hindu",
        },
        {
            "title": "UPI transactions cross a new monthly record",
            "description": "Digital payments continued their steady climb, with person-to-merchant transfers growing fastest.",
            "source": "Moneycontrol",
        },
    ],
    "politics": [
        {
            "title": "Parliament session to take up key election reform bill",
            "description": "The government listed the bill for the winter session as opposition parties sought wider consultation.",
            "source": "Indian Express",
        },
        {
            "title": "State assembly elections: campaign enters final week",
            "description": "Leaders from all major parties are holding rallies across Maharashtra ahead of polling day.",
            "source": "NDTV",
        },
    ],
    "health": [
        {
            "title": "AIIMS study links air pollution to rising asthma cases in Delhi",
            "description": "Researchers tracked hospital admissions over five winters and found a sharp seasonal rise.",
            "source": "Hindustan Times",
        },
    ],
    "entertainment": [
        {
            "title": "Bollywood box office: festive releases break opening records",
            "description": "Two big-budget films drew record first-day collections across multiplexes in Mumbai and Delhi.",
            "source": "Filmfare",
        },
    ],
}

DEFAULT_ARTICLES = [
    {
        "title": "Monsoon update: heavy rainfall expected across {category} regions",
        "description": "The weather department issued advisories for several states as the monsoon advanced northwards.",
        "source": "Press Trust of India",
    },
    {
        "title": "Top {category} stories from across India this morning",
        "description": "A roundup of the most important developments of the day.",
        "source": "NewsPulse Wire",
    },
]


def create_mock_config() -> SourceConfig:
    return SourceConfig(name="mock", base_url="mock://", max_page_size=100)


class MockSource(SourceClient):
    """
    Deterministic offline provider.

    The same category always yields the same URLs, so repeated passes are
    caught by the deduplicator just as re-published upstream items would be.
    """

    def __init__(self, config: Optional[SourceConfig] = None, seed: int = 7):
        super().__init__(config or create_mock_config())
        self.seed = seed

    def _generate_article(self, category: str, template: dict, index: int, now: datetime) -> RawArticle:
        title = template["title"].format(category=category)

        rng = random.Random(f"{self.seed}:{category}:{title}")
        published_at = now - timedelta(minutes=rng.randint(5, 6 * 60))

        id_hash = hashlib.md5(f"{category}:{title}".encode()).hexdigest()[:10]
        return RawArticle(
            external_id=f"mock:{id_hash}",
            title=title,
            url=f"https://example.in/{category}/{id_hash}",
            source_name=template.get("source", "Mock Wire"),
            provider=self.name,
            description=template.get("description"),
            content=template.get("description"),
            published_at=published_at,
            category_hint=category,
            fetched_at=now,
        )

    async def fetch(self, category: str, max_count: int) -> list[RawArticle]:
        templates = MOCK_DATA.get(category) or DEFAULT_ARTICLES
        if category == "finance":
            templates = MOCK_DATA["business"]

        now = datetime.now(timezone.utc)
        return [
            self._generate_article(category, template, i, now)
            for i, template in enumerate(templates[:max_count])
        ]
