"""
News provider adapters for NewsPulse.
"""
from typing import Optional

import httpx

from newspulse.config import Settings
from newspulse.services.ingestion.base import SourceClient
from newspulse.sources.base import HTTPNewsSource
from newspulse.sources.gdelt import GDELTSource, create_gdelt_config
from newspulse.sources.gnews import GNewsSource, create_gnews_config
from newspulse.sources.mediastack import MediastackSource, create_mediastack_config
from newspulse.sources.mock import MockSource
from newspulse.sources.newsdata import NewsDataSource, create_newsdata_config


def build_sources(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, SourceClient]:
    """
    Create a client for every provider that can run with the current settings.

    Keyed providers are only built when their API key is configured. GDELT
    needs no key and is always present.
    """
    timeout = settings.fetch_timeout_seconds
    sources: dict[str, SourceClient] = {
        "gdelt": GDELTSource(create_gdelt_config(timeout), client),
    }

    if settings.newsdata_api_key:
        sources["newsdata"] = NewsDataSource(
            create_newsdata_config(settings.newsdata_api_key, timeout), client
        )
    if settings.gnews_api_key:
        sources["gnews"] = GNewsSource(create_gnews_config(settings.gnews_api_key, timeout), client)
    if settings.mediastack_api_key:
        sources["mediastack"] = MediastackSource(
            create_mediastack_config(settings.mediastack_api_key, timeout), client
        )
    if settings.enable_mock_source:
        sources["mock"] = MockSource()

    return sources


__all__ = [
    "HTTPNewsSource",
    "GDELTSource",
    "NewsDataSource",
    "GNewsSource",
    "MediastackSource",
    "MockSource",
    "build_sources",
]
