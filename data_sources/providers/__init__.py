"""
Providers package - Upstream source implementations.

``build_default_registry`` wires every provider the service ships with.
"""

import logging

from core.config import Settings
from data_ingestion.catalog import NEWS_FEEDS, NewsFeed
from data_sources.providers.bcb import BCBReferenceRateSource, BCBSelicSource
from data_sources.providers.cepea import CepeaSource
from data_sources.providers.open_meteo import (
    OpenMeteoForecastSource,
    OpenMeteoGeocodingSource,
    OpenMeteoPrecipitationSource,
)
from data_sources.providers.rss_news import RSSNewsSource
from data_sources.providers.yahoo_finance import YahooFinanceSource
from data_sources.registry import SourceRegistry


logger = logging.getLogger(__name__)


def build_default_registry(settings: Settings) -> SourceRegistry:
    """Registry with all built-in sources plus configured extra feeds."""
    common = {"timeout": settings.http_timeout_seconds, "user_agent": settings.user_agent}
    registry = SourceRegistry()

    registry.register(BCBReferenceRateSource(**common))
    registry.register(BCBSelicSource(**common))
    registry.register(YahooFinanceSource(timeout=settings.http_timeout_seconds))
    registry.register(CepeaSource(timeout=settings.http_timeout_seconds))
    registry.register(OpenMeteoForecastSource(**common))
    registry.register(OpenMeteoGeocodingSource(**common))
    registry.register(OpenMeteoPrecipitationSource(**common))

    feeds = list(NEWS_FEEDS) + [NewsFeed(name, url) for name, url in settings.extra_news_feeds]
    for feed in feeds:
        registry.register(RSSNewsSource(feed, **common))

    logger.info(f"Default registry built with {len(registry)} sources")
    return registry


__all__ = [
    "BCBReferenceRateSource",
    "BCBSelicSource",
    "CepeaSource",
    "OpenMeteoForecastSource",
    "OpenMeteoGeocodingSource",
    "OpenMeteoPrecipitationSource",
    "RSSNewsSource",
    "YahooFinanceSource",
    "build_default_registry",
]
