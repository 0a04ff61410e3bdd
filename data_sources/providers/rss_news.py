"""
RSS news adapter - one instance per publisher feed.

The feed body is downloaded with aiohttp (bounded timeout, our
User-Agent) and parsed with feedparser, which tolerates most of
the broken XML agricultural publishers serve.
"""

import logging
import re
from typing import Any

import feedparser

from data_ingestion.catalog import MAX_ITEMS_PER_FEED, NewsFeed
from data_ingestion.normalizers.news_normalizer import fold, normalize_feed
from data_ingestion.types import NewsItem
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import NormalizationError
from data_sources.models import SourceKind, SourceMetadata


logger = logging.getLogger(__name__)


def feed_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", fold(name)).strip("_")


class RSSNewsSource(BaseUpstreamSource[NewsItem]):

    def __init__(self, feed: NewsFeed, max_items: int = MAX_ITEMS_PER_FEED, **kwargs) -> None:
        super().__init__(**kwargs)
        self.feed = feed
        self.max_items = max_items

    @property
    def name(self) -> str:
        return f"rss_{feed_slug(self.feed.name)}"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name=self.feed.name,
            kind=SourceKind.NEWS,
            base_url=self.feed.url,
            tags=["rss"],
        )

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/rss+xml, application/xml;q=0.9, */*;q=0.8",
            "User-Agent": self._user_agent,
        }

    async def fetch_raw(self, params: dict[str, Any]) -> str:
        return await self._get_text(self.feed.url)

    def normalize(self, raw: str, params: dict[str, Any]) -> list[NewsItem]:
        parsed = feedparser.parse(raw)
        if parsed.bozo and not parsed.entries:
            raise NormalizationError(
                f"Unreadable feed: {parsed.get('bozo_exception')}",
                source_name=self.name,
                raw_data=raw[:200] if isinstance(raw, str) else None,
            )
        items = normalize_feed(parsed, self.feed.name, max_items=self.max_items)
        logger.debug(f"[{self.name}] {len(items)} items")
        return items
