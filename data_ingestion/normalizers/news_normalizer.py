"""
Data Ingestion - News Normalizer.

============================================================
RESPONSIBILITY
============================================================
Maps parsed RSS entries (feedparser) into NewsItem records and
provides the merge helpers used by the aggregator.

- title, link, publish date, image, summary
- entries without a parsable date, link or title are dropped
- URL deduplication, publish-time ordering
- accent-insensitive keyword filtering per commodity

============================================================
IMAGE RESOLUTION ORDER
============================================================
1. media:content (image)
2. media:thumbnail
3. enclosure with an image type
4. first <img src> inside content:encoded / description
============================================================
"""

import logging
import unicodedata
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

from data_ingestion.types import NewsItem


logger = logging.getLogger(__name__)

MAX_SUMMARY_LENGTH = 300


def strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")


def fold(text: str) -> str:
    """Lowercase, accent-free form used for matching."""
    return strip_accents(text or "").lower()


def _entry_datetime(entry: Any) -> Optional[datetime]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _html_of(entry: Any) -> str:
    content = entry.get("content")
    if content:
        return content[0].get("value", "") or ""
    return entry.get("summary", "") or ""


def extract_image(entry: Any) -> Optional[str]:
    """Image URL of an entry, or None."""
    for media in entry.get("media_content") or []:
        url = media.get("url")
        if url and (media.get("medium") == "image" or media.get("type", "image").startswith("image")):
            return url

    thumbnails = entry.get("media_thumbnail") or []
    if thumbnails and thumbnails[0].get("url"):
        return thumbnails[0]["url"]

    for enclosure in entry.get("enclosures") or []:
        if enclosure.get("type", "").startswith("image"):
            href = enclosure.get("href") or enclosure.get("url")
            if href:
                return href

    html = _html_of(entry)
    if "<img" in html:
        img = BeautifulSoup(html, "html.parser").find("img", src=True)
        if img is not None:
            return img["src"]
    return None


def clean_summary(html: str) -> Optional[str]:
    if not html:
        return None
    text = " ".join(BeautifulSoup(html, "html.parser").get_text(" ").split())
    if not text:
        return None
    if len(text) > MAX_SUMMARY_LENGTH:
        text = text[:MAX_SUMMARY_LENGTH].rsplit(" ", 1)[0] + "..."
    return text


def normalize_entry(entry: Any, source: str) -> Optional[NewsItem]:
    """One feedparser entry to a NewsItem; None when it must be dropped."""
    title = " ".join((entry.get("title") or "").split())
    link = (entry.get("link") or "").strip()
    if not title or not link:
        return None

    published_at = _entry_datetime(entry)
    if published_at is None:
        logger.debug(f"[{source}] Dropping entry with unparsable date: {link}")
        return None

    return NewsItem(
        source=source,
        title=title,
        url=link,
        published_at=published_at,
        image_url=extract_image(entry),
        summary=clean_summary(entry.get("summary", "")),
    )


def normalize_feed(parsed: Any, source: str, max_items: int = 20) -> List[NewsItem]:
    """
    Normalize a ``feedparser.parse`` result.

    At most ``max_items`` entries are read, in feed order.
    """
    items: List[NewsItem] = []
    for entry in list(parsed.entries)[:max_items]:
        item = normalize_entry(entry, source)
        if item is not None:
            items.append(item)
    return items


# =============================================================
# MERGE HELPERS
# =============================================================

def dedupe_by_url(items: Iterable[NewsItem]) -> List[NewsItem]:
    """Keep the first occurrence of each URL."""
    seen: set[str] = set()
    unique: List[NewsItem] = []
    for item in items:
        key = item.url.rstrip("/")
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def sort_by_published(items: Iterable[NewsItem]) -> List[NewsItem]:
    """Newest first; ties keep merge order."""
    return sorted(items, key=lambda item: item.published_at, reverse=True)


def matches_keywords(item: NewsItem, keywords: Sequence[str]) -> bool:
    title = fold(item.title)
    return any(fold(keyword) in title for keyword in keywords)
