"""
Source Registry - Central registry of upstream sources by domain.

Provides:
- Source registration and discovery per SourceKind
- Health and metadata snapshots for the health endpoint
- One place to close every HTTP session on shutdown
"""

import asyncio
import logging
from typing import Any, Optional

from data_sources.base import BaseUpstreamSource
from data_sources.models import SourceHealth, SourceKind, SourceMetadata


logger = logging.getLogger(__name__)


class SourceRegistry:
    """
    Registry of upstream sources.

    Usage:
        registry = SourceRegistry()
        registry.register(RSSNewsSource(feed))
        news_sources = registry.sources_for(SourceKind.NEWS)
    """

    def __init__(self) -> None:
        self._sources: dict[str, BaseUpstreamSource] = {}
        self._kinds: dict[str, SourceKind] = {}

    def register(self, source: BaseUpstreamSource) -> None:
        name = source.name
        if name in self._sources:
            logger.warning(f"Source '{name}' already registered, replacing")
        self._sources[name] = source
        self._kinds[name] = source.metadata().kind
        logger.info(f"Registered source '{name}' ({self._kinds[name].value})")

    def unregister(self, name: str) -> Optional[BaseUpstreamSource]:
        self._kinds.pop(name, None)
        source = self._sources.pop(name, None)
        if source is not None:
            logger.info(f"Unregistered source '{name}'")
        return source

    def get_source(self, name: str) -> Optional[BaseUpstreamSource]:
        return self._sources.get(name)

    def sources_for(self, kind: SourceKind) -> list[BaseUpstreamSource]:
        """Sources of a kind, in registration order."""
        return [s for name, s in self._sources.items() if self._kinds[name] == kind]

    def first_for(self, kind: SourceKind) -> Optional[BaseUpstreamSource]:
        sources = self.sources_for(kind)
        return sources[0] if sources else None

    def list_sources(self) -> list[str]:
        return list(self._sources)

    def get_all_metadata(self) -> dict[str, SourceMetadata]:
        return {name: source.metadata() for name, source in self._sources.items()}

    def get_all_health(self) -> dict[str, SourceHealth]:
        return {name: source.get_health() for name, source in self._sources.items()}

    def health_report(self) -> dict[str, Any]:
        health = self.get_all_health()
        return {
            "sources": {name: h.to_dict() for name, h in health.items()},
            "usable": sum(1 for h in health.values() if h.is_usable()),
            "total": len(health),
        }

    async def close_all(self) -> None:
        """Close every source's HTTP session."""
        results = await asyncio.gather(
            *(source.close() for source in self._sources.values()),
            return_exceptions=True,
        )
        for name, result in zip(self._sources, results):
            if isinstance(result, Exception):
                logger.warning(f"[{name}] Error while closing: {result}")

    def __len__(self) -> int:
        return len(self._sources)
