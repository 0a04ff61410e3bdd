"""
Data Sources Package - Upstream source layer.

Pluggable, fail-safe clients for the public providers the market
layer depends on (central bank, Yahoo Finance, Open-Meteo, RSS feeds,
CEPEA). Every client returns a ``SourceResult`` and never raises for
provider problems.

Quick Start:
    from data_sources.providers import BCBReferenceRateSource

    async def dollar():
        async with BCBReferenceRateSource() as source:
            result = await source.fetch()
            if result.ok:
                rate = result.records[0]
                print(rate.venda, rate.variation)

Adding New Providers:
    1. Create class extending BaseUpstreamSource
    2. Implement: name, fetch_raw(), normalize(), metadata()
    3. Register with SourceRegistry
"""

from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import FetchError, NormalizationError, RateLimitError
from data_sources.models import (
    SourceHealth,
    SourceIncident,
    SourceKind,
    SourceMetadata,
    SourceResult,
    SourceStatus,
)
from data_sources.registry import SourceRegistry


__all__ = [
    "BaseUpstreamSource",
    "SourceResult",
    "SourceHealth",
    "SourceMetadata",
    "SourceIncident",
    "SourceKind",
    "SourceStatus",
    "FetchError",
    "NormalizationError",
    "RateLimitError",
    "SourceRegistry",
]
