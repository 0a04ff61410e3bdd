"""
Data Ingestion - Market Aggregator.

============================================================
PURPOSE
============================================================
Answers every market query of the service by fanning out to
the registered sources, merging what comes back and caching
the merged result.

============================================================
FAN-OUT / FAN-IN
============================================================
- all calls of a pass run concurrently (asyncio.gather)
- each call has its own timeout; a slow source becomes a
  failed SourceResult, never an exception
- the whole pass has a caller-level deadline; when it elapses
  every in-flight call is cancelled -> AggregationTimeout
- merge happens after gather: no shared mutable collection
- K < N failed sources -> records of the N-K others
- N of N failed -> AllSourcesFailed
- successes without records -> empty, valid result

============================================================
ORDERING / DEDUP
============================================================
- news: dedup by URL, newest first, truncation after merge
- quotes and prices: dedup by (commodity, market) / slug,
  source-provided order
============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from core.clock import ClockProtocol
from core.exceptions import AggregationTimeout, AllSourcesFailed, NotFound, UpstreamUnavailable
from data_ingestion.catalog import (
    AGRICULTURAL_CITIES,
    INDICATOR_PAGES,
    INTERNATIONAL_TICKERS,
    REGIONAL_POINTS,
    news_keywords,
)
from data_ingestion.normalizers.news_normalizer import (
    dedupe_by_url,
    fold,
    matches_keywords,
    sort_by_published,
)
from data_ingestion.normalizers.market_normalizer import compute_parity
from data_ingestion.normalizers.weather_normalizer import summarize_precipitation
from data_ingestion.types import (
    Aggregate,
    City,
    InterestRate,
    InternationalPrice,
    NewsItem,
    Parity,
    PrecipitationForecast,
    Quote,
    ReferenceRate,
    WeatherReading,
)
from data_sources.base import BaseUpstreamSource
from data_sources.models import SourceKind, SourceResult
from data_sources.registry import SourceRegistry
from storage.cache_policy import CachePolicy, QueryType, make_cache_key


logger = logging.getLogger(__name__)

SourceCall = Tuple[str, BaseUpstreamSource, Dict[str, Any]]


@dataclass(frozen=True)
class AggregatorConfig:
    source_timeout_seconds: float = 10.0
    """Deadline of one source call."""

    overall_timeout_seconds: float = 25.0
    """Deadline of a whole aggregation pass."""

    max_ticker_concurrency: int = 4
    """Per-ticker / per-page calls in flight at once."""

    max_point_concurrency: int = 10
    """Regional precipitation points in flight at once."""

    default_news_limit: int = 20
    max_news_limit: int = 100

    degraded_ttl_seconds: float = 300.0
    """Upper bound on the TTL of a result built with failed sources."""


class MarketAggregator:
    """
    Merges upstream results per query and caches them.

    Injected collaborators: the source registry (who to ask) and
    the cache policy (what is still fresh).
    """

    def __init__(
        self,
        registry: SourceRegistry,
        cache: CachePolicy,
        config: Optional[AggregatorConfig] = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self.config = config or AggregatorConfig()
        self._stats = {"passes": 0, "degraded_passes": 0, "failed_passes": 0, "timeouts": 0}

    @property
    def clock(self) -> ClockProtocol:
        return self._cache.clock

    # =========================================================
    # FAN-OUT
    # =========================================================

    async def _call_source(
        self,
        label: str,
        source: BaseUpstreamSource,
        params: Dict[str, Any],
        semaphore: Optional[asyncio.Semaphore],
    ) -> Tuple[str, SourceResult]:
        async def call() -> SourceResult:
            try:
                return await asyncio.wait_for(source.fetch(params), timeout=self.config.source_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"[{label}] No answer within {self.config.source_timeout_seconds}s")
                return SourceResult.failure(
                    source.name,
                    UpstreamUnavailable(f"Timed out after {self.config.source_timeout_seconds}s", source=label),
                )

        if semaphore is None:
            return label, await call()
        async with semaphore:
            return label, await call()

    async def _fan_out(
        self,
        query_type: QueryType,
        calls: Sequence[SourceCall],
        concurrency: Optional[int] = None,
    ) -> List[Tuple[str, SourceResult]]:
        """
        Run all calls concurrently and return (label, result) pairs in
        call order.

        Raises:
            AggregationTimeout: the pass deadline elapsed
            AllSourcesFailed: no call succeeded
        """
        if not calls:
            raise AllSourcesFailed(f"No sources configured for {query_type.value}", query_type=query_type.value)

        self._stats["passes"] += 1
        semaphore = asyncio.Semaphore(concurrency) if concurrency else None
        gathered = asyncio.gather(
            *(self._call_source(label, source, params, semaphore) for label, source, params in calls)
        )
        try:
            results = await asyncio.wait_for(gathered, timeout=self.config.overall_timeout_seconds)
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            logger.error(
                f"Aggregation of {query_type.value} exceeded {self.config.overall_timeout_seconds}s, "
                f"cancelled {len(calls)} calls"
            )
            raise AggregationTimeout(
                f"{query_type.value} aggregation timed out",
                query_type=query_type.value,
                timeout=self.config.overall_timeout_seconds,
            )

        failed = {label: result.error or "error" for label, result in results if not result.ok}
        if len(failed) == len(results):
            self._stats["failed_passes"] += 1
            logger.error(f"All {len(results)} sources failed for {query_type.value}")
            raise AllSourcesFailed(
                f"All sources failed for {query_type.value}",
                query_type=query_type.value,
                source_errors=failed,
            )
        if failed:
            self._stats["degraded_passes"] += 1
            logger.warning(
                f"{query_type.value}: {len(failed)}/{len(results)} sources failed ({', '.join(sorted(failed))})"
            )
        return list(results)

    def _build(self, data: Any, results: Sequence[Tuple[str, SourceResult]]) -> Aggregate:
        return Aggregate(
            data=data,
            fetched_at=self.clock.now(),
            sources={label: result.status_dict() for label, result in results},
        )

    async def _cached(
        self,
        key: str,
        force: bool,
        compute: Callable[[], Awaitable[Aggregate]],
    ) -> Aggregate:
        """Serve ``key`` from cache within TTL, else recompute and overwrite."""
        if not force:
            entry = self._cache.get(key)
            if entry is not None:
                return entry.value.as_cached(entry.age(self.clock.monotonic()))

        aggregate = await compute()
        ttl = None
        if aggregate.degraded:
            ttl = min(self._cache.ttl_for(key.split("|", 1)[0]), self.config.degraded_ttl_seconds)
        self._cache.set(key, aggregate, ttl=ttl)
        return aggregate

    # =========================================================
    # NEWS
    # =========================================================

    async def aggregate_news(
        self,
        limit: Optional[int] = None,
        slug: Optional[str] = None,
        force: bool = False,
    ) -> Aggregate[List[NewsItem]]:
        """
        Latest news across all feeds, newest first.

        The full merged list is cached; ``slug`` filtering and
        truncation to ``limit`` apply on every read.
        """
        limit = self._clamp_limit(limit)

        async def compute() -> Aggregate:
            calls = [(s.name, s, {}) for s in self._registry.sources_for(SourceKind.NEWS)]
            results = await self._fan_out(QueryType.NEWS, calls)
            merged: List[NewsItem] = []
            for _, result in results:
                merged.extend(result.records)
            items = sort_by_published(dedupe_by_url(merged))
            logger.info(f"Aggregated {len(items)} news items from {len(results)} feeds")
            return self._build(items, results)

        aggregate = await self._cached(make_cache_key(QueryType.NEWS), force, compute)
        items: List[NewsItem] = aggregate.data
        if slug:
            keywords = news_keywords(slug)
            items = [item for item in items if matches_keywords(item, keywords)]
        return replace(aggregate, data=items[:limit])

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_news_limit
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return min(limit, self.config.max_news_limit)

    # =========================================================
    # PRICES
    # =========================================================

    async def aggregate_international_prices(self, force: bool = False) -> Aggregate[Dict[str, InternationalPrice]]:
        """Latest futures price per commodity slug, in catalog order."""

        async def compute() -> Aggregate:
            calls = [
                (f"{source.name}:{slug}", source, {"slug": slug})
                for source in self._registry.sources_for(SourceKind.INTERNATIONAL)
                for slug in INTERNATIONAL_TICKERS
            ]
            results = await self._fan_out(
                QueryType.INTERNATIONAL_PRICES, calls, concurrency=self.config.max_ticker_concurrency
            )
            prices: Dict[str, InternationalPrice] = {}
            for _, result in results:
                for price in result.records:
                    prices.setdefault(price.slug, price)
            return self._build(prices, results)

        return await self._cached(make_cache_key(QueryType.INTERNATIONAL_PRICES), force, compute)

    async def get_international_price(self, slug: str, force: bool = False) -> Aggregate[InternationalPrice]:
        if slug not in INTERNATIONAL_TICKERS:
            raise NotFound(f"No international price for '{slug}'", context={"slug": slug})
        aggregate = await self.aggregate_international_prices(force=force)
        price = aggregate.data.get(slug)
        if price is None:
            raise NotFound(f"International price for '{slug}' unavailable", context={"slug": slug})
        return replace(aggregate, data=price)

    async def aggregate_spot_quotes(
        self,
        slugs: Optional[Sequence[str]] = None,
        force: bool = False,
    ) -> Aggregate[List[Quote]]:
        """Spot quotes, one per (commodity, market), in source order."""
        wanted = [s for s in (slugs or list(INDICATOR_PAGES)) if s in INDICATOR_PAGES]
        if slugs and not wanted:
            raise NotFound(f"No spot indicator for {', '.join(slugs)}")

        async def compute() -> Aggregate:
            calls = [
                (f"{source.name}:{slug}", source, {"slug": slug})
                for source in self._registry.sources_for(SourceKind.SPOT_QUOTE)
                for slug in wanted
            ]
            results = await self._fan_out(
                QueryType.SPOT_QUOTES, calls, concurrency=self.config.max_ticker_concurrency
            )
            quotes: List[Quote] = []
            seen: set = set()
            for _, result in results:
                for quote in result.records:
                    key = (quote.commodity, quote.market)
                    if key not in seen:
                        seen.add(key)
                        quotes.append(quote)
            return self._build(quotes, results)

        key = make_cache_key(QueryType.SPOT_QUOTES, slugs=wanted)
        return await self._cached(key, force, compute)

    async def _single(self, query_type: QueryType, kind: SourceKind, force: bool) -> Aggregate:
        async def compute() -> Aggregate:
            calls = [(s.name, s, {}) for s in self._registry.sources_for(kind)]
            results = await self._fan_out(query_type, calls)
            record = next((r.records[0] for _, r in results if r.ok and r.records), None)
            return self._build(record, results)

        return await self._cached(make_cache_key(query_type), force, compute)

    async def get_reference_rate(self, force: bool = False) -> Aggregate[Optional[ReferenceRate]]:
        """Dollar reference rate (first source with data wins)."""
        return await self._single(QueryType.REFERENCE_RATE, SourceKind.REFERENCE_RATE, force)

    async def get_selic(self, force: bool = False) -> Aggregate[Optional[InterestRate]]:
        return await self._single(QueryType.SELIC, SourceKind.INTEREST_RATE, force)

    async def get_parity(self, slug: str, force: bool = False) -> Aggregate[Parity]:
        """
        International price of ``slug`` converted to reais.

        Price and dollar rate come from their own cached aggregations,
        fetched concurrently; the result is not cached on its own.
        It counts as cached only when both inputs were.
        """
        if slug not in INTERNATIONAL_TICKERS:
            raise NotFound(f"No international price for '{slug}'", context={"slug": slug})

        price, rate = await asyncio.gather(
            self.get_international_price(slug, force=force),
            self.get_reference_rate(force=force),
        )
        if rate.data is None:
            raise AllSourcesFailed(
                "Dollar reference rate unavailable",
                query_type=QueryType.REFERENCE_RATE.value,
                source_errors={label: s.get("error") or "no data" for label, s in rate.sources.items()},
            )

        cached = price.cached and rate.cached
        return Aggregate(
            data=compute_parity(price.data, rate.data),
            fetched_at=min(price.fetched_at, rate.fetched_at),
            cached=cached,
            cache_age_seconds=max(price.cache_age_seconds or 0.0, rate.cache_age_seconds or 0.0) if cached else None,
            sources={**price.sources, **rate.sources},
        )

    # =========================================================
    # WEATHER
    # =========================================================

    async def get_weather(
        self,
        latitude: float,
        longitude: float,
        force: bool = False,
    ) -> Aggregate[Optional[WeatherReading]]:
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise ValueError("Coordinates out of range")
        latitude = round(latitude, 2)
        longitude = round(longitude, 2)

        async def compute() -> Aggregate:
            params = {"latitude": latitude, "longitude": longitude}
            calls = [(s.name, s, params) for s in self._registry.sources_for(SourceKind.WEATHER)]
            results = await self._fan_out(QueryType.WEATHER, calls)
            reading = next((r.records[0] for _, r in results if r.ok and r.records), None)
            return self._build(reading, results)

        key = make_cache_key(QueryType.WEATHER, latitude=latitude, longitude=longitude)
        return await self._cached(key, force, compute)

    async def search_cities(self, query: str, force: bool = False) -> Aggregate[List[City]]:
        """Brazilian cities matching ``query``; short queries return nothing."""
        query = (query or "").strip()
        if len(query) < 3:
            return Aggregate(data=[], fetched_at=self.clock.now())

        async def compute() -> Aggregate:
            calls = [(s.name, s, {"query": query}) for s in self._registry.sources_for(SourceKind.GEOCODING)]
            results = await self._fan_out(QueryType.CITY_SEARCH, calls)
            cities: Dict[str, City] = {}
            for _, result in results:
                for city in result.records:
                    cities.setdefault(city.id, city)
            return self._build(list(cities.values()), results)

        key = make_cache_key(QueryType.CITY_SEARCH, query=fold(query))
        return await self._cached(key, force, compute)

    @staticmethod
    def list_agricultural_cities() -> List[City]:
        return [
            City(
                id=f"{place.latitude},{place.longitude}",
                name=place.name,
                state=place.state,
                latitude=place.latitude,
                longitude=place.longitude,
            )
            for place in AGRICULTURAL_CITIES
        ]

    async def aggregate_precipitation(self, force: bool = False) -> Aggregate[PrecipitationForecast]:
        """7-day accumulated rain per state reference point, with summary."""

        async def compute() -> Aggregate:
            calls = [
                (f"{source.name}:{place.state}", source, {"place": place})
                for source in self._registry.sources_for(SourceKind.PRECIPITATION)
                for place in REGIONAL_POINTS
            ]
            results = await self._fan_out(
                QueryType.PRECIPITATION, calls, concurrency=self.config.max_point_concurrency
            )
            regions = {}
            for _, result in results:
                for region in result.records:
                    regions.setdefault(region.uf, region)
            ordered = list(regions.values())
            return self._build(PrecipitationForecast(ordered, summarize_precipitation(ordered)), results)

        return await self._cached(make_cache_key(QueryType.PRECIPITATION), force, compute)

    # =========================================================
    # HEALTH / LIFECYCLE
    # =========================================================

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    def health_report(self) -> Dict[str, Any]:
        return {
            **self._registry.health_report(),
            "aggregator": self.get_stats(),
            "cache": self._cache.stats(),
        }

    async def close(self) -> None:
        await self._registry.close_all()
