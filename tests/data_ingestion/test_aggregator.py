"""
Tests for the market aggregator.

============================================================
PURPOSE
============================================================
Fan-out / fan-in behavior against fake sources and a MockClock
driven cache.

TEST PRINCIPLES:
- K < N failed sources -> records of the others, degraded
- N of N failed (or no sources) -> AllSourcesFailed
- successes without records -> empty, valid result
- caller deadline -> AggregationTimeout
- cache hit within TTL, recompute after expiry or force
============================================================
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from core.clock import MockClock
from core.exceptions import AggregationTimeout, AllSourcesFailed, NotFound
from data_ingestion.aggregator import AggregatorConfig, MarketAggregator
from data_ingestion.catalog import INTERNATIONAL_TICKERS, REGIONAL_POINTS
from data_ingestion.types import (
    City,
    InternationalPrice,
    NewsItem,
    Quote,
    RegionalPrecipitation,
    ReferenceRate,
)
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import FetchError
from data_sources.models import SourceKind, SourceMetadata
from data_sources.registry import SourceRegistry
from storage.cache_policy import CachePolicy, QueryType, make_cache_key


# ============================================================
# FIXTURES
# ============================================================

NOW = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)


class FakeSource(BaseUpstreamSource):
    """Source answering from memory, optionally slow or failing."""

    def __init__(
        self,
        name: str,
        kind: SourceKind,
        records: Optional[list] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        by_param: Optional[Callable[[dict], list]] = None,
    ):
        super().__init__(max_retries=1)
        self._name = name
        self._kind = kind
        self.records = records or []
        self.error = error
        self.delay = delay
        self.by_param = by_param
        self.calls: list = []
        self.active = 0
        self.max_active = 0

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(name=self._name, display_name=self._name, kind=self._kind)

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        self.calls.append(dict(params))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if self.error is not None:
            raise self.error
        if self.by_param is not None:
            return self.by_param(params)
        return list(self.records)

    def normalize(self, raw: Any, params: dict[str, Any]) -> list:
        return raw


def news(url: str, title: str = "Mercado agrícola", hours_ago: float = 0) -> NewsItem:
    return NewsItem(source="feed", title=title, url=url, published_at=NOW - timedelta(hours=hours_ago))


def price(slug: str, value: float = 100.0) -> InternationalPrice:
    info = INTERNATIONAL_TICKERS[slug]
    return InternationalPrice(
        slug=slug,
        ticker=info.ticker,
        exchange=info.exchange,
        price=value,
        currency="USX",
        unit=info.unit,
        last_updated=NOW,
        previous_close=value - 1,
    )


def spot(slug: str, market: str, value: float) -> Quote:
    return Quote(
        commodity=slug,
        reference_date=date(2024, 5, 31),
        value=value,
        unit="R$/sc 60kg",
        market=market,
        source="cepea",
    )


def server_error() -> FetchError:
    return FetchError("HTTP 503", status_code=503)


@pytest.fixture
def clock():
    return MockClock(NOW)


@pytest.fixture
def cache(clock):
    return CachePolicy(clock)


def make_aggregator(cache: CachePolicy, *sources: BaseUpstreamSource, **config: Any) -> MarketAggregator:
    registry = SourceRegistry()
    for source in sources:
        registry.register(source)
    return MarketAggregator(registry, cache, AggregatorConfig(**config))


# ============================================================
# NEWS
# ============================================================

class TestNewsAggregation:

    @pytest.mark.asyncio
    async def test_partial_failure_returns_remaining_records(self, cache):
        a = FakeSource("rss_a", SourceKind.NEWS, [news("https://a/1", hours_ago=1)])
        b = FakeSource("rss_b", SourceKind.NEWS, error=server_error())
        c = FakeSource("rss_c", SourceKind.NEWS, [news("https://c/1", hours_ago=2)])
        aggregator = make_aggregator(cache, a, b, c)

        result = await aggregator.aggregate_news()

        assert [item.url for item in result.data] == ["https://a/1", "https://c/1"]
        assert result.degraded is True
        assert result.cached is False
        assert result.sources["rss_b"] == {"ok": False, "error": "FetchError"}
        assert result.sources["rss_a"] == {"ok": True, "count": 1}

    @pytest.mark.asyncio
    async def test_all_failed_raises(self, cache):
        aggregator = make_aggregator(
            cache,
            FakeSource("rss_a", SourceKind.NEWS, error=server_error()),
            FakeSource("rss_b", SourceKind.NEWS, error=server_error()),
        )

        with pytest.raises(AllSourcesFailed) as exc_info:
            await aggregator.aggregate_news()

        assert exc_info.value.code == "SERVICE_DEGRADED"
        assert sorted(exc_info.value.source_errors) == ["rss_a", "rss_b"]
        assert make_cache_key(QueryType.NEWS) not in cache
        assert aggregator.get_stats()["failed_passes"] == 1

    @pytest.mark.asyncio
    async def test_no_sources_raises(self, cache):
        aggregator = make_aggregator(cache)
        with pytest.raises(AllSourcesFailed):
            await aggregator.aggregate_news()

    @pytest.mark.asyncio
    async def test_empty_success_is_valid(self, cache):
        aggregator = make_aggregator(cache, FakeSource("rss_a", SourceKind.NEWS, []))

        result = await aggregator.aggregate_news()

        assert result.data == []
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_dedup_by_url_and_newest_first(self, cache):
        a = FakeSource("rss_a", SourceKind.NEWS, [news("https://x/1", hours_ago=3), news("https://x/2", hours_ago=1)])
        b = FakeSource("rss_b", SourceKind.NEWS, [news("https://x/1", hours_ago=3), news("https://x/3", hours_ago=2)])
        aggregator = make_aggregator(cache, a, b)

        result = await aggregator.aggregate_news()

        assert [item.url for item in result.data] == ["https://x/2", "https://x/3", "https://x/1"]

    @pytest.mark.asyncio
    async def test_limit_applies_after_merge(self, cache):
        a = FakeSource("rss_a", SourceKind.NEWS, [news(f"https://a/{h}", hours_ago=h) for h in (1, 3, 5)])
        b = FakeSource("rss_b", SourceKind.NEWS, [news(f"https://b/{h}", hours_ago=h) for h in (2, 4)])
        aggregator = make_aggregator(cache, a, b)

        result = await aggregator.aggregate_news(limit=3)

        assert [item.url for item in result.data] == ["https://a/1", "https://b/2", "https://a/3"]

    @pytest.mark.asyncio
    async def test_slug_filter_reuses_cached_merge(self, cache):
        source = FakeSource(
            "rss_a",
            SourceKind.NEWS,
            [news("https://a/1", "Soja bate recorde"), news("https://a/2", "Boi gordo firme", hours_ago=1)],
        )
        aggregator = make_aggregator(cache, source)

        everything = await aggregator.aggregate_news()
        soy = await aggregator.aggregate_news(slug="soja")

        assert len(everything.data) == 2
        assert [item.url for item in soy.data] == ["https://a/1"]
        assert soy.cached is True
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_limit_validation(self, cache):
        aggregator = make_aggregator(cache, FakeSource("rss_a", SourceKind.NEWS, []))
        with pytest.raises(ValueError):
            await aggregator.aggregate_news(limit=0)
        assert aggregator._clamp_limit(500) == 100
        assert aggregator._clamp_limit(None) == 20


# ============================================================
# CACHE INTERPLAY
# ============================================================

class TestCaching:

    @pytest.mark.asyncio
    async def test_second_call_within_ttl_is_cached(self, cache, clock):
        source = FakeSource("rss_a", SourceKind.NEWS, [news("https://a/1")])
        aggregator = make_aggregator(cache, source)

        first = await aggregator.aggregate_news()
        clock.advance(60)
        second = await aggregator.aggregate_news()

        assert first.cached is False
        assert second.cached is True
        assert second.cache_age_seconds == 60.0
        assert second.data == first.data
        assert second.fetched_at == first.fetched_at
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_expiry_triggers_recompute(self, cache, clock):
        source = FakeSource("rss_a", SourceKind.NEWS, [news("https://a/1")])
        aggregator = make_aggregator(cache, source)

        await aggregator.aggregate_news()
        clock.advance(cache.ttl_for(QueryType.NEWS))
        result = await aggregator.aggregate_news()

        assert result.cached is False
        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_overwrites(self, cache):
        source = FakeSource("rss_a", SourceKind.NEWS, [news("https://a/1")])
        aggregator = make_aggregator(cache, source)

        await aggregator.aggregate_news()
        source.records = [news("https://a/2")]
        refreshed = await aggregator.aggregate_news(force=True)
        cached = await aggregator.aggregate_news()

        assert [i.url for i in refreshed.data] == ["https://a/2"]
        assert [i.url for i in cached.data] == ["https://a/2"]
        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_degraded_result_gets_short_ttl(self, cache, clock):
        ok = FakeSource("rss_a", SourceKind.NEWS, [news("https://a/1")])
        failing = FakeSource("rss_b", SourceKind.NEWS, error=server_error())
        aggregator = make_aggregator(cache, ok, failing, degraded_ttl_seconds=300)

        await aggregator.aggregate_news()
        entry = cache.get(make_cache_key(QueryType.NEWS))
        assert entry.ttl == 300

        clock.advance(301)
        await aggregator.aggregate_news()
        assert len(ok.calls) == 2


# ============================================================
# DEADLINES
# ============================================================

class TestDeadlines:

    @pytest.mark.asyncio
    async def test_overall_timeout(self, cache):
        slow = FakeSource("rss_slow", SourceKind.NEWS, [news("https://s/1")], delay=1.0)
        aggregator = make_aggregator(
            cache, slow, source_timeout_seconds=5.0, overall_timeout_seconds=0.05
        )

        with pytest.raises(AggregationTimeout) as exc_info:
            await aggregator.aggregate_news()

        assert exc_info.value.http_status == 503
        assert aggregator.get_stats()["timeouts"] == 1
        await asyncio.sleep(0)
        assert slow.active == 0

    @pytest.mark.asyncio
    async def test_slow_source_becomes_failed_result(self, cache):
        fast = FakeSource("rss_fast", SourceKind.NEWS, [news("https://f/1")])
        slow = FakeSource("rss_slow", SourceKind.NEWS, [news("https://s/1")], delay=1.0)
        aggregator = make_aggregator(
            cache, fast, slow, source_timeout_seconds=0.05, overall_timeout_seconds=5.0
        )

        result = await aggregator.aggregate_news()

        assert [item.url for item in result.data] == ["https://f/1"]
        assert result.sources["rss_slow"] == {"ok": False, "error": "UpstreamUnavailable"}


# ============================================================
# PRICES AND RATES
# ============================================================

class TestPrices:

    @pytest.mark.asyncio
    async def test_international_prices_per_ticker(self, cache):
        def answer(params):
            if params["slug"] == "trigo":
                raise server_error()
            return [price(params["slug"])]

        source = FakeSource("yahoo", SourceKind.INTERNATIONAL, by_param=answer, delay=0.01)
        aggregator = make_aggregator(cache, source)

        result = await aggregator.aggregate_international_prices()

        assert len(source.calls) == len(INTERNATIONAL_TICKERS)
        assert "trigo" not in result.data
        assert list(result.data)[0] == "soja"
        assert result.degraded is True
        assert result.sources["yahoo:trigo"]["ok"] is False
        assert 1 < source.max_active <= 4

    @pytest.mark.asyncio
    async def test_single_international_price(self, cache):
        source = FakeSource("yahoo", SourceKind.INTERNATIONAL, by_param=lambda p: [price(p["slug"], 1180.5)])
        aggregator = make_aggregator(cache, source)

        result = await aggregator.get_international_price("soja")

        assert result.data.price == 1180.5
        with pytest.raises(NotFound):
            await aggregator.get_international_price("mandioca")

    @pytest.mark.asyncio
    async def test_single_international_price_missing_from_pass(self, cache):
        source = FakeSource(
            "yahoo",
            SourceKind.INTERNATIONAL,
            by_param=lambda p: [] if p["slug"] == "milho" else [price(p["slug"])],
        )
        aggregator = make_aggregator(cache, source)

        with pytest.raises(NotFound):
            await aggregator.get_international_price("milho")

    @pytest.mark.asyncio
    async def test_spot_quotes_dedup_by_market(self, cache):
        first = FakeSource("cepea", SourceKind.SPOT_QUOTE, by_param=lambda p: [spot(p["slug"], "Paranaguá/PR", 131.45)])
        second = FakeSource("mirror", SourceKind.SPOT_QUOTE, by_param=lambda p: [spot(p["slug"], "Paranaguá/PR", 130.0)])
        aggregator = make_aggregator(cache, first, second)

        result = await aggregator.aggregate_spot_quotes(["soja"])

        assert [q.value for q in result.data] == [131.45]
        assert first.calls == [{"slug": "soja"}]

    @pytest.mark.asyncio
    async def test_spot_quotes_unknown_slug(self, cache):
        aggregator = make_aggregator(cache, FakeSource("cepea", SourceKind.SPOT_QUOTE))
        with pytest.raises(NotFound):
            await aggregator.aggregate_spot_quotes(["mandioca"])

    @pytest.mark.asyncio
    async def test_reference_rate_first_source_with_data(self, cache):
        rate = ReferenceRate(compra=5.29, venda=5.30, variation=3.92, reference_date=date(2024, 6, 2))
        empty = FakeSource("empty", SourceKind.REFERENCE_RATE, [])
        bcb = FakeSource("bcb_dollar", SourceKind.REFERENCE_RATE, [rate])
        aggregator = make_aggregator(cache, empty, bcb)

        result = await aggregator.get_reference_rate()

        assert result.data == rate

    @pytest.mark.asyncio
    async def test_selic_without_data_is_none(self, cache):
        aggregator = make_aggregator(cache, FakeSource("bcb_selic", SourceKind.INTEREST_RATE, []))
        result = await aggregator.get_selic()
        assert result.data is None

    @pytest.mark.asyncio
    async def test_parity_converts_cents_per_bushel(self, cache):
        rate = ReferenceRate(compra=4.99, venda=5.0, variation=None, reference_date=date(2024, 5, 31))
        yahoo = FakeSource("yahoo", SourceKind.INTERNATIONAL, by_param=lambda p: [price(p["slug"], 1200.0)])
        bcb = FakeSource("bcb_dollar", SourceKind.REFERENCE_RATE, [rate])
        aggregator = make_aggregator(cache, yahoo, bcb)

        result = await aggregator.get_parity("soja")

        parity = result.data
        assert parity.price_usd == 12.0
        assert parity.price_brl == 60.0
        assert parity.price_brl_per_sack == 132.28
        assert parity.rate_date == date(2024, 5, 31)
        assert "bcb_dollar" in result.sources
        assert "yahoo:soja" in result.sources
        assert result.cached is False

        again = await aggregator.get_parity("soja")
        assert again.cached is True
        assert len(bcb.calls) == 1

    @pytest.mark.asyncio
    async def test_parity_without_sack_conversion(self, cache):
        rate = ReferenceRate(compra=5.0, venda=5.0, variation=None, reference_date=date(2024, 5, 31))
        yahoo = FakeSource("yahoo", SourceKind.INTERNATIONAL, by_param=lambda p: [price(p["slug"], 2000.0)])
        aggregator = make_aggregator(cache, yahoo, FakeSource("bcb_dollar", SourceKind.REFERENCE_RATE, [rate]))

        parity = (await aggregator.get_parity("cafe-robusta")).data

        assert parity.unit == "USD/ton"
        assert parity.price_brl == 10000.0
        assert parity.price_brl_per_sack is None

    @pytest.mark.asyncio
    async def test_parity_unknown_slug(self, cache):
        aggregator = make_aggregator(cache)
        with pytest.raises(NotFound):
            await aggregator.get_parity("etanol-hidratado")

    @pytest.mark.asyncio
    async def test_parity_without_dollar_rate(self, cache):
        yahoo = FakeSource("yahoo", SourceKind.INTERNATIONAL, by_param=lambda p: [price(p["slug"])])
        aggregator = make_aggregator(cache, yahoo, FakeSource("bcb_dollar", SourceKind.REFERENCE_RATE, []))

        with pytest.raises(AllSourcesFailed) as exc_info:
            await aggregator.get_parity("soja")
        assert exc_info.value.query_type == "reference_rate"


# ============================================================
# WEATHER
# ============================================================

class TestWeather:

    @pytest.mark.asyncio
    async def test_coordinates_rounded_for_cache(self, cache):
        source = FakeSource("open_meteo_forecast", SourceKind.WEATHER, ["reading"])
        aggregator = make_aggregator(cache, source)

        await aggregator.get_weather(-12.5432, -55.7211)
        second = await aggregator.get_weather(-12.5401, -55.7249)

        assert second.cached is True
        assert source.calls == [{"latitude": -12.54, "longitude": -55.72}]

    @pytest.mark.asyncio
    async def test_out_of_range(self, cache):
        aggregator = make_aggregator(cache, FakeSource("open_meteo_forecast", SourceKind.WEATHER))
        with pytest.raises(ValueError):
            await aggregator.get_weather(91, 0)

    @pytest.mark.asyncio
    async def test_short_city_query_skips_sources(self, cache):
        source = FakeSource("open_meteo_geocoding", SourceKind.GEOCODING)
        aggregator = make_aggregator(cache, source)

        result = await aggregator.search_cities("so")

        assert result.data == []
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_city_search_dedup_and_accent_insensitive_key(self, cache):
        city = City(id="-21.17,-47.81", name="Ribeirão Preto", state="São Paulo", latitude=-21.17, longitude=-47.81)
        source = FakeSource("open_meteo_geocoding", SourceKind.GEOCODING, [city, city])
        aggregator = make_aggregator(cache, source)

        first = await aggregator.search_cities("Ribeirão")
        second = await aggregator.search_cities("ribeirao")

        assert first.data == [city]
        assert second.cached is True

    def test_agricultural_cities(self):
        cities = MarketAggregator.list_agricultural_cities()
        assert cities[0].name == "Sorriso"
        assert cities[0].id == "-12.54,-55.72"

    @pytest.mark.asyncio
    async def test_precipitation_regions_and_summary(self, cache):
        def answer(params):
            place = params["place"]
            mm = 50.0 if place.state == "MT" else 5.0
            return [RegionalPrecipitation(place.state, place.name, place.latitude, place.longitude, mm)]

        source = FakeSource("open_meteo_precipitation", SourceKind.PRECIPITATION, by_param=answer)
        aggregator = make_aggregator(cache, source)

        result = await aggregator.aggregate_precipitation()

        assert len(result.data.regions) == len(REGIONAL_POINTS)
        assert result.data.summary.highest["uf"] == "MT"
        assert source.max_active <= 10


# ============================================================
# HEALTH
# ============================================================

class TestHealth:

    @pytest.mark.asyncio
    async def test_health_report(self, cache):
        aggregator = make_aggregator(cache, FakeSource("rss_a", SourceKind.NEWS, [news("https://a/1")]))
        await aggregator.aggregate_news()

        report = aggregator.health_report()

        assert report["total"] == 1
        assert report["sources"]["rss_a"]["status"] == "healthy"
        assert report["aggregator"]["passes"] == 1
        assert report["cache"]["entries"] == 1
